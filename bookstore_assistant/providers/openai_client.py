"""OpenAI Provider 适配器。

本模块负责：

1. 接收统一的 Prompt。
2. 将其转换为 OpenAI chat/completions 的 HTTP 请求格式。
3. 调用 HTTP 接口并把网络/API 异常映射为业务异常。
4. 将响应 JSON（或流式 SSE 增量）解析为统一的 ChatResponse。

任何 OpenAI 兼容的服务都可以通过修改 openai_base_url 接入。
"""

import json
from typing import Any, AsyncIterator, Dict

import httpx

from bookstore_assistant.domain.exceptions import (
    MalformedUpstreamResponse,
    RateLimitError,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from bookstore_assistant.domain.models import (
    ChatMessage,
    ChatResponse,
    ChatUsage,
    Generation,
    Prompt,
)


class OpenAiChatClient:
    """OpenAI 聊天客户端实现。

    实例本身无可变状态，可被所有请求并发共享；
    每次调用在自己的 httpx.AsyncClient 作用域内完成。
    """

    name = "openai"

    def __init__(self, settings):
        # Settings 里包含 base_url、api_key、模型、超时等配置
        self._settings = settings

    async def call(self, prompt: Prompt) -> ChatResponse:
        """执行一次非流式对话调用。"""

        headers = self._headers()
        payload = self._build_payload(prompt)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(self._url(), json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(code="UPSTREAM_TIMEOUT", message=str(e) or "OpenAI request timed out")
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接被拒等
            raise UpstreamUnavailable(code="NETWORK_ERROR", message=str(e))
        self._raise_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise MalformedUpstreamResponse(code="MALFORMED_RESPONSE", message="OpenAI returned a non-JSON body")
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse(code="MALFORMED_RESPONSE", message="OpenAI returned a non-object body")
        return self._parse_response(data)

    async def stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        """执行一次流式对话调用，逐步 yield ChatResponse 增量。

        生成器被 aclose() 时（例如客户端断开），async with 作用域随之退出，
        上游连接被释放。
        """

        headers = self._headers()
        payload = self._build_payload(prompt)
        payload["stream"] = True
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream("POST", self._url(), json=payload, headers=headers) as resp:
                    if resp.status_code >= 400:
                        body = await resp.aread()
                        self._raise_for_status(resp.status_code, body.decode("utf-8", "replace"))
                    async for line in resp.aiter_lines():
                        data_str = line.strip()
                        if data_str.startswith("data:"):
                            data_str = data_str[5:].strip()
                        if not data_str or data_str == "[DONE]":
                            continue
                        try:
                            chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        if isinstance(chunk, dict):
                            yield self._parse_stream_chunk(chunk)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(code="UPSTREAM_TIMEOUT", message=str(e) or "OpenAI stream timed out")
        except httpx.RequestError as e:
            raise UpstreamUnavailable(code="NETWORK_ERROR", message=str(e))

    def _url(self) -> str:
        return f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            # 配置缺失同样视为上游不可用，但属于服务端自身问题
            raise UpstreamUnavailable(code="MISSING_API_KEY", message="OPENAI_API_KEY not set", http_status=500)
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, prompt: Prompt) -> Dict[str, Any]:
        """将 Prompt 转成 OpenAI 所需的请求 JSON。"""

        return {
            "model": self._settings.openai_model,
            "messages": [m.to_dict() for m in prompt.messages],
            "temperature": self._settings.openai_temperature,
        }

    @staticmethod
    def _raise_for_status(status_code: int, body: str) -> None:
        # 上游错误体只进入 extra（写日志），不出现在返回给调用方的 message 中
        detail = body[:500]
        if status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT", message="OpenAI rate limit",
                upstream_status=status_code, upstream_body=detail,
            )
        if status_code in (401, 403):
            raise UpstreamUnavailable(
                code="AUTH_ERROR", message=f"OpenAI authentication failed (status {status_code})",
                upstream_status=status_code, upstream_body=detail,
            )
        if status_code >= 400:
            raise UpstreamUnavailable(
                code="API_ERROR", message=f"OpenAI API error (status {status_code})",
                upstream_status=status_code, upstream_body=detail,
            )

    def _parse_response(self, data: dict) -> ChatResponse:
        """将 OpenAI 的原始响应 JSON 解析为统一的 ChatResponse。"""

        return self._build_response(data, "message")

    def _parse_stream_chunk(self, data: dict) -> ChatResponse:
        """解析流式响应中的单条增量。"""

        return self._build_response(data, "delta")

    def _build_response(self, data: dict, message_key: str) -> ChatResponse:
        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise _malformed("'choices' is not a list")
        results = []
        for i, ch in enumerate(choices):
            if not isinstance(ch, dict):
                raise _malformed(f"choice {i} is not an object")
            results.append(
                Generation(
                    output=self._build_chat_message(ch.get(message_key) or {}),
                    index=ch.get("index", i),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        return ChatResponse(
            results=results,
            id=data.get("id"),
            model=data.get("model"),
            usage=self._parse_usage(data.get("usage")),
            raw=data,
        )

    @staticmethod
    def _build_chat_message(payload: Any) -> ChatMessage:
        if not isinstance(payload, dict):
            raise _malformed("message is not an object")
        content = payload.get("content")
        if content is not None and not isinstance(content, str):
            raise _malformed("message content is not a string")
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=content,
        )

    @staticmethod
    def _parse_usage(usage_raw: Any) -> ChatUsage | None:
        if not usage_raw:
            return None
        if not isinstance(usage_raw, dict):
            raise _malformed("'usage' is not an object")
        return ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )


def _malformed(reason: str) -> MalformedUpstreamResponse:
    return MalformedUpstreamResponse(code="MALFORMED_RESPONSE", message=f"OpenAI response is malformed: {reason}")
