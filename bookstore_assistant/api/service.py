"""书店助手网关服务。

把 HTTP 参数转换为 Prompt，委托给 ChatClient，并整理返回结果。
所有方法都是无状态的；唯一共享的对象是只读使用的 ChatClient。
"""

from typing import AsyncIterator, Optional

from bookstore_assistant.config.settings import settings
from bookstore_assistant.domain.exceptions import (
    BusinessError,
    InvalidInput,
    MalformedUpstreamResponse,
)
from bookstore_assistant.domain.models import ChatResponse, Prompt
from bookstore_assistant.infrastructure.logging.logger import logger
from bookstore_assistant.prompts import DEFAULT_BOOK, DEFAULT_MESSAGE, review_template
from bookstore_assistant.providers import create_chat_client
from bookstore_assistant.providers.base import ChatClient


class BookstoreAssistantService:
    """网关的三个操作：同步问答、流式问答、书评。"""

    def __init__(self, chat_client: ChatClient, max_input_chars: int = 4000):
        self._client = chat_client
        self._max_input_chars = max_input_chars

    def _resolve(self, name: str, value: Optional[str], default: str) -> str:
        # 缺省或空字符串都回落到默认值
        if not value:
            return default
        if len(value) > self._max_input_chars:
            raise InvalidInput(
                code="INPUT_TOO_LONG",
                message=f"'{name}' exceeds {self._max_input_chars} characters",
                field=name,
            )
        return value

    async def get_information(self, message: Optional[str] = None) -> ChatResponse:
        """同步调用上游，返回完整的 ChatResponse。"""

        prompt = Prompt(self._resolve("message", message, DEFAULT_MESSAGE))
        logger.info("informations request", extra={"extra": {"provider": self._client.name}})
        try:
            return await self._client.call(prompt)
        except BusinessError as e:
            logger.error(f"Upstream call failed: {e.message}", extra={"extra": {
                "operation": "informations",
                "code": e.code,
            }})
            raise

    async def stream_information(self, message: Optional[str] = None) -> AsyncIterator[ChatResponse]:
        """流式调用上游，按上游顺序逐个产出增量。

        本生成器被 aclose() 时会关闭上游生成器，释放连接。
        """

        prompt = Prompt(self._resolve("message", message, DEFAULT_MESSAGE))
        logger.info("stream informations request", extra={"extra": {"provider": self._client.name}})
        fragments = self._client.stream(prompt)
        count = 0
        try:
            async for fragment in fragments:
                count += 1
                yield fragment
        except BusinessError as e:
            logger.error(f"Upstream stream failed: {e.message}", extra={"extra": {
                "operation": "steam/informations",
                "code": e.code,
                "fragments": count,
            }})
            raise
        finally:
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

    def review_prompt(self, book: Optional[str] = None) -> Prompt:
        """根据书名填充书评模板。"""

        return review_template().add("book", self._resolve("book", book, DEFAULT_BOOK)).create()

    async def get_review(self, book: Optional[str] = None) -> str:
        """同步调用上游，只返回第一条结果的文本内容。"""

        prompt = self.review_prompt(book)
        logger.info("reviews request", extra={"extra": {"provider": self._client.name}})
        try:
            response = await self._client.call(prompt)
        except BusinessError as e:
            logger.error(f"Upstream call failed: {e.message}", extra={"extra": {
                "operation": "reviews",
                "code": e.code,
            }})
            raise
        result = response.result
        if result is None or result.output.content is None:
            logger.error("Upstream response has no content", extra={"extra": {
                "operation": "reviews",
                "results": len(response.results),
            }})
            raise MalformedUpstreamResponse(
                code="MISSING_CONTENT",
                message="Chat response has no result content",
            )
        return result.output.content


_service: Optional[BookstoreAssistantService] = None


def get_default_service() -> BookstoreAssistantService:
    """获取默认的网关服务实例（单例）。"""
    global _service
    if _service is None:
        _service = BookstoreAssistantService(
            chat_client=create_chat_client(),
            max_input_chars=settings.max_input_chars,
        )
    return _service
