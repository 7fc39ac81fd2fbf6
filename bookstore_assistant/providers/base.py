"""聊天 Provider 抽象接口。

网关层不直接依赖具体厂商的 HTTP API，而是依赖此协议：

- 每个厂商实现一个 ChatClient（如 OpenAiChatClient）。
- 负责：将 Prompt 转成具体 API 请求，并把响应 JSON 解析为 ChatResponse。

测试中可以用任意实现了 call/stream 的假对象替换真实客户端。
"""

from typing import AsyncIterator, Protocol

from bookstore_assistant.domain.models import ChatResponse, Prompt


class ChatClient(Protocol):
    """聊天 Provider 客户端协议。

    - name: Provider 名称，用于日志。
    - call(prompt): 执行一次非流式调用，返回完整 ChatResponse。
    - stream(prompt): 执行一次流式调用，按上游顺序逐个产出 ChatResponse 增量。
      调用方在断开或结束时负责 aclose()，以释放上游连接。
    """

    name: str

    async def call(self, prompt: Prompt) -> ChatResponse:
        ...

    def stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        ...
