"""聊天 Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 提供各厂商的具体实现 (如 openai_client)。
"""

from typing import Optional

from bookstore_assistant.config.settings import settings
from bookstore_assistant.domain.exceptions import ValidationError
from bookstore_assistant.providers.base import ChatClient
from bookstore_assistant.providers.openai_client import OpenAiChatClient


def create_chat_client(name: Optional[str] = None) -> ChatClient:
    """根据名称创建 Provider 实例，默认取配置中的 chat_provider。"""

    provider_name = (name or getattr(settings, "chat_provider", "openai")).lower()
    if provider_name == "openai":
        return OpenAiChatClient(settings)
    raise ValidationError(
        code="UNKNOWN_PROVIDER",
        message=f"Unknown chat provider: {provider_name!r}",
        http_status=500,
    )
