"""统一的提示词与对话结果数据模型。

- ChatMessage: 一条对话消息（system/user/assistant）。
- Prompt: 发给聊天模型的不可变提示词。
- PromptTemplate: 带 {name} 占位符的提示词模板。
- Generation / ChatResponse: 从 Provider 解析后的统一响应结果，
  同步调用与流式增量共用同一结构。

Provider 适配器（如 OpenAiChatClient）只依赖这些模型，
负责在各自的 API JSON 和这些模型之间做转换。
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from bookstore_assistant.domain.exceptions import ValidationError


Role = Literal["system", "user", "assistant"]

# 占位符形如 {book}；只识别合法标识符，其余花括号按字面保留
_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    content 为 None 表示上游没有给出文本（例如流式首包只含 role）。
    """

    role: Role
    content: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class Prompt:
    """发给聊天模型的提示词，作为一条 user 消息发送。"""

    contents: str

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return (ChatMessage(role="user", content=self.contents),)


class PromptTemplate:
    """带命名占位符的提示词模板。

    用法::

        template = PromptTemplate("análise do livro {book}")
        template.add("book", "1984")
        prompt = template.create()

    替换是字面替换，不做转义；替换进去的值不会再次被解析。
    """

    def __init__(self, template: str, variables: Optional[Dict[str, Any]] = None):
        self.template = template
        self._variables: Dict[str, Any] = dict(variables or {})

    @property
    def placeholders(self) -> List[str]:
        return _PLACEHOLDER.findall(self.template)

    def add(self, name: str, value: Any) -> "PromptTemplate":
        self._variables[name] = value
        return self

    def render(self, **variables: Any) -> str:
        values = {**self._variables, **variables}
        missing = [name for name in self.placeholders if name not in values]
        if missing:
            raise ValidationError(
                code="TEMPLATE_VARIABLE_MISSING",
                message=f"No value for template variable(s): {', '.join(missing)}",
                missing=missing,
            )
        return _PLACEHOLDER.sub(lambda m: str(values[m.group(1)]), self.template)

    def create(self, **variables: Any) -> Prompt:
        return Prompt(self.render(**variables))


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Generation:
    """单个候选回答；流式场景下 output 只包含本次增量。"""

    output: ChatMessage
    index: int = 0
    finish_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output": self.output.to_dict(),
            "metadata": {"index": self.index, "finish_reason": self.finish_reason},
        }


@dataclass
class ChatResponse:
    """一次对话调用（或一个流式增量）的结果。

    - results: 一个或多个候选回答，可能为空。
    - id / model: 上游返回的响应 ID 与实际模型名。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，仅用于调试，不会序列化给调用方。
    """

    results: List[Generation] = field(default_factory=list)
    id: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = field(default=None, repr=False)

    @property
    def result(self) -> Optional[Generation]:
        return self.results[0] if self.results else None

    def to_dict(self) -> Dict[str, Any]:
        result = self.result
        return {
            "result": result.to_dict() if result else None,
            "results": [g.to_dict() for g in self.results],
            "metadata": {
                "id": self.id,
                "model": self.model,
                "usage": self.usage.to_dict() if self.usage else None,
            },
        }
