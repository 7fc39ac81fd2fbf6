"""书店助手使用的默认输入与提示词模板。"""

from bookstore_assistant.domain.models import PromptTemplate


DEFAULT_MESSAGE = "Quais são os livros best sellers dos últimos anos?"
DEFAULT_BOOK = "Dom Quixote"

REVIEW_TEMPLATE = (
    "Por favor, me forneça uma análise completa do livro {book} "
    "e também a biografia do seu autor.\n"
)


def review_template() -> PromptTemplate:
    """每次请求返回新的模板实例，避免请求之间共享变量。"""

    return PromptTemplate(REVIEW_TEMPLATE)
