"""FastAPI 应用工厂与启动入口。

启动：uvicorn bookstore_assistant.api.app:app
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bookstore_assistant.api.routes import router
from bookstore_assistant.api.service import BookstoreAssistantService, get_default_service
from bookstore_assistant.config.settings import settings
from bookstore_assistant.domain.exceptions import BusinessError
from bookstore_assistant.infrastructure.logging.logger import logger
from bookstore_assistant.providers.base import ChatClient


async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
    logger.error(f"{exc.code}: {exc.message}", extra={"extra": {
        "path": request.url.path,
        "status": exc.http_status,
        **exc.extra,
    }})
    return JSONResponse(
        status_code=exc.http_status,
        content={"code": exc.code, "message": exc.message},
    )


def create_app(chat_client: Optional[ChatClient] = None) -> FastAPI:
    """创建应用；传入 chat_client 时使用它（测试），否则使用默认 Provider。"""

    app = FastAPI(
        title="Bookstore Assistant",
        description="把书店相关问题转发给聊天模型的 HTTP 网关。",
    )
    if chat_client is not None:
        app.state.service = BookstoreAssistantService(chat_client, settings.max_input_chars)
    else:
        app.state.service = get_default_service()
    app.add_exception_handler(BusinessError, business_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
