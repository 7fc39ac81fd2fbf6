"""书店助手 HTTP 路由。"""

import json
from typing import AsyncGenerator, Callable, Optional, Sequence

import anyio
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, StreamingResponse

from bookstore_assistant.api.service import BookstoreAssistantService
from bookstore_assistant.domain.models import ChatResponse
from bookstore_assistant.infrastructure.logging.logger import logger
from bookstore_assistant.prompts import DEFAULT_BOOK, DEFAULT_MESSAGE


router = APIRouter(prefix="/bookstore-assistant")


def get_service(request: Request) -> BookstoreAssistantService:
    return request.app.state.service


def _ndjson(fragment: ChatResponse) -> str:
    return json.dumps(fragment.to_dict(), ensure_ascii=False) + "\n"


def _sse(fragment: ChatResponse) -> str:
    return f"data: {json.dumps(fragment.to_dict(), ensure_ascii=False)}\n\n"


async def relay(
    request: Request,
    fragments: AsyncGenerator[ChatResponse, None],
    encode: Callable[[ChatResponse], str],
    head: Sequence[ChatResponse] = (),
) -> AsyncGenerator[str, None]:
    """把上游增量转发给客户端。

    客户端断开后停止转发；无论正常结束、出错还是断开，都会关闭上游生成器。
    """

    try:
        for fragment in head:
            yield encode(fragment)
        async for fragment in fragments:
            if await request.is_disconnected():
                logger.info("client disconnected, closing upstream stream")
                break
            yield encode(fragment)
    finally:
        # 断开时服务器会取消当前任务，关闭上游必须不受取消影响
        with anyio.CancelScope(shield=True):
            await fragments.aclose()


class RelayResponse(StreamingResponse):
    """转发上游增量的流式响应。

    StreamingResponse 在客户端断开时（发送抛出 OSError，或断开监听取消任务）
    不会关闭 body_iterator，这里在响应结束后显式关闭转发生成器与上游生成器。
    """

    def __init__(self, fragments: AsyncGenerator[ChatResponse, None], body: AsyncGenerator[str, None], **kwargs):
        super().__init__(body, **kwargs)
        self._fragments = fragments

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                # relay 尚未启动时 aclose 不会执行它的 finally，所以上游单独关闭
                await self.body_iterator.aclose()
                await self._fragments.aclose()


@router.get("/informations", summary="同步问答")
async def bookstore_chat_prompt(
    message: Optional[str] = Query(default=DEFAULT_MESSAGE),
    service: BookstoreAssistantService = Depends(get_service),
):
    response = await service.get_information(message)
    return response.to_dict()


@router.get("/steam/informations", summary="流式问答")
async def bookstore_chat_stream(
    request: Request,
    message: Optional[str] = Query(default=DEFAULT_MESSAGE),
    service: BookstoreAssistantService = Depends(get_service),
):
    fragments = service.stream_information(message)
    # 先取第一个增量：上游在开始前失败时仍能返回 5xx，而不是半截响应体
    try:
        head = [await fragments.__anext__()]
    except StopAsyncIteration:
        head = []

    if "text/event-stream" in request.headers.get("accept", ""):
        encode, media_type = _sse, "text/event-stream"
    else:
        encode, media_type = _ndjson, "application/x-ndjson"
    return RelayResponse(
        fragments,
        relay(request, fragments, encode, head),
        media_type=media_type,
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/reviews", response_class=PlainTextResponse, summary="书评与作者简介")
async def bookstore_chat_reviews(
    book: Optional[str] = Query(default=DEFAULT_BOOK),
    service: BookstoreAssistantService = Depends(get_service),
):
    return await service.get_review(book)
