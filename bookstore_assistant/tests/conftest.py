import pytest

from bookstore_assistant.domain.models import ChatMessage, ChatResponse, Generation


def make_response(*contents):
    return ChatResponse(
        results=[
            Generation(output=ChatMessage(role="assistant", content=c), index=i, finish_reason="stop")
            for i, c in enumerate(contents)
        ],
        id="chatcmpl-fake",
        model="fake-model",
    )


class FakeChatClient:
    """记录收到的 Prompt，并按预设返回结果的假 ChatClient。"""

    name = "fake"

    def __init__(self, response=None, fragments=(), error=None, stream_error=None):
        self.response = response if response is not None else make_response("ok")
        self.fragments = list(fragments)
        self.error = error
        self.stream_error = stream_error
        self.prompts = []
        self.stream_started = False
        self.stream_closed = False
        self.delivered = 0

    async def call(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response

    async def stream(self, prompt):
        self.prompts.append(prompt)
        self.stream_started = True
        try:
            if self.error is not None:
                raise self.error
            for fragment in self.fragments:
                self.delivered += 1
                yield fragment
            if self.stream_error is not None:
                raise self.stream_error
        finally:
            self.stream_closed = True


@pytest.fixture
def fake_client():
    return FakeChatClient(fragments=[make_response("Dom"), make_response(" Casmurro"), make_response(None)])


@pytest.fixture(name="make_response")
def make_response_fixture():
    return make_response


@pytest.fixture
def chat_client_factory():
    return FakeChatClient
