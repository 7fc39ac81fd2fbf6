import asyncio
import contextlib
import json

import pytest
from fastapi.testclient import TestClient
from starlette.requests import ClientDisconnect

from bookstore_assistant.api.app import create_app
from bookstore_assistant.api.routes import relay
from bookstore_assistant.api.service import BookstoreAssistantService
from bookstore_assistant.domain.exceptions import RateLimitError, UpstreamUnavailable
from bookstore_assistant.prompts import DEFAULT_MESSAGE
from bookstore_assistant.providers.openai_client import OpenAiChatClient


BASE = "/bookstore-assistant"


def _client(chat_client, **kw):
    return TestClient(create_app(chat_client=chat_client), **kw)


def test_informations_returns_chat_response(fake_client):
    resp = _client(fake_client).get(f"{BASE}/informations", params={"message": "Best sellers de 2023?"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["result"]["output"]["content"] == "ok"
    assert body["results"][0]["metadata"]["finish_reason"] == "stop"
    assert body["metadata"]["model"] == "fake-model"
    assert fake_client.prompts[0].contents == "Best sellers de 2023?"


@pytest.mark.parametrize("query", ["", "?message="])
def test_informations_default_message(fake_client, query):
    resp = _client(fake_client).get(f"{BASE}/informations{query}")
    assert resp.status_code == 200
    assert fake_client.prompts[0].contents == DEFAULT_MESSAGE


def test_informations_upstream_failure_is_5xx(chat_client_factory):
    client = chat_client_factory(error=UpstreamUnavailable(code="NETWORK_ERROR", message="connection refused"))
    resp = _client(client).get(f"{BASE}/informations")
    assert resp.status_code == 502
    assert resp.json() == {"code": "NETWORK_ERROR", "message": "connection refused"}


def test_informations_unexpected_failure_is_500(chat_client_factory):
    client = chat_client_factory(error=RuntimeError("boom"))
    resp = _client(client, raise_server_exceptions=False).get(f"{BASE}/informations")
    assert resp.status_code == 500
    assert "result" not in resp.text


def test_informations_rejects_oversized_message(fake_client):
    resp = _client(fake_client).get(f"{BASE}/informations", params={"message": "x" * 4001})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INPUT_TOO_LONG"
    assert fake_client.prompts == []


def test_stream_delivers_fragments_in_order(fake_client):
    resp = _client(fake_client).get(f"{BASE}/steam/informations", params={"message": "x"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/x-ndjson")
    lines = [json.loads(line) for line in resp.text.splitlines() if line]
    assert [line["result"]["output"]["content"] for line in lines] == ["Dom", " Casmurro", None]
    assert fake_client.prompts[0].contents == "x"
    assert fake_client.stream_closed


def test_stream_as_server_sent_events(fake_client):
    resp = _client(fake_client).get(
        f"{BASE}/steam/informations",
        headers={"Accept": "text/event-stream"},
    )
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = [e for e in resp.text.split("\n\n") if e]
    assert len(events) == 3
    assert all(e.startswith("data: ") for e in events)
    assert json.loads(events[0][len("data: "):])["result"]["output"]["content"] == "Dom"
    assert fake_client.prompts[0].contents == DEFAULT_MESSAGE


def test_stream_empty_upstream(chat_client_factory):
    client = chat_client_factory(fragments=[])
    resp = _client(client).get(f"{BASE}/steam/informations")
    assert resp.status_code == 200
    assert resp.text == ""
    assert client.stream_closed


def test_stream_failure_before_first_fragment_is_5xx(chat_client_factory):
    client = chat_client_factory(error=RateLimitError(code="RATE_LIMIT", message="slow down"))
    resp = _client(client).get(f"{BASE}/steam/informations")
    assert resp.status_code == 503
    assert resp.json()["code"] == "RATE_LIMIT"
    assert client.stream_closed


class DisconnectingRequest:
    """第 after 次检查之后报告客户端已断开。"""

    def __init__(self, after):
        self.after = after
        self.checks = 0

    async def is_disconnected(self):
        self.checks += 1
        return self.checks > self.after


def test_relay_stops_and_releases_upstream_on_disconnect(chat_client_factory, make_response):
    client = chat_client_factory(fragments=[make_response(str(i)) for i in range(10)])
    service = BookstoreAssistantService(client)

    async def run():
        fragments = service.stream_information("x")
        head = [await fragments.__anext__()]
        return [chunk async for chunk in relay(DisconnectingRequest(after=1), fragments, str, head)]

    chunks = asyncio.run(run())
    assert len(chunks) == 2
    assert client.delivered < 10
    assert client.stream_closed


def test_relay_closes_upstream_on_consumer_aclose(fake_client):
    service = BookstoreAssistantService(fake_client)

    async def run():
        body = relay(DisconnectingRequest(after=100), service.stream_information("x"), str)
        await body.__anext__()
        await body.aclose()

    asyncio.run(run())
    assert fake_client.delivered == 1
    assert fake_client.stream_closed


def test_reviews_returns_plain_text(chat_client_factory, make_response):
    client = chat_client_factory(response=make_response("Uma distopia de George Orwell."))
    resp = _client(client).get(f"{BASE}/reviews", params={"book": "1984"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text == "Uma distopia de George Orwell."
    assert client.prompts[0].contents == (
        "Por favor, me forneça uma análise completa do livro 1984 "
        "e também a biografia do seu autor.\n"
    )


@pytest.mark.parametrize("query", ["", "?book="])
def test_reviews_default_book(fake_client, query):
    _client(fake_client).get(f"{BASE}/reviews{query}")
    assert "do livro Dom Quixote e também" in fake_client.prompts[0].contents


def test_reviews_malformed_upstream_is_5xx(chat_client_factory, make_response):
    client = chat_client_factory(response=make_response())
    resp = _client(client).get(f"{BASE}/reviews")
    assert resp.status_code == 502
    assert resp.json()["code"] == "MISSING_CONTENT"


def _stream_scope(spec_version):
    return {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": spec_version},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": f"{BASE}/steam/informations",
        "raw_path": f"{BASE}/steam/informations".encode(),
        "root_path": "",
        "query_string": b"message=x",
        "headers": [(b"host", b"testserver")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }


@pytest.mark.parametrize("spec_version", ["2.4", "2.3"])
def test_real_disconnect_releases_upstream(chat_client_factory, make_response, spec_version):
    client = chat_client_factory(fragments=[make_response(str(i)) for i in range(100)])
    app = create_app(chat_client=client)
    bodies = []

    async def run():
        first_chunk_sent = asyncio.Event()
        request_sent = False

        async def receive():
            nonlocal request_sent
            if not request_sent:
                request_sent = True
                return {"type": "http.request", "body": b"", "more_body": False}
            if spec_version == "2.4":
                # 2.4 下断开通过 send 抛出 OSError 体现，receive 一直挂起
                await asyncio.Event().wait()
            await first_chunk_sent.wait()
            return {"type": "http.disconnect"}

        async def send(message):
            if message["type"] != "http.response.body":
                return
            if bodies and spec_version == "2.4":
                raise OSError("client went away")
            bodies.append(message.get("body", b""))
            first_chunk_sent.set()
            await asyncio.sleep(0)

        with contextlib.suppress(ClientDisconnect, OSError):
            await app(_stream_scope(spec_version), receive, send)

    asyncio.run(run())
    assert bodies
    assert client.delivered < 100
    assert client.stream_closed


def test_upstream_error_body_not_returned_to_caller(monkeypatch):
    class Resp:
        status_code = 500
        text = "internal detail: org-123 sk-abc"

    class Client:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, *a, **kw):
            return Resp()

    class SettingsStub:
        openai_api_key = "sk-test-0123456789"
        openai_base_url = "https://api.openai.com/v1"
        openai_model = "gpt-3.5-turbo"
        openai_temperature = 0.7
        http_timeout = 1.0

    monkeypatch.setattr("httpx.AsyncClient", Client)
    resp = _client(OpenAiChatClient(SettingsStub())).get(f"{BASE}/informations")
    assert resp.status_code == 502
    assert resp.json() == {"code": "API_ERROR", "message": "OpenAI API error (status 500)"}


def test_module_level_app_serves_routes():
    from bookstore_assistant.api.app import app

    paths = {route.path for route in app.routes}
    assert {
        f"{BASE}/informations",
        f"{BASE}/steam/informations",
        f"{BASE}/reviews",
    } <= paths
