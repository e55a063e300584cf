"""HTTP-level tests for the chat and stream endpoints."""
import asyncio

import httpx
import pytest

from config.settings import Settings
from main import build_services, create_app
from services.chat.errors import UpstreamError
from .conftest import FakeStream, FakeUpstream, data_line, drain_events


def _app(upstream):
    app = create_app(Settings(api_key="test-key", keepalive_seconds=0.01))
    build_services(app, app.state.settings, upstream)
    return app


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{}, {"sessionId": "s1"}, {"message": "hi"}, {"sessionId": "", "message": "hi"}])
async def test_chat_requires_session_and_message(body):
    app = _app(FakeUpstream())
    async with _client(app) as client:
        response = await client.post("/chat", json=body)

    assert response.status_code == 400
    assert response.json()["detail"] == "sessionId and message are required"


@pytest.mark.asyncio
async def test_chat_without_channel_is_client_error():
    upstream = FakeUpstream()
    app = _app(upstream)
    async with _client(app) as client:
        response = await client.post("/chat", json={"sessionId": "unknown", "message": "hi"})

    assert response.status_code == 400
    assert upstream.calls == []
    assert "unknown" not in app.state.session_registry


@pytest.mark.asyncio
async def test_chat_upstream_failure_is_server_error():
    app = _app(FakeUpstream(error=UpstreamError("Upstream API error: 503 Service Unavailable")))
    channel = app.state.channel_manager.open("s1")
    drain_events(channel)

    async with _client(app) as client:
        response = await client.post("/chat", json={"sessionId": "s1", "message": "hi"})

    assert response.status_code == 500
    assert "503" in response.json()["detail"]
    assert [e["type"] for e in drain_events(channel)] == ["error"]


@pytest.mark.asyncio
async def test_chat_acknowledges_and_streams_to_channel():
    stream = FakeStream([data_line("Hel"), data_line("lo"), "data: [DONE]"])
    app = _app(FakeUpstream(stream))
    channel = app.state.channel_manager.open("s1")

    async with _client(app) as client:
        response = await client.post("/chat", json={"sessionId": "s1", "message": "hi"})
    assert response.status_code == 200
    assert response.json() == {"success": True}

    await asyncio.gather(*app.state.relay.pending)

    assert drain_events(channel) == [
        {"type": "connected"},
        {"type": "chunk", "content": "Hel"},
        {"type": "chunk", "content": "lo"},
        {"type": "complete"},
    ]
    assert app.state.session_registry.history_messages("s1") == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello"},
    ]


@pytest.mark.asyncio
async def test_stream_requires_session_id():
    app = _app(FakeUpstream())
    async with _client(app) as client:
        response = await client.get("/stream")

    assert response.status_code == 400
    assert response.json()["detail"] == "sessionId is required"
    assert len(app.state.session_registry) == 0


@pytest.mark.asyncio
async def test_health_reports_sessions():
    app = _app(FakeUpstream())
    app.state.channel_manager.open("s1")
    async with _client(app) as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "sessions": 1, "upstream_configured": True}


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {},
    {"content": b"not json", "headers": {"content-type": "application/json"}},
    {"json": {"sessionId": "s1", "message": ["hi"]}},
])
async def test_malformed_chat_body_is_client_error(kwargs):
    upstream = FakeUpstream()
    app = _app(upstream)
    app.state.channel_manager.open("s1")
    async with _client(app) as client:
        response = await client.post("/chat", **kwargs)

    assert response.status_code == 400
    assert upstream.calls == []
    assert app.state.session_registry.get_or_create_history("s1") == []


def test_app_logger_follows_module_name():
    import main

    assert main.LOGGER.name == main.__name__
