"""HTTP status reader against a mocked transport; push channel against a live server."""
import asyncio
import socket
import threading
import time
import uuid

import httpx
import pytest
import uvicorn

from app.client.transport import (
    HttpStatusReader,
    MalformedStatus,
    PushEvent,
    PushRejected,
    WebSocketPushChannel,
    ws_url_from_api_base,
)
from app.main import app


def _reader(handler) -> HttpStatusReader:
    return HttpStatusReader("http://api.test/", token="tok-123", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_read_parses_status_and_sends_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(
            200,
            json={
                "id": "A1",
                "status": "completed",
                "result_count": 7,
                "aggregate_confidence": 0.83,
                "title": "Case",
                "owner_id": "doc-7",
            },
        )

    reader = _reader(handler)
    snap = await reader.read("A1")
    await reader.aclose()

    assert seen == {"url": "http://api.test/api/analysis/A1/status", "auth": "Bearer tok-123"}
    assert snap.status == "completed"
    assert snap.result_count == 7
    assert snap.aggregate_confidence == 0.83
    assert snap.owner_id == "doc-7"


@pytest.mark.asyncio
async def test_non_2xx_raises():
    reader = _reader(lambda request: httpx.Response(404, json={"error": "Analysis not found."}))
    with pytest.raises(httpx.HTTPStatusError):
        await reader.read("A1")
    await reader.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json={"id": "A1", "status": "exploded"}),
        httpx.Response(200, json={"status": "pending"}),
        httpx.Response(200, json=["pending"]),
    ],
)
async def test_malformed_body_raises_malformed_status(response):
    reader = _reader(lambda request: response)
    with pytest.raises(MalformedStatus):
        await reader.read("A1")
    await reader.aclose()


def test_ws_url_from_api_base():
    assert ws_url_from_api_base("http://localhost:8000/") == "ws://localhost:8000/ws/notifications"
    assert ws_url_from_api_base("https://api.example.com") == "wss://api.example.com/ws/notifications"


def test_push_event_analysis_id():
    assert PushEvent(event="analysis_completed", data={"analysisId": "A1"}).analysis_id == "A1"
    assert PushEvent(event="joined", data={"doctor_id": "7"}).analysis_id is None


@pytest.mark.asyncio
async def test_push_channel_close_is_idempotent_before_connect():
    channel = WebSocketPushChannel("ws://127.0.0.1:1/ws/notifications", token="tok")
    await channel.close()
    await channel.close()
    # kapalı kanal hiç bağlanmaz
    assert [e async for e in channel.events("7")] == []


@pytest.fixture
def live_server():
    """Uygulamayı gerçek bir portta ayrı thread'de çalıştırır (websockets istemcisi için)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    server = uvicorn.Server(uvicorn.Config(app, log_level="warning", lifespan="on"))
    thread = threading.Thread(target=server.run, kwargs={"sockets": [sock]}, daemon=True)
    thread.start()
    deadline = time.monotonic() + 10
    while not server.started:
        if time.monotonic() > deadline or not thread.is_alive():
            raise RuntimeError("live server did not start")
        time.sleep(0.05)
    yield f"http://127.0.0.1:{port}"
    server.should_exit = True
    thread.join(timeout=10)
    sock.close()


async def _next_event(events) -> PushEvent:
    return await asyncio.wait_for(events.__anext__(), timeout=10)


@pytest.mark.asyncio
async def test_push_channel_against_notifications_route(live_server: str):
    suffix = uuid.uuid4().hex[:10]
    async with httpx.AsyncClient(base_url=live_server, timeout=10) as http:
        r = await http.post(
            "/api/auth/register",
            json={"name": "Dr. Push", "email": f"push-{suffix}@example.com", "password": "test123456", "crm": f"P-{suffix}"},
        )
        assert r.status_code == 200, r.text
        token = r.json()["token"]
        doctor_id = str(r.json()["user"]["id"])
        ws_url = ws_url_from_api_base(live_server)

        # başka doktorun odası: sunucu error olayı döner
        foreign = WebSocketPushChannel(ws_url, token=token)
        with pytest.raises(PushRejected):
            await _next_event(foreign.events(str(int(doctor_id) + 1000)))
        await foreign.close()

        channel = WebSocketPushChannel(ws_url, token=token)
        events = channel.events(doctor_id)
        joined = await _next_event(events)
        assert joined.event == "joined"
        assert joined.data == {"doctor_id": doctor_id}

        created = await http.post("/api/analysis", data={"title": "Chest pain"}, headers={"Authorization": f"Bearer {token}"})
        assert created.status_code == 201
        job_id = created.json()["analysis"]["id"]

        event = await _next_event(events)
        assert event.event == "analysis_completed"
        assert event.analysis_id == job_id
        assert event.data["resultsCount"] == 7

        await events.aclose()
        await channel.close()
        await channel.close()
