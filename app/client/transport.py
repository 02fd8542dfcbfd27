"""
Durum kapısının iki sinyal kaynağı:
- HttpStatusReader: GET /api/analysis/{id}/status (httpx)
- WebSocketPushChannel: /ws/notifications odasına katılır, olayları akıtır (websockets)
"""
import json
import logging
from typing import AsyncIterator, Protocol
from urllib.parse import urlencode

import httpx
import websockets
from pydantic import BaseModel, ValidationError, field_validator

from app.models.analysis import ANALYSIS_STATUSES

logger = logging.getLogger(__name__)

EVENT_JOIN = "join_doctor_room"


class MalformedStatus(Exception):
    """Durum yanıtı beklenen şekilde değil; kapı bunu geçici hata sayar."""


class PushRejected(Exception):
    """Sunucu odaya katılmayı reddetti (error olayı)."""


class StatusSnapshot(BaseModel):
    id: str
    status: str
    result_count: int = 0
    aggregate_confidence: float | None = None
    title: str | None = None
    owner_id: str | None = None

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        if v not in ANALYSIS_STATUSES:
            raise ValueError(f"unknown status {v!r}")
        return v


class PushEvent(BaseModel):
    event: str
    data: dict = {}

    @property
    def analysis_id(self) -> str | None:
        value = self.data.get("analysisId")
        return str(value) if value is not None else None


class StatusReader(Protocol):
    async def read(self, job_id: str) -> StatusSnapshot: ...


class PushChannel(Protocol):
    def events(self, owner_id: str) -> AsyncIterator[PushEvent]: ...

    async def close(self) -> None: ...


def _auth_headers(token: str | None) -> dict:
    return {"Authorization": f"Bearer {token}"} if token else {}


class HttpStatusReader:
    def __init__(
        self,
        api_base: str,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=api_base.rstrip("/"),
            headers=_auth_headers(token),
            timeout=timeout,
            transport=transport,
        )

    async def read(self, job_id: str) -> StatusSnapshot:
        """2xx dışı yanıtta httpx.HTTPStatusError, bozuk gövdede MalformedStatus."""
        resp = await self._client.get(f"/api/analysis/{job_id}/status")
        resp.raise_for_status()
        try:
            return StatusSnapshot.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise MalformedStatus(f"job {job_id}: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def ws_url_from_api_base(api_base: str) -> str:
    base = api_base.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return base + "/ws/notifications"


class WebSocketPushChannel:
    def __init__(self, ws_url: str, token: str | None = None, open_timeout: float = 10.0):
        self._url = f"{ws_url}?{urlencode({'token': token})}" if token else ws_url
        self._open_timeout = open_timeout
        self._ws = None
        self._closed = False

    async def events(self, owner_id: str) -> AsyncIterator[PushEvent]:
        """Odaya katılır ve gelen olayları verir. Bağlantı hatası çağırana yükselir."""
        if self._closed:
            return
        async with websockets.connect(self._url, open_timeout=self._open_timeout) as ws:
            self._ws = ws
            await ws.send(json.dumps({"event": EVENT_JOIN, "doctor_id": str(owner_id)}))
            async for raw in ws:
                try:
                    message = json.loads(raw)
                    event = PushEvent.model_validate(message)
                except (ValueError, ValidationError):
                    logger.debug("push channel ignored malformed message: %r", raw)
                    continue
                if event.event == "error":
                    raise PushRejected(event.data.get("message") or "push subscription rejected")
                yield event

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._ws is not None:
            await self._ws.close()
