"""
Durum kapısı: bir analiz işinin terminal sonucunu (hazır / başarısız) tam bir kez çözer.

İki kaynak birlikte çalışır: sabit aralıklı polling ve best-effort push. Hangisi önce terminal
durumu görürse kazanır; _resolved bayrağı diğerinin sonraki sinyalini etkisiz kılar.
Geçici hatalar (ağ, bozuk yanıt, push bağlantısı) kapı içinde kalır; dışarıya yalnızca
iki terminal sonuç ve yapılandırma hatası çıkar.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from app.client.transport import (
    HttpStatusReader,
    PushChannel,
    PushEvent,
    StatusReader,
    StatusSnapshot,
    WebSocketPushChannel,
    ws_url_from_api_base,
)
from app.core.config import settings
from app.core.notifier import EVENT_ANALYSIS_COMPLETED, EVENT_ANALYSIS_FAILED
from app.models.analysis import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, STATUS_PROCESSING

logger = logging.getLogger(__name__)

# Gözlenen durum geri gitmez: düşük sıralı bir okuma bayat kabul edilir
STATUS_RANK = {STATUS_PENDING: 0, STATUS_PROCESSING: 1, STATUS_COMPLETED: 2, STATUS_FAILED: 2}


class GateConfigError(ValueError):
    pass


class AnalysisFailed(Exception):
    pass


class GateClosed(Exception):
    """Kapı terminal sonuca ulaşmadan kapatıldı."""


@dataclass(frozen=True)
class GateOutcome:
    status: str
    results_ready: bool
    error: str | None
    result_count: int
    confidence: float | None
    title: str | None


class StatusGate:
    def __init__(
        self,
        reader: StatusReader,
        push: PushChannel | None = None,
        *,
        poll_interval_ms: int | None = None,
        on_done: Callable[[GateOutcome], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_change: Callable[[str], None] | None = None,
        owned: tuple = (),
    ):
        self._reader = reader
        self._push = push
        interval = settings.status_poll_interval_ms if poll_interval_ms is None else poll_interval_ms
        self._interval = max(interval, 0) / 1000.0
        self._on_done = on_done
        self._on_error = on_error
        self._on_change = on_change
        # kapanışta aclose() edilecek kaynaklar (start_gate'in açtığı http istemcisi gibi)
        self._owned = owned

        self.status = STATUS_PENDING
        self.results_ready = False
        self.error: str | None = None
        self.result_count = 0
        self.confidence: float | None = None
        self.title: str | None = None

        self.owner_id: str | None = None
        self.job_id: str | None = None
        self._started = False
        self._resolved = False
        self._closed = False
        self._poll_task: asyncio.Task | None = None
        self._push_task: asyncio.Task | None = None
        self._cleanup_tasks: set[asyncio.Task] = set()
        self._outcome: asyncio.Future | None = None

    @property
    def resolved(self) -> bool:
        return self._resolved

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> dict:
        return {"status": self.status, "results_ready": self.results_ready, "error": self.error}

    def start(self, owner_id: str | None, job_id: str | None) -> None:
        """Çalışan bir event loop içinde çağrılmalı. job_id yoksa ağa dokunmadan GateConfigError."""
        if self._started:
            raise RuntimeError("gate already started")
        if not job_id:
            exc = GateConfigError("job id is required")
            self.error = str(exc)
            self._closed = True
            self._notify_error(exc)
            raise exc
        loop = asyncio.get_running_loop()
        self._started = True
        self.owner_id = str(owner_id) if owner_id is not None else None
        self.job_id = str(job_id)
        self._outcome = loop.create_future()
        self._poll_task = loop.create_task(self._poll_loop())
        if self._push is not None and self.owner_id is not None:
            self._push_task = loop.create_task(self._push_loop())

    async def wait(self, timeout: float | None = None) -> GateOutcome:
        if self._outcome is None:
            raise RuntimeError("gate not started")
        return await asyncio.wait_for(asyncio.shield(self._outcome), timeout)

    async def refresh(self) -> dict:
        """Tek seferlik okuma; çalışan döngünün fazına dokunmaz."""
        if self._started and not self._closed and not self._resolved:
            await self._read_once()
        return self.snapshot()

    def close(self) -> None:
        """Tekrar çağrılabilir; ilk tick'ten önce de güvenli. Sonrasında callback çağrılmaz."""
        if self._closed:
            return
        self._closed = True
        self._teardown()
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_exception(GateClosed(f"gate for job {self.job_id} closed"))
            # bekleyen yoksa "exception never retrieved" uyarısı çıkmasın
            self._outcome.exception()

    async def _poll_loop(self) -> None:
        while not self._resolved and not self._closed:
            await self._read_once()
            if self._resolved or self._closed:
                break
            await asyncio.sleep(self._interval)

    async def _read_once(self) -> None:
        try:
            snap = await self._reader.read(self.job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # geçici: bir sonraki tick'te tekrar denenir
            logger.debug("status read failed job=%s: %s", self.job_id, e)
            return
        self._apply_snapshot(snap)

    def _apply_snapshot(self, snap: StatusSnapshot) -> None:
        if self._resolved or self._closed:
            return
        if snap.id != self.job_id:
            logger.debug("status read for another job ignored: %s", snap.id)
            return
        if STATUS_RANK[snap.status] < STATUS_RANK[self.status]:
            return
        if self.status in (STATUS_COMPLETED, STATUS_FAILED) and snap.status != self.status:
            return
        self._set_status(snap.status)
        self.result_count = snap.result_count
        self.confidence = snap.aggregate_confidence
        if snap.title is not None:
            self.title = snap.title
        if snap.status == STATUS_COMPLETED and snap.result_count > 0:
            self._resolve_ready()
        elif snap.status == STATUS_FAILED:
            self._resolve_failed("Analysis failed.")

    async def _push_loop(self) -> None:
        try:
            async for event in self._push.events(self.owner_id):
                if self._resolved or self._closed:
                    break
                self._apply_push(event)
                if self._resolved:
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # push kanalı yok: polling tek başına çözer
            logger.info("push channel unavailable owner=%s, polling only: %s", self.owner_id, e)

    def _apply_push(self, event: PushEvent) -> None:
        if event.analysis_id != self.job_id:
            return
        if self.status in (STATUS_COMPLETED, STATUS_FAILED):
            target = STATUS_COMPLETED if event.event == EVENT_ANALYSIS_COMPLETED else STATUS_FAILED
            if target != self.status:
                return
        if event.event == EVENT_ANALYSIS_COMPLETED:
            count = event.data.get("resultsCount")
            # sonuçsuz completed hazır sayılmaz; karar polling'e kalır
            if not isinstance(count, int) or count <= 0:
                return
            self._set_status(STATUS_COMPLETED)
            self.result_count = count
            if event.data.get("confidence") is not None:
                self.confidence = event.data["confidence"]
            if event.data.get("title"):
                self.title = event.data["title"]
            self._resolve_ready()
        elif event.event == EVENT_ANALYSIS_FAILED:
            self._set_status(STATUS_FAILED)
            self._resolve_failed(event.data.get("error") or "Analysis failed.")

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        if self._on_change:
            self._on_change(status)

    def _resolve_ready(self) -> None:
        if self._resolved:
            return
        self._resolved = True
        self.results_ready = True
        self.error = None
        outcome = self._outcome_value()
        self._teardown()
        self._outcome.set_result(outcome)
        if self._on_done:
            self._on_done(outcome)

    def _resolve_failed(self, reason: str) -> None:
        if self._resolved:
            return
        self._resolved = True
        self.results_ready = False
        self.error = reason
        outcome = self._outcome_value()
        self._teardown()
        self._outcome.set_result(outcome)
        if self._on_done:
            self._on_done(outcome)
        self._notify_error(AnalysisFailed(reason))

    def _notify_error(self, exc: Exception) -> None:
        if self._on_error:
            self._on_error(exc)

    def _outcome_value(self) -> GateOutcome:
        return GateOutcome(
            status=self.status,
            results_ready=self.results_ready,
            error=self.error,
            result_count=self.result_count,
            confidence=self.confidence,
            title=self.title,
        )

    def _teardown(self) -> None:
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in (self._poll_task, self._push_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        closers = [self._push.close] if self._push is not None and self._started else []
        closers += [r.aclose for r in self._owned]
        self._owned = ()
        for closer in closers:
            self._schedule(closer())

    def _schedule(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_done)

    def _cleanup_done(self, task: asyncio.Task) -> None:
        self._cleanup_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("gate cleanup failed: %s", task.exception())


def start_gate(
    api_base: str,
    owner_id: str,
    job_id: str,
    token: str | None = None,
    poll_interval_ms: int | None = None,
    ws_url: str | None = None,
    on_done: Callable[[GateOutcome], None] | None = None,
    on_error: Callable[[Exception], None] | None = None,
) -> StatusGate:
    """HTTP okuyucu + WebSocket push ile kapıyı kurar ve başlatır."""
    if not job_id:
        # ağ istemcisi hiç açılmadan
        exc = GateConfigError("job id is required")
        if on_error:
            on_error(exc)
        raise exc
    reader = HttpStatusReader(api_base, token=token)
    push = WebSocketPushChannel(ws_url or ws_url_from_api_base(api_base), token=token)
    gate = StatusGate(
        reader,
        push,
        poll_interval_ms=poll_interval_ms,
        on_done=on_done,
        on_error=on_error,
        owned=(reader,),
    )
    gate.start(owner_id, job_id)
    return gate
