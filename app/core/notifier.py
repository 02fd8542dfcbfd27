"""
Analiz tamamlanma bildirimleri: doktor id'sine göre gruplanmış bağlantılara push.

Teslimat best-effort: onay yok, tekrar deneme yok, kuyruk yok. O an grupta olmayan bağlantı
olayı kaçırır; istemci bu yüzden polling'i her zaman açık tutar (app/client/status_gate.py).
"""
import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any, Protocol

logger = logging.getLogger(__name__)

EVENT_ANALYSIS_COMPLETED = "analysis_completed"
EVENT_ANALYSIS_FAILED = "analysis_failed"


class ConnectionHandle(Protocol):
    async def send_json(self, data: Any) -> None: ...


class CompletionNotifier:
    def __init__(self) -> None:
        self._groups: dict[str, set[ConnectionHandle]] = defaultdict(set)
        # worker thread'i ile event loop aynı anda üyeliğe dokunabilir
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """publish_threadsafe'in olayları göndereceği loop (lifespan içinde bağlanır)."""
        self._loop = loop

    def subscribe(self, owner_id: str, handle: ConnectionHandle) -> None:
        with self._lock:
            self._groups[str(owner_id)].add(handle)
        logger.info("notifier subscribe owner=%s connections=%d", owner_id, self.count(owner_id))

    def unsubscribe(self, owner_id: str, handle: ConnectionHandle) -> None:
        key = str(owner_id)
        with self._lock:
            group = self._groups.get(key)
            if not group:
                return
            group.discard(handle)
            if not group:
                del self._groups[key]

    def unsubscribe_all(self, handle: ConnectionHandle) -> None:
        """Bağlantı koptuğunda: handle'ı bulunduğu tüm gruplardan çıkarır."""
        with self._lock:
            for key in [k for k, group in self._groups.items() if handle in group]:
                self._groups[key].discard(handle)
                if not self._groups[key]:
                    del self._groups[key]

    def count(self, owner_id: str) -> int:
        with self._lock:
            return len(self._groups.get(str(owner_id), ()))

    def _snapshot(self, owner_id: str) -> list[ConnectionHandle]:
        with self._lock:
            return list(self._groups.get(str(owner_id), ()))

    async def publish(self, owner_id: str, event: str, data: dict) -> int:
        """Gruptaki her bağlantıya {"event", "data"} gönderir. Başarılı gönderim sayısını döner."""
        message = {"event": event, "data": data}
        delivered = 0
        for handle in self._snapshot(owner_id):
            try:
                await handle.send_json(message)
                delivered += 1
            except Exception as e:
                # kopmuş bağlantı: sessizce gruptan düş
                logger.debug("notifier drop connection owner=%s: %s", owner_id, e)
                self.unsubscribe(owner_id, handle)
        logger.info("notifier publish owner=%s event=%s delivered=%d", owner_id, event, delivered)
        return delivered

    def publish_threadsafe(self, owner_id: str, event: str, data: dict) -> bool:
        """Senkron worker'dan çağrılır; loop'a planlar, sonucu beklemez."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("notifier has no running loop, event dropped owner=%s event=%s", owner_id, event)
            return False
        future = asyncio.run_coroutine_threadsafe(self.publish(owner_id, event, data), loop)
        future.add_done_callback(_log_publish_failure)
        return True


def _log_publish_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("notifier publish failed: %s", exc)
