"""Status gate: poll + push convergence, teardown, refresh and monotonic status."""
import asyncio

import pytest

from app.client.status_gate import GateClosed, GateConfigError, StatusGate, start_gate
from app.client.transport import MalformedStatus, PushEvent, StatusSnapshot

FAST_MS = 10


class ScriptedReader:
    """Sırayla yanıt döner; son yanıt tekrar eder. Exception nesneleri fırlatılır."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    async def read(self, job_id: str) -> StatusSnapshot:
        self.calls += 1
        item = self.responses[min(self.calls - 1, len(self.responses) - 1)]
        if isinstance(item, Exception):
            raise item
        return StatusSnapshot(id=job_id, **item)


class QueuePush:
    def __init__(self, fail_with: Exception | None = None):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.fail_with = fail_with
        self.joined: list[str] = []
        self.close_calls = 0

    async def events(self, owner_id: str):
        self.joined.append(owner_id)
        if self.fail_with is not None:
            raise self.fail_with
        while True:
            yield await self.queue.get()

    async def close(self) -> None:
        self.close_calls += 1


def pending():
    return {"status": "pending"}


def processing():
    return {"status": "processing"}


def completed(count=7, confidence=0.83):
    return {"status": "completed", "result_count": count, "aggregate_confidence": confidence}


@pytest.mark.asyncio
async def test_a1_resolves_ready_after_pending_processing_completed():
    reader = ScriptedReader([pending(), processing(), completed()])
    seen = []
    done = []
    gate = StatusGate(reader, poll_interval_ms=FAST_MS, on_change=seen.append, on_done=done.append)
    gate.start("doc-7", "A1")

    outcome = await gate.wait(timeout=2)

    assert outcome.status == "completed"
    assert outcome.results_ready is True
    assert outcome.result_count == 7
    assert outcome.confidence == pytest.approx(0.83)
    assert gate.snapshot() == {"status": "completed", "results_ready": True, "error": None}
    assert seen == ["processing", "completed"]
    assert done == [outcome]


@pytest.mark.asyncio
async def test_failed_on_first_tick_stops_polling():
    reader = ScriptedReader([{"status": "failed"}])
    errors = []
    gate = StatusGate(reader, poll_interval_ms=FAST_MS, on_error=errors.append)
    gate.start("doc-7", "A1")

    outcome = await gate.wait(timeout=2)
    await asyncio.sleep(FAST_MS * 5 / 1000)

    assert outcome.status == "failed"
    assert gate.results_ready is False
    assert gate.error
    assert reader.calls == 1
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_missing_job_id_is_configuration_error_without_network():
    reader = ScriptedReader([pending()])
    push = QueuePush()
    errors = []
    gate = StatusGate(reader, push, poll_interval_ms=FAST_MS, on_error=errors.append)

    with pytest.raises(GateConfigError):
        gate.start("doc-7", None)
    await asyncio.sleep(FAST_MS * 3 / 1000)

    assert gate.error
    assert reader.calls == 0
    assert push.joined == []
    assert isinstance(errors[0], GateConfigError)


def test_start_gate_without_job_id_opens_no_client():
    with pytest.raises(GateConfigError):
        start_gate("http://127.0.0.1:1", "doc-7", "")


@pytest.mark.asyncio
async def test_push_event_short_circuits_and_stops_polling():
    reader = ScriptedReader([processing()])
    push = QueuePush()
    gate = StatusGate(reader, push, poll_interval_ms=20)
    gate.start("doc-7", "A1")
    await asyncio.sleep(0.05)

    await push.queue.put(PushEvent(event="analysis_completed", data={"analysisId": "OTHER", "resultsCount": 3}))
    await push.queue.put(
        PushEvent(event="analysis_completed", data={"analysisId": "A1", "resultsCount": 7, "confidence": 0.83, "title": "Case"})
    )
    outcome = await gate.wait(timeout=2)
    calls_at_resolution = reader.calls
    await asyncio.sleep(0.1)

    assert outcome.results_ready is True
    assert outcome.result_count == 7
    assert outcome.title == "Case"
    assert reader.calls == calls_at_resolution
    assert push.joined == ["doc-7"]
    assert push.close_calls == 1


@pytest.mark.asyncio
async def test_push_failure_event_resolves_failed():
    reader = ScriptedReader([processing()])
    push = QueuePush()
    gate = StatusGate(reader, push, poll_interval_ms=50)
    gate.start("doc-7", "A1")
    await push.queue.put(PushEvent(event="analysis_failed", data={"analysisId": "A1", "error": "model unavailable"}))

    outcome = await gate.wait(timeout=2)
    assert outcome.status == "failed"
    assert outcome.error == "model unavailable"


@pytest.mark.asyncio
async def test_push_transport_down_polling_still_resolves():
    reader = ScriptedReader([pending(), processing(), completed(count=2)])
    push = QueuePush(fail_with=ConnectionRefusedError("no socket"))
    gate = StatusGate(reader, push, poll_interval_ms=FAST_MS)
    gate.start("doc-7", "A1")

    outcome = await gate.wait(timeout=2)
    assert outcome.results_ready is True
    assert outcome.result_count == 2


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    reader = ScriptedReader([ConnectionError("down"), MalformedStatus("bad body"), pending(), completed()])
    gate = StatusGate(reader, poll_interval_ms=FAST_MS)
    gate.start("doc-7", "A1")

    outcome = await gate.wait(timeout=2)
    assert outcome.results_ready is True
    assert reader.calls == 4


@pytest.mark.asyncio
async def test_completed_without_results_keeps_polling():
    reader = ScriptedReader([completed(count=0), completed(count=0), completed(count=4)])
    gate = StatusGate(reader, poll_interval_ms=FAST_MS)
    gate.start("doc-7", "A1")

    outcome = await gate.wait(timeout=2)
    assert outcome.result_count == 4
    assert reader.calls == 3


@pytest.mark.asyncio
async def test_push_completed_without_results_is_not_ready():
    reader = ScriptedReader([processing(), processing(), completed(count=3)])
    push = QueuePush()
    gate = StatusGate(reader, push, poll_interval_ms=30)
    gate.start("doc-7", "A1")
    await push.queue.put(PushEvent(event="analysis_completed", data={"analysisId": "A1", "resultsCount": 0}))
    await asyncio.sleep(0.01)

    assert gate.resolved is False
    assert gate.status == "processing"
    outcome = await gate.wait(timeout=2)
    assert outcome.results_ready is True
    assert outcome.result_count == 3
    assert reader.calls == 3


@pytest.mark.asyncio
async def test_close_twice_is_safe_and_silences_callbacks():
    reader = ScriptedReader([pending(), completed()])
    push = QueuePush()
    done = []
    gate = StatusGate(reader, push, poll_interval_ms=FAST_MS, on_done=done.append)
    gate.start("doc-7", "A1")

    gate.close()
    before = gate.snapshot()
    gate.close()
    await asyncio.sleep(FAST_MS * 5 / 1000)

    assert gate.snapshot() == before
    assert done == []
    assert reader.calls == 0
    with pytest.raises(GateClosed):
        await gate.wait(timeout=1)


@pytest.mark.asyncio
async def test_close_after_resolution_changes_nothing():
    reader = ScriptedReader([completed()])
    gate = StatusGate(reader, poll_interval_ms=FAST_MS)
    gate.start("doc-7", "A1")
    await gate.wait(timeout=2)
    before = gate.snapshot()

    gate.close()
    gate.close()
    assert gate.snapshot() == before


@pytest.mark.asyncio
async def test_refresh_before_first_tick_does_not_double_poll():
    reader = ScriptedReader([processing()])
    gate = StatusGate(reader, poll_interval_ms=300)
    gate.start("doc-7", "A1")

    state = await gate.refresh()
    assert state == {"status": "processing", "results_ready": False, "error": None}
    await asyncio.sleep(0.1)
    # refresh + döngünün ilk okuması; ikinci bir zamanlayıcı yok
    assert reader.calls == 2
    await asyncio.sleep(0.3)
    assert reader.calls == 3
    gate.close()


@pytest.mark.asyncio
async def test_stale_read_never_moves_status_backwards():
    reader = ScriptedReader([processing(), pending(), processing(), completed()])
    seen = []
    gate = StatusGate(reader, poll_interval_ms=FAST_MS, on_change=seen.append)
    gate.start("doc-7", "A1")

    await gate.wait(timeout=2)
    assert seen == ["processing", "completed"]


@pytest.mark.asyncio
async def test_poll_after_push_resolution_is_ignored():
    reader = ScriptedReader([processing(), {"status": "failed"}])
    push = QueuePush()
    done = []
    gate = StatusGate(reader, push, poll_interval_ms=30, on_done=done.append)
    gate.start("doc-7", "A1")
    await push.queue.put(PushEvent(event="analysis_completed", data={"analysisId": "A1", "resultsCount": 7}))

    await gate.wait(timeout=2)
    await asyncio.sleep(0.1)
    assert gate.status == "completed"
    assert len(done) == 1
