"""Job Store transitions and the invariants of the completed state."""
import uuid

import pytest
from sqlmodel import Session

from app.core.database import engine, init_db
from app.core.security import hash_password
from app.models import Analysis, User
from app.services import job_store
from app.services.job_store import InvalidTransition, clamp01


@pytest.fixture
def db():
    init_db()
    with Session(engine) as session:
        yield session


@pytest.fixture
def job(db: Session) -> Analysis:
    suffix = uuid.uuid4().hex[:10]
    user = User(email=f"store-{suffix}@example.com", hashed_password=hash_password("x123456"), name="Store", crm=f"S-{suffix}")
    db.add(user)
    db.commit()
    db.refresh(user)
    analysis = Analysis(title="Store job", doctor_id=user.id)
    db.add(analysis)
    db.commit()
    db.refresh(analysis)
    return analysis


RESULTS = [
    {"category": "Main Diagnosis", "result": "Pneumonia", "confidence": 0.9, "justification": "x"},
    {"category": "Etiology", "result": "Bacterial", "confidence": 0.7},
]


def test_new_job_is_pending(job: Analysis):
    assert job.status == "pending"
    assert job.ai_confidence_score is None


def test_pending_processing_completed(db: Session, job: Analysis):
    job_store.mark_processing(db, job)
    rows = job_store.mark_completed(db, job, RESULTS, ai_model="test")
    assert job.status == "completed"
    assert len(rows) == 2
    assert job.ai_confidence_score == pytest.approx(0.8)
    assert job_store.count_results(db, job.id) == 2

    status = job_store.read_status(db, job.id, job.doctor_id)
    assert status == {
        "id": job.id,
        "status": "completed",
        "result_count": 2,
        "aggregate_confidence": pytest.approx(0.8),
        "title": "Store job",
        "owner_id": str(job.doctor_id),
    }


def test_pending_can_fail_directly(db: Session, job: Analysis):
    job_store.mark_failed(db, job, "x" * 800)
    assert job.status == "failed"
    assert len(job.error_message) == 500


def test_completed_needs_processing_first(db: Session, job: Analysis):
    with pytest.raises(InvalidTransition):
        job_store.mark_completed(db, job, RESULTS)


def test_completed_requires_results(db: Session, job: Analysis):
    job_store.mark_processing(db, job)
    with pytest.raises(ValueError):
        job_store.mark_completed(db, job, [])
    assert job.status == "processing"


@pytest.mark.parametrize("terminal", ["completed", "failed"])
def test_terminal_states_do_not_move(db: Session, job: Analysis, terminal: str):
    job_store.mark_processing(db, job)
    if terminal == "completed":
        job_store.mark_completed(db, job, RESULTS)
    else:
        job_store.mark_failed(db, job, "boom")
    with pytest.raises(InvalidTransition):
        job_store.mark_processing(db, job)
    with pytest.raises(InvalidTransition):
        job_store.mark_failed(db, job, "again")
    assert job.status == terminal


def test_read_status_is_owner_scoped(db: Session, job: Analysis):
    assert job_store.read_status(db, job.id, job.doctor_id + 1000) is None
    assert job_store.read_status(db, "missing", job.doctor_id) is None


def test_events(db: Session, job: Analysis):
    job_store.mark_processing(db, job)
    job_store.mark_completed(db, job, RESULTS)
    event = job_store.completion_event(job, 2)
    assert event["analysisId"] == job.id
    assert event["resultsCount"] == 2
    assert event["confidence"] == pytest.approx(0.8)
    assert job_store.failure_event(job)["analysisId"] == job.id


@pytest.mark.parametrize(
    "value,expected",
    [(0.5, 0.5), (1.7, 1.0), (-3, 0.0), ("0.25", 0.25), (None, 0.75), ("abc", 0.75), (float("nan"), 0.75)],
)
def test_clamp01(value, expected):
    assert clamp01(value) == expected
