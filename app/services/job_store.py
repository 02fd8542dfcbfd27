"""
Analiz işinin durum geçişleri (Job Store).

Geçiş tablosu tek yönlüdür: pending → processing → completed | failed, ayrıca pending → failed.
completed ve failed terminaldir. Sonuç kayıtları ve ortalama güven skoru yalnızca
completed geçişiyle aynı commit'te yazılır.
"""
import logging

from sqlmodel import Session, func, select

from app.core.timeutil import utcnow
from app.models import Analysis, AnalysisResult
from app.models.analysis import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    STATUS_PENDING: (STATUS_PROCESSING, STATUS_FAILED),
    STATUS_PROCESSING: (STATUS_COMPLETED, STATUS_FAILED),
    STATUS_COMPLETED: (),
    STATUS_FAILED: (),
}

DEFAULT_CONFIDENCE = 0.75


class InvalidTransition(Exception):
    def __init__(self, analysis_id: str, current: str, target: str):
        self.analysis_id = analysis_id
        self.current = current
        self.target = target
        super().__init__(f"analysis {analysis_id}: {current} -> {target} not allowed")


def clamp01(value) -> float:
    """Güven skorunu [0, 1] aralığına sıkıştırır; sayı değilse varsayılan 0.75."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if v != v or v in (float("inf"), float("-inf")):
        return DEFAULT_CONFIDENCE
    return min(max(v, 0.0), 1.0)


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, ())


def _transition(analysis: Analysis, target: str) -> None:
    current = analysis.status
    if not can_transition(current, target):
        raise InvalidTransition(analysis.id, current, target)
    analysis.status = target
    analysis.updated_at = utcnow()


def mark_processing(db: Session, analysis: Analysis) -> Analysis:
    _transition(analysis, STATUS_PROCESSING)
    db.add(analysis)
    db.commit()
    db.refresh(analysis)
    logger.info("analysis=%s status=processing", analysis.id)
    return analysis


def mark_completed(db: Session, analysis: Analysis, results: list[dict], ai_model: str | None = None) -> list[AnalysisResult]:
    """
    results: [{"category", "result", "confidence", "justification"}]. Boş liste kabul edilmez
    (completed durumunda en az bir sonuç olmalı). Sonuçlar + skor + durum tek commit.
    """
    if not results:
        raise ValueError(f"analysis {analysis.id}: completed requires at least one result")
    _transition(analysis, STATUS_COMPLETED)
    rows = [
        AnalysisResult(
            analysis_id=analysis.id,
            category=str(r["category"]),
            result=str(r["result"]),
            confidence_score=clamp01(r.get("confidence", DEFAULT_CONFIDENCE)),
            justification=r.get("justification"),
            ai_model=ai_model,
        )
        for r in results
    ]
    analysis.ai_confidence_score = sum(r.confidence_score for r in rows) / len(rows)
    analysis.error_message = None
    for row in rows:
        db.add(row)
    db.add(analysis)
    db.commit()
    db.refresh(analysis)
    logger.info(
        "analysis=%s status=completed results=%d confidence=%.2f",
        analysis.id,
        len(rows),
        analysis.ai_confidence_score,
    )
    return rows


def mark_failed(db: Session, analysis: Analysis, reason: str | None = None) -> Analysis:
    _transition(analysis, STATUS_FAILED)
    analysis.error_message = (reason or "")[:500] or None
    analysis.ai_confidence_score = None
    db.add(analysis)
    db.commit()
    db.refresh(analysis)
    logger.info("analysis=%s status=failed reason=%s", analysis.id, analysis.error_message)
    return analysis


def count_results(db: Session, analysis_id: str) -> int:
    return db.exec(select(func.count()).select_from(AnalysisResult).where(AnalysisResult.analysis_id == analysis_id)).one()


def get_owned(db: Session, analysis_id: str, doctor_id: int) -> Analysis | None:
    analysis = db.get(Analysis, analysis_id)
    if not analysis or analysis.doctor_id != doctor_id:
        return None
    return analysis


def read_status(db: Session, analysis_id: str, doctor_id: int) -> dict | None:
    """Durum kapısının okuduğu yüzey: {id, status, result_count, aggregate_confidence, title, owner_id}."""
    analysis = get_owned(db, analysis_id, doctor_id)
    if analysis is None:
        return None
    return {
        "id": analysis.id,
        "status": analysis.status,
        "result_count": count_results(db, analysis.id),
        "aggregate_confidence": analysis.ai_confidence_score,
        "title": analysis.title,
        "owner_id": analysis.owner_key,
    }


def completion_event(analysis: Analysis, result_count: int) -> dict:
    return {
        "analysisId": analysis.id,
        "title": analysis.title,
        "confidence": analysis.ai_confidence_score,
        "resultsCount": result_count,
        "message": "Medical AI analysis completed.",
    }


def failure_event(analysis: Analysis) -> dict:
    return {
        "analysisId": analysis.id,
        "title": analysis.title,
        "error": analysis.error_message or "Analysis failed.",
    }
