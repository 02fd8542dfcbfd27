from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utc_field


class AnalysisResult(SQLModel, table=True):
    __tablename__ = "analysis_results"
    id: int | None = Field(default=None, primary_key=True)
    analysis_id: str = Field(foreign_key="analyses.id", index=True)
    category: str
    result: str
    confidence_score: float | None = None  # 0..1
    justification: str | None = None
    ai_model: str | None = None
    created_at: datetime = utc_field()
