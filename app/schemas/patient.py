from datetime import date, datetime

from pydantic import BaseModel, Field


class PatientCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    gender: str | None = None
    medical_history: str | None = None
    allergies: str | None = None


class PatientAnalysisItem(BaseModel):
    id: str
    title: str
    status: str
    ai_confidence_score: float | None = None
    results_count: int = 0
    created_at: datetime


class PatientResponse(BaseModel):
    id: int
    name: str
    email: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    gender: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    created_at: datetime
    analyses: list[PatientAnalysisItem] = []
