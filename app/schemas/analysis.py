from datetime import datetime

from pydantic import BaseModel


class AnalysisStatusResponse(BaseModel):
    """Job Store okuma yüzeyi; istemcideki durum kapısı bunu poll eder."""
    id: str
    status: str
    result_count: int = 0
    aggregate_confidence: float | None = None
    title: str
    owner_id: str


class AnalysisResultItem(BaseModel):
    id: int
    category: str
    result: str
    confidence_score: float | None = None
    justification: str | None = None
    ai_model: str | None = None
    created_at: datetime


class MedicalImageItem(BaseModel):
    id: int
    filename: str
    original_name: str
    image_type: str
    mime_type: str
    created_at: datetime


class PatientSummary(BaseModel):
    id: int
    name: str
    email: str | None = None


class AnalysisListItem(BaseModel):
    id: str
    title: str
    description: str | None = None
    symptoms: str | None = None
    status: str
    ai_confidence_score: float | None = None
    created_at: datetime
    updated_at: datetime | None = None
    patient: PatientSummary | None = None
    results_count: int = 0
    images_count: int = 0
    diagnosis: str


class AnalysisDetail(BaseModel):
    id: str
    title: str
    description: str | None = None
    symptoms: str | None = None
    status: str
    ai_confidence_score: float | None = None
    error_message: str | None = None
    patient_id: int | None = None
    doctor_id: int
    created_at: datetime
    updated_at: datetime | None = None
    patient: PatientSummary | None = None
    results: list[AnalysisResultItem] = []
    images: list[MedicalImageItem] = []


class AnalysisCreated(BaseModel):
    message: str
    analysis: AnalysisDetail
