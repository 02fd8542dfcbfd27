"""Analize eklenen görsel/belge (röntgen, fotoğraf, PDF)."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utc_field


class MedicalImage(SQLModel, table=True):
    __tablename__ = "medical_images"
    id: int | None = Field(default=None, primary_key=True)
    analysis_id: str = Field(foreign_key="analyses.id", index=True)
    filename: str
    original_name: str
    file_path: str
    file_size: int = 0
    mime_type: str
    image_type: str = "photo"  # xray | mri | ct | ultrasound | photo | other
    created_at: datetime = utc_field()
