"""AI analiz işi (job): pending → processing → completed | failed."""
import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utc_field

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
ANALYSIS_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


def _new_id() -> str:
    return str(uuid.uuid4())


class Analysis(SQLModel, table=True):
    __tablename__ = "analyses"
    id: str = Field(default_factory=_new_id, primary_key=True)
    title: str = "Medical Analysis"
    description: str | None = None
    symptoms: str | None = None
    status: str = Field(default=STATUS_PENDING, index=True)
    # Kategori güven skorlarının ortalaması; yalnızca completed ile birlikte yazılır
    ai_confidence_score: float | None = None
    error_message: str | None = None
    patient_id: int | None = Field(default=None, foreign_key="patients.id", index=True)
    doctor_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = utc_field(index=True)
    updated_at: datetime | None = utc_field()

    @property
    def owner_key(self) -> str:
        """Bildirim odası anahtarı (doctor id, string)."""
        return str(self.doctor_id)
