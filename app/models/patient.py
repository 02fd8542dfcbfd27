from datetime import date, datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utc_field


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    id: int | None = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="users.id", index=True)
    name: str
    email: str | None = None
    phone: str | None = None
    birth_date: date | None = None
    gender: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    created_at: datetime = utc_field()
