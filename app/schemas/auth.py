from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class UserCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6)
    crm: str = Field(min_length=2, max_length=50)
    phone: str | None = None
    specialty: str | None = None
    avatar: str | None = None

    @field_validator("email", mode="after")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("name", "crm", mode="before")
    @classmethod
    def strip_text(cls, v: str | None) -> str:
        return (v or "").strip()


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    crm: str
    specialty: str | None = None
    phone: str | None = None
    avatar: str | None = None
    role: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    token: str
    user: UserResponse


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    phone: str | None = None
    specialty: str | None = None
    avatar: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


class UserStats(BaseModel):
    total_analyses: int
    completed_analyses: int
    processing_analyses: int
    total_patients: int
