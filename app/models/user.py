from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utc_field


class User(SQLModel, table=True):
    """Doktor hesabı. Analizlerin sahibi; bildirim odası bu id ile anahtarlanır."""
    __tablename__ = "users"
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    name: str = ""
    crm: str = Field(unique=True, index=True)  # mesleki kayıt numarası
    specialty: str | None = None
    phone: str | None = None
    avatar: str | None = None
    role: str | None = None
    is_active: bool = True
    created_at: datetime | None = utc_field()
    last_login_at: datetime | None = utc_field(auto=False, default=None)
