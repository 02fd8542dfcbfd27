from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.timeutil import utc_field


class Subscription(SQLModel, table=True):
    """Kullanıcı başına tek abonelik; analiz kotası burada tutulur."""
    __tablename__ = "subscriptions"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", unique=True, index=True)
    plan: str = Field(foreign_key="plans.id")
    status: str = "active"  # active | cancelled | expired
    start_date: datetime = utc_field()
    end_date: datetime = utc_field(auto=False)
    analysis_limit: int = 0
    analysis_used: int = 0
    created_at: datetime = utc_field()
