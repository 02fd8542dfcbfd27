"""UTC zaman damgaları: tüm kolonlar timezone-aware yazılır."""
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlmodel import Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite offset saklamaz; okunan naive değer UTC kabul edilir."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_field(*, auto: bool = True, **kwargs):
    """DateTime(timezone=True) kolonu; auto=True ise varsayılan şu an."""
    if auto:
        kwargs.setdefault("default_factory", utcnow)
    return Field(sa_type=DateTime(timezone=True), **kwargs)
