import logging

from sqlalchemy import text
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from .config import settings

log = logging.getLogger(__name__)


def _normalized_database_url(raw_url: str) -> str:
    """
    DATABASE_URL normalizasyonu:
    - postgres:// veya postgresql:// ise psycopg3 dialekti ile çalışacak şekilde dönüştür.
    - Diğer tüm durumlarda olduğu gibi bırak (SQLite vs.).
    """
    if not raw_url:
        return "sqlite:///./medclinic.db"
    raw_url = raw_url.strip()
    if raw_url.startswith("postgres://"):
        return "postgresql+psycopg://" + raw_url[len("postgres://") :]
    if raw_url.startswith("postgresql://") and "+psycopg" not in raw_url.split("://", 1)[0]:
        return "postgresql+psycopg://" + raw_url[len("postgresql://") :]
    return raw_url


DATABASE_URL = _normalized_database_url(settings.database_url)

# In-memory SQLite: tek bağlantı kullan ki init_db tabloları tüm isteklerde görünsün (testler için)
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
_use_static_pool = DATABASE_URL.startswith("sqlite") and ":memory:" in DATABASE_URL
engine = create_engine(
    DATABASE_URL,
    connect_args=_connect_args,
    poolclass=StaticPool if _use_static_pool else None,
)

# Varsayılan planlar: ilk açılışta plans tablosu boşsa eklenir
DEFAULT_PLANS = (
    {"id": "trial", "name": "Free trial", "price": 0.0, "duration_type": "days", "duration_value": 7, "analysis_limit": 5, "is_popular": False},
    {"id": "monthly", "name": "Monthly", "price": 99.9, "duration_type": "months", "duration_value": 1, "analysis_limit": 100, "is_popular": True},
    {"id": "quarterly", "name": "Quarterly", "price": 269.9, "duration_type": "months", "duration_value": 3, "analysis_limit": 350, "is_popular": False},
    {"id": "annual", "name": "Annual", "price": 999.0, "duration_type": "years", "duration_value": 1, "analysis_limit": 1500, "is_popular": False},
)


def get_db():
    with Session(engine) as session:
        yield session


def seed_plans(db: Session) -> int:
    from app.models import Plan

    existing = {p.id for p in db.exec(select(Plan)).all()}
    added = 0
    for row in DEFAULT_PLANS:
        if row["id"] in existing:
            continue
        db.add(Plan(**row))
        added += 1
    if added:
        db.commit()
    return added


def check_db() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        log.warning("Database check failed: %s", e)
        return False


def init_db():
    import app.models  # noqa: F401  tabloların metadata'ya kaydı için

    SQLModel.metadata.create_all(engine)
    with Session(engine) as db:
        added = seed_plans(db)
    if added:
        log.info("Seeded %d default plans", added)
