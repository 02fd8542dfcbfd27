import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Uvicorn nereden çalışırsa çalışsın .env proje kökünden yüklensin
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from app.api.analysis import router as analysis_router
from app.api.auth import router as auth_router
from app.api.notifications import router as notifications_router
from app.api.patients import router as patients_router
from app.api.subscriptions import plans_router, router as subscriptions_router
from app.api.users import router as users_router
from app.core.config import is_openai_configured, settings
from app.core.database import check_db, init_db
from app.core.notifier import CompletionNotifier
from app.core.rate_limit import limiter
from app.logging import setup_logging
from app.services.analyze import ping_openai

setup_logging(level=settings.log_level)
log = logging.getLogger("medclinic")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    # worker thread'leri olayları bu loop'a planlar
    app.state.notifier.bind_loop(asyncio.get_running_loop())
    log.info(
        "AI mode: %s, OpenAI key loaded: %s",
        settings.ai_mode,
        "yes" if is_openai_configured() else "NO (.env dosyasına OPENAI_API_KEY=sk-... ekleyin)",
    )
    yield
    app.state.notifier.bind_loop(None)


app = FastAPI(
    title="MedClinic API",
    description="Tıbbi analiz asistanı API: analiz işleri, hastalar, abonelik ve tamamlanma bildirimleri",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.state.notifier = CompletionNotifier()


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.warning("rate limit exceeded path=%s client=%s", request.url.path, request.client.host if request.client else None)
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Invalid request."
    first = errs[0]
    loc = list(first.get("loc") or [])
    field = str(loc[-1]) if loc else None
    if first.get("type") == "missing":
        if field == "body":
            return "Request body is missing."
        return f"Missing field: {field}." if field else "Missing field."
    msg = first.get("msg") or "Invalid request."
    return f"{field}: {msg}" if field and field != "body" else msg


def _jsonable_errors(errs) -> list[dict]:
    """Pydantic hata listesindeki ctx/input alanları JSON'a her zaman çevrilemez."""
    return [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs]


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning(
        "Request validation error (422): path=%s method=%s detail=%s",
        request.url.path,
        request.method,
        errs,
    )
    rid = getattr(request.state, "request_id", None)
    body = {"error": _validation_error_message(exc), "status_code": 422, "detail": _jsonable_errors(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    path = (request.url.path or "").strip()
    if path.startswith("/api/analysis"):
        user_msg = "An error occurred while handling the analysis."
    else:
        user_msg = "Unexpected server error."
    return _error_response(request, 500, user_msg)


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(patients_router)
app.include_router(analysis_router)
app.include_router(plans_router)
app.include_router(subscriptions_router)
app.include_router(notifications_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "openai_configured": is_openai_configured(),
        "ai_mode": settings.ai_mode,
        "database": "ok" if check_db() else "unavailable",
    }


@app.get("/health/ai")
def health_ai():
    """Tek token'lık model ping'i; stub modda ağa çıkılmaz."""
    if settings.is_stub_mode:
        return {"status": "stub", "latency_ms": 0.0, "error": None}
    ok, latency_ms, error = ping_openai()
    return {"status": "ok" if ok else "error", "latency_ms": latency_ms, "error": error}
