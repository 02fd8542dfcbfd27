import base64
import json
import logging
import random
import re
import time
from datetime import date
from pathlib import Path

from fastapi import HTTPException
from openai import APIConnectionError, APIError, AuthenticationError, OpenAI, RateLimitError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.config import get_openai_keys, settings
from app.core.database import engine
from app.core.notifier import EVENT_ANALYSIS_COMPLETED, EVENT_ANALYSIS_FAILED, CompletionNotifier
from app.models import Analysis, MedicalImage, Patient
from app.models.analysis import STATUS_FAILED
from app.services import job_store
from app.services.pdf_extract import describe_documents

logger = logging.getLogger(__name__)
OPENAI_TIMEOUT = 60.0
OPENAI_RETRY_TRIES = 4
OPENAI_RETRY_BASE_SECONDS = 0.8

# Anahtar başına bir istemci (çoklu anahtar fallback için)
_openai_clients: dict[str, OpenAI] = {}

# Bir anahtar auth/rate limit verince diğerine geçilecek
OPENAI_FALLBACK_EXCEPTIONS = (AuthenticationError, RateLimitError)

# Modelden istenen JSON anahtarları -> kayıtta görünen kategori adı
CATEGORY_NAMES: dict[str, str] = {
    "diagnostico_principal": "Main Diagnosis",
    "etiologia": "Etiology",
    "fisiopatologia": "Pathophysiology",
    "apresentacao_clinica": "Clinical Presentation",
    "abordagem_diagnostica": "Diagnostic Approach",
    "abordagem_terapeutica": "Therapeutic Approach",
    "guia_prescricao": "Prescription Guide",
}
REQUIRED_CATEGORIES = tuple(CATEGORY_NAMES)

JSON_SCHEMA_TEXT = """
JSON object with 7 required keys:
{
  "diagnostico_principal": { "resultado": string, "confianca": number (0..1), "justificativa": string },
  "etiologia": { "resultado": string, "confianca": number (0..1), "justificativa": string },
  "fisiopatologia": { "resultado": string, "confianca": number (0..1), "justificativa": string },
  "apresentacao_clinica": { "resultado": string, "confianca": number (0..1), "justificativa": string },
  "abordagem_diagnostica": { "resultado": string, "confianca": number (0..1), "justificativa": string },
  "abordagem_terapeutica": { "resultado": string, "confianca": number (0..1), "justificativa": string },
  "guia_prescricao": { "resultado": string, "confianca": number (0..1), "justificativa": string }
}

Style and content rules:
- Answer ONLY with valid JSON (no extra text).
- "resultado" uses light markdown: subtitles start with "###", lists use "•" or "1.".
- Do NOT use asterisks (*) or hyphens (-) as bullets or for emphasis.
- Whenever possible include estimated probabilities (%), red flags, risk factors and ICD-10 codes.
- In "diagnostico_principal.resultado" always include a "### Key features" section with the findings supporting the diagnosis.
- In "abordagem_diagnostica": differentials (3-6 with %), priority exams (with impact), red flags.
- In "abordagem_terapeutica": non-pharmacological and pharmacological measures, usual adult doses, adjustments, adverse effects, interactions.
- In "guia_prescricao": one possible regimen with clear posology, duration, monitoring and alternatives.
- "confianca": number between 0 and 1.
- If data is insufficient, say "Insufficient data" and suggest what to collect.
""".strip()

SYSTEM_JSON_MSG = (
    "You are a medical AI system. Answer ONLY with strictly valid JSON following the schema. "
    "Technical language. Format with '###' and '•' bullets. Never use * or - as bullets."
)


def _get_client_for_key(key: str) -> OpenAI:
    """Verilen anahtar için OpenAI istemcisi döner (önbelleklenmiş)."""
    if key not in _openai_clients:
        _openai_clients[key] = OpenAI(api_key=key, timeout=OPENAI_TIMEOUT)
    return _openai_clients[key]


def _openai_create_with_fallback(create_fn):
    """
    create_fn(client) çağrısını yapar; AuthenticationError veya RateLimitError olursa
    sıradaki anahtarla tekrar dener. Tüm anahtarlar başarısızsa son hatayı fırlatır.
    """
    keys = get_openai_keys()
    if not keys:
        raise ValueError("OPENAI_API_KEY is missing or invalid. Set OPENAI_API_KEY=sk-... or OPENAI_API_KEYS=sk-1,sk-2 in .env.")
    last_exc: Exception | None = None
    for key in keys:
        try:
            client = _get_client_for_key(key)
            return create_fn(client)
        except OPENAI_FALLBACK_EXCEPTIONS as e:
            last_exc = e
            logger.warning("OpenAI key skipped (%s), trying next: %s", key[:12] + "...", e)
            continue
    if last_exc is not None:
        _raise_openai_http_error(last_exc)
    raise ValueError("No valid OpenAI key.")


def _is_retriable(exc: Exception) -> bool:
    if isinstance(exc, (RateLimitError, APIConnectionError)):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(status, int) and status >= 500


def _openai_safe_call(create_fn, tries: int = OPENAI_RETRY_TRIES, base_seconds: float = OPENAI_RETRY_BASE_SECONDS):
    """429/5xx/bağlantı hatalarında üstel bekleme ile tekrar dener; diğer hatalar hemen fırlatılır."""
    for attempt in range(1, tries + 1):
        try:
            return create_fn()
        except APIError as e:
            if not _is_retriable(e) or attempt == tries:
                raise
            delay = base_seconds * (2 ** (attempt - 1)) + random.random() * 0.2
            logger.warning("OpenAI retry %d/%d in %.2fs after %s", attempt, tries - 1, delay, type(e).__name__)
            time.sleep(delay)


def _raise_openai_http_error(exc: Exception) -> None:
    """OpenAI hatalarını uygun HTTP istisnalarına çevirir. (401 kullanıcı oturumu ile karışmasın diye API hatası 503.)"""
    if isinstance(exc, AuthenticationError):
        raise HTTPException(status_code=503, detail="AI access failed: check OPENAI_API_KEY and billing.") from exc
    if isinstance(exc, RateLimitError):
        raise HTTPException(status_code=429, detail="AI is busy, please try again later.") from exc
    if isinstance(exc, APIConnectionError):
        raise HTTPException(status_code=503, detail="AI connection problem: service temporarily unreachable.") from exc
    if isinstance(exc, APIError):
        raise HTTPException(status_code=502, detail="AI service error, possibly temporary.") from exc
    raise HTTPException(status_code=500, detail="Unexpected server error.") from exc


def ping_openai() -> tuple[bool, float, str | None]:
    """
    Minimal OpenAI ping (tek token): /health/ai için. Çoklu anahtar varsa sırayla dener.
    Returns: (success, latency_ms, error_message_or_none)
    """
    t0 = time.perf_counter()
    keys = get_openai_keys()
    last_err: str | None = None
    for key in keys:
        try:
            client = _get_client_for_key(key)
            client.chat.completions.create(
                model=settings.openai_text_model,
                messages=[{"role": "user", "content": "Hi"}],
                max_tokens=1,
            )
            latency_ms = round((time.perf_counter() - t0) * 1000, 2)
            return (True, latency_ms, None)
        except Exception as e:
            last_err = str(e).strip()[:500] if str(e) else type(e).__name__
            if isinstance(e, OPENAI_FALLBACK_EXCEPTIONS):
                continue
            latency_ms = round((time.perf_counter() - t0) * 1000, 2)
            return (False, latency_ms, last_err)
    latency_ms = round((time.perf_counter() - t0) * 1000, 2)
    return (False, latency_ms, last_err or "All keys tried, no access.")


def _chat(messages: list[dict], *, model: str | None = None, temperature: float = 0.2, max_tokens: int = 4000, json_mode: bool = True) -> str:
    kwargs = {
        "model": model or settings.openai_text_model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    def _create(client: OpenAI):
        return _openai_safe_call(lambda: client.chat.completions.create(**kwargs))

    response = _openai_create_with_fallback(_create)
    return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

def calculate_age(birth_date: date | None, today: date | None = None) -> str:
    if not birth_date:
        return "Age not provided"
    today = today or date.today()
    age = today.year - birth_date.year - ((today.month, today.day) < (birth_date.month, birth_date.day))
    return f"{age} years"


def build_medical_prompt(analysis: Analysis, patient: Patient | None) -> str:
    return f"""
DIAGNOSTIC SUPPORT SYSTEM FOR PHYSICIANS: DETAILED AND STRUCTURED MODE
NOTICE: Content intended for professionals. Does not replace clinical judgement.

PATIENT PROFILE
• Name: {patient.name if patient else "Unidentified patient"}
• Age: {calculate_age(patient.birth_date) if patient else "Age not provided"}
• Sex: {(patient.gender if patient else None) or "Not provided"}
• Past history: {(patient.medical_history if patient else None) or "Not provided"}
• Allergies: {(patient.allergies if patient else None) or "Not provided"}

CURRENT CASE
• Reason/Context: {analysis.title}
• History of present illness: {analysis.description or "Not provided"}
• Symptoms/Findings: {analysis.symptoms or "Not provided"}

QUALITY GUIDELINES
• Technical, objective, evidence-based language.
• Quantify uncertainty with estimated probabilities (%).
• Include risk factors, red flags and ICD-10 when applicable.
• Highlight immediate actions when there is risk (sepsis, ACS, stroke, hemorrhage).

SCHEMA
{JSON_SCHEMA_TEXT}

RETURN ONLY THE JSON.
""".strip()


def describe_images(images: list[MedicalImage]) -> str:
    """Görselleri vision modeline gönderip metin açıklamasını prompt'a eklenecek şekilde döner."""
    parts: list[str] = []
    for img in images:
        if not (img.mime_type or "").startswith("image/"):
            continue
        path = Path(img.file_path)
        if not path.is_file():
            logger.warning("medical image missing on disk: %s", img.file_path)
            continue
        b64 = base64.standard_b64encode(path.read_bytes()).decode("utf-8")
        content = _chat(
            [
                {"role": "system", "content": "You are a medical imaging assistant. Describe clinically relevant findings objectively."},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": f"Describe the findings of this medical image ({img.original_name})."},
                        {"type": "image_url", "image_url": {"url": f"data:{img.mime_type};base64,{b64}", "detail": "high"}},
                    ],
                },
            ],
            model=settings.vision_model,
            temperature=0.1,
            max_tokens=1500,
            json_mode=False,
        )
        parts.append(f"• {img.original_name}: {content.strip()}")
    if not parts:
        return ""
    return "\n\nIMAGE FINDINGS\n" + "\n".join(parts)


# ---------------------------------------------------------------------------
# JSON üretimi ve temizlik
# ---------------------------------------------------------------------------

def try_parse_json(txt: str | None) -> dict | None:
    if not txt or not isinstance(txt, str):
        return None
    try:
        data = json.loads(txt)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def beautify_text(txt: str | None) -> str | None:
    """Markdown vurgularını kaldırır, madde işaretlerini '•' yapar."""
    if not txt:
        return txt
    s = str(txt)
    s = re.sub(r"\*\*(.*?)\*\*", r"\1", s)
    s = re.sub(r"\*(.*?)\*", r"\1", s)
    s = re.sub(r"^[ \t]*[-*][ \t]*\[(?: |x|X)\][ \t]*", "• ", s, flags=re.M)
    s = re.sub(r"^[ \t]*[-*][ \t]+", "• ", s, flags=re.M)
    s = re.sub(r"^\s*-{3,}\s*$", "", s, flags=re.M)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def normalize_analysis(data: dict) -> dict:
    for key in REQUIRED_CATEGORIES:
        cat = data.get(key)
        if not isinstance(cat, dict):
            continue
        cat["confianca"] = job_store.clamp01(cat.get("confianca", job_store.DEFAULT_CONFIDENCE))
        for field in ("resultado", "justificativa"):
            if isinstance(cat.get(field), str):
                cat[field] = beautify_text(cat[field])
    return data


def missing_categories(data: dict) -> list[str]:
    return [k for k in REQUIRED_CATEGORIES if not isinstance(data.get(k), dict) or not data[k].get("resultado")]


def _request_json(prompt: str) -> str:
    return _chat([{"role": "system", "content": SYSTEM_JSON_MSG}, {"role": "user", "content": prompt}])


def _repair_json(invalid: str) -> str:
    return _chat(
        [
            {"role": "system", "content": "Fix the content below into strictly valid JSON following the schema. Answer with JSON only."},
            {"role": "user", "content": f"SCHEMA\n{JSON_SCHEMA_TEXT}\n\nCONTENT\n{invalid}"},
        ],
        temperature=0,
        max_tokens=3500,
    )


def _regenerate(prompt: str, minimal: bool = False) -> str:
    extra = "\nKeep each field short (max 5 lines)." if minimal else ""
    return _chat(
        [{"role": "system", "content": SYSTEM_JSON_MSG + extra}, {"role": "user", "content": prompt}],
        temperature=0.1 if minimal else 0.2,
        max_tokens=3800,
    )


def _fill_missing(partial: dict, missing: list[str]) -> str:
    return _chat(
        [
            {"role": "system", "content": SYSTEM_JSON_MSG},
            {
                "role": "user",
                "content": "Complete the JSON below, filling ONLY these missing keys: "
                + ", ".join(missing)
                + f"\nReturn the full object.\n\n{json.dumps(partial, ensure_ascii=False)}",
            },
        ],
        max_tokens=3500,
    )


def perform_medical_analysis(prompt: str, image_findings: str = "") -> dict:
    """JSON alınamazsa sırayla: onar, yeniden üret, kısa yeniden üret. Eksik kategorileri tamamlatır."""
    full_prompt = f"{prompt}{image_findings or ''}".strip()
    content = _request_json(full_prompt)
    data = try_parse_json(content)
    if data is None:
        logger.warning("AI returned invalid JSON, repairing")
        data = try_parse_json(_repair_json(content))
    if data is None:
        data = try_parse_json(_regenerate(full_prompt))
    if data is None:
        data = try_parse_json(_regenerate(full_prompt, minimal=True))
    if data is None:
        raise ValueError("Could not obtain valid JSON from the AI.")
    missing = missing_categories(data)
    if missing:
        logger.info("AI response missing categories %s, requesting completion", missing)
        data = try_parse_json(_fill_missing(data, missing)) or data
    return normalize_analysis(data)


def stub_medical_analysis(analysis: Analysis) -> dict:
    """AI_MODE=stub: gerçek model çağrısı yapmadan, açıkça etiketli sabit çıktı."""
    data = {}
    for i, key in enumerate(REQUIRED_CATEGORIES):
        data[key] = {
            "resultado": f"### [STUB] {CATEGORY_NAMES[key]}\n• Generated without AI for: {analysis.title}",
            "confianca": round(0.9 - i * 0.02, 2),
            "justificativa": "[STUB] AI_MODE=stub",
        }
    return data


def to_result_rows(data: dict) -> list[dict]:
    rows = []
    for key, name in CATEGORY_NAMES.items():
        cat = data.get(key)
        if not isinstance(cat, dict) or not cat.get("resultado"):
            continue
        rows.append(
            {
                "category": name,
                "result": str(cat["resultado"]),
                "confidence": cat.get("confianca", job_store.DEFAULT_CONFIDENCE),
                "justification": cat.get("justificativa"),
            }
        )
    return rows


def _ai_model_label() -> str:
    if settings.is_stub_mode:
        return "stub"
    return f"{settings.openai_text_model} (text) + {settings.vision_model} (image)"


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------

def process_analysis(analysis_id: str, notifier: CompletionNotifier | None = None) -> bool:
    """
    Background task: analizi pending → processing → completed|failed taşır ve doktorun
    odasına olay yayınlar. Hata dışarı fırlatılmaz; iş failed olarak işaretlenir.
    """
    t0 = time.perf_counter()
    with Session(engine) as db:
        analysis = db.get(Analysis, analysis_id)
        if analysis is None:
            logger.warning("process_analysis: analysis %s not found", analysis_id)
            return False
        try:
            job_store.mark_processing(db, analysis)
            logger.info("AI analysis started: %s (%s)", analysis.id, analysis.title)
            if settings.is_stub_mode:
                data = stub_medical_analysis(analysis)
            else:
                patient = db.get(Patient, analysis.patient_id) if analysis.patient_id else None
                images = list(db.exec(select(MedicalImage).where(MedicalImage.analysis_id == analysis.id)).all())
                findings = (describe_images(images) + describe_documents(images)) if images else ""
                data = perform_medical_analysis(build_medical_prompt(analysis, patient), findings)
            rows = job_store.mark_completed(db, analysis, to_result_rows(data), ai_model=_ai_model_label())
        except Exception as e:
            logger.exception("AI analysis failed: %s", analysis_id)
            db.rollback()
            try:
                db.refresh(analysis)
            except SQLAlchemyError as refresh_error:
                # iş satırı artık yok (silinmiş)
                logger.warning("analysis %s could not be reloaded: %s", analysis_id, refresh_error)
                return False
            if not job_store.can_transition(analysis.status, STATUS_FAILED):
                return False
            job_store.mark_failed(db, analysis, _failure_reason(e))
            if notifier is not None:
                notifier.publish_threadsafe(analysis.owner_key, EVENT_ANALYSIS_FAILED, job_store.failure_event(analysis))
            return False
        logger.info(
            "AI analysis completed: %s confidence=%.0f%% duration_ms=%d",
            analysis.id,
            (analysis.ai_confidence_score or 0) * 100,
            int((time.perf_counter() - t0) * 1000),
        )
        if notifier is not None:
            notifier.publish_threadsafe(analysis.owner_key, EVENT_ANALYSIS_COMPLETED, job_store.completion_event(analysis, len(rows)))
        return True


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    return str(exc) or type(exc).__name__
