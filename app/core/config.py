from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env proje kökünde: app/core/config.py -> app/core -> app -> kök
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

# OpenAI anahtarının geçerli sayılması için (sk- veya sk-proj- ile başlar)
OPENAI_KEY_PREFIX = "sk-"

AI_MODE_OPENAI = "openai"
AI_MODE_STUB = "stub"


class Settings(BaseSettings):
    openai_api_key: str = ""
    # Birden fazla anahtar: virgülle ayrılmış. Boşsa OPENAI_API_KEY kullanılır.
    openai_api_keys: str = ""
    openai_text_model: str = "gpt-4o"
    openai_vision_model: str = ""  # boşsa text modeli kullanılır
    # openai: gerçek model çağrısı | stub: sabit, etiketli test çıktısı (geliştirme/test)
    ai_mode: str = AI_MODE_OPENAI
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./medclinic.db"
    # CORS: virgülle ayrılmış origin listesi
    cors_origins: str = "*"
    rate_limit_per_minute: int = 60
    rate_limit_register_per_minute: int = 3
    upload_max_mb: int = 50
    upload_dir: str = "data/uploads/medical-images"
    # İstemci tarafındaki durum kapısı için varsayılan polling aralığı
    status_poll_interval_ms: int = 3000
    environment: str = "development"
    log_level: str = "INFO"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("openai_api_key", "openai_api_keys", mode="before")
    @classmethod
    def strip_openai_keys(cls, v: str | None) -> str:
        """Boşluk/yanlış kopya kaynaklı hataları azaltır."""
        return (v or "").strip()

    @field_validator("ai_mode", mode="before")
    @classmethod
    def normalize_ai_mode(cls, v: str | None) -> str:
        mode = (v or AI_MODE_OPENAI).strip().lower()
        if mode not in (AI_MODE_OPENAI, AI_MODE_STUB):
            raise ValueError(f"AI_MODE must be '{AI_MODE_OPENAI}' or '{AI_MODE_STUB}', got {v!r}")
        return mode

    @property
    def vision_model(self) -> str:
        return (self.openai_vision_model or "").strip() or self.openai_text_model

    @property
    def is_stub_mode(self) -> bool:
        return self.ai_mode == AI_MODE_STUB


settings = Settings()


def get_openai_keys() -> list[str]:
    """
    Geçerli OpenAI anahtarlarını döner (sk- ile başlayan, boşluksuz).
    OPENAI_API_KEYS varsa virgülle ayrılmış liste; yoksa OPENAI_API_KEY tek eleman.
    """
    keys_raw = (settings.openai_api_keys or "").strip()
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip() and k.strip().startswith(OPENAI_KEY_PREFIX)]
        if keys:
            return keys
    single = (settings.openai_api_key or "").strip()
    if single and single.startswith(OPENAI_KEY_PREFIX):
        return [single]
    return []


def is_openai_configured() -> bool:
    """En az bir geçerli OpenAI anahtarı var mı?"""
    return len(get_openai_keys()) > 0
