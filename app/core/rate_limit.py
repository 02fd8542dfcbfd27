"""IP bazlı rate limiting (SlowAPI); proxy (X-Forwarded-For) destekli. Auth uç noktaları kullanır."""
from fastapi import Request
from slowapi import Limiter

from .config import settings

# Kayıt için saatlik tavan: dakika limiti yükseltilse de toplu hesap açmayı sınırlar
REGISTER_HOURLY_CAP = 100


def _get_client_ip(request: Request) -> str:
    """Proxy arkasında gerçek istemci IP (Render, Nginx)."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


def login_limit() -> str:
    return f"{settings.rate_limit_per_minute}/minute"


def register_limit() -> str:
    return f"{settings.rate_limit_register_per_minute}/minute;{REGISTER_HOURLY_CAP}/hour"


limiter = Limiter(key_func=_get_client_ip)
