"""
Logging configuration.
Tek satır stdout formatı; worker, notifier ve durum kapısı modül logger'ları "app.*" altında.
Worker hataları logger.exception ile yazılır (app/services/analyze.py).
"""
import logging
import sys

# Her istek/bağlantı için INFO basan kütüphaneler: polling ve push trafiğinde gürültü olur
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "websockets", "multipart", "python_multipart")


def setup_logging(
    level: int | str = logging.INFO,
    format_string: str | None = None,
) -> None:
    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format=format_string,
        stream=sys.stdout,
        force=True,
    )
    # Uvicorn loggers: access ve error seviyelerini uyumlu tut
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    # medclinic: istek satırları; app: worker, notifier, job store, kapı
    logging.getLogger("medclinic").setLevel(level)
    logging.getLogger("app").setLevel(level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
