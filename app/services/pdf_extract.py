"""Analize eklenen PDF belgelerinden metin çıkarır (prompt'a eklenir)."""
import logging
from io import BytesIO
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from app.models import MedicalImage

logger = logging.getLogger(__name__)

MAX_PAGES = 50
MAX_CHARS_PER_DOCUMENT = 20000


def extract_text_from_pdf(file_content: bytes, max_pages: int = MAX_PAGES) -> str:
    """PDF dosyasından metin çıkarır. En fazla ilk max_pages sayfa; metin yoksa boş string."""
    reader = PdfReader(BytesIO(file_content))
    parts = []
    for i, page in enumerate(reader.pages):
        if i >= max_pages:
            break
        text = page.extract_text()
        if text:
            parts.append(text.strip())
    return "\n\n".join(parts).strip()


def describe_documents(files: list[MedicalImage]) -> str:
    parts: list[str] = []
    for f in files:
        if f.mime_type != "application/pdf":
            continue
        path = Path(f.file_path)
        if not path.is_file():
            logger.warning("attached document missing on disk: %s", f.file_path)
            continue
        try:
            text = extract_text_from_pdf(path.read_bytes())
        except PdfReadError as e:
            logger.warning("could not read PDF %s: %s", f.original_name, e)
            continue
        if text:
            parts.append(f"• {f.original_name}:\n{text[:MAX_CHARS_PER_DOCUMENT]}")
    if not parts:
        return ""
    return "\n\nATTACHED DOCUMENTS\n" + "\n\n".join(parts)
