"""Pytest fixtures: test client, test DB (in-memory SQLite), stub AI."""
import os
import tempfile
import uuid

import pytest
from fastapi.testclient import TestClient

# Test ortamında in-memory SQLite (app import edilmeden önce set edilmeli)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
# Gerçek model çağrısı yok: etiketli stub çıktı
os.environ.setdefault("AI_MODE", "stub")
os.environ.setdefault("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "medclinic-test-uploads"))
# Kayıt rate limit yüksek olsun ki tüm testler geçebilsin
os.environ.setdefault("RATE_LIMIT_REGISTER_PER_MINUTE", "100")

from app.main import app


@pytest.fixture(scope="function")
def client():
    """TestClient; lifespan ile in-memory DB, tablolar ve planlar hazır olur."""
    with TestClient(app) as c:
        yield c


def register_doctor(client: TestClient, **overrides) -> dict:
    """Benzersiz e-posta/CRM ile doktor kaydı; {token, user} döner."""
    suffix = uuid.uuid4().hex[:10]
    body = {
        "name": "Dr. Test",
        "email": f"doc-{suffix}@example.com",
        "password": "test123456",
        "crm": f"CRM-{suffix}",
        "specialty": "Internal Medicine",
    }
    body.update(overrides)
    r = client.post("/api/auth/register", json=body)
    assert r.status_code == 200, f"Register failed: {r.status_code} {r.text}"
    return r.json()


@pytest.fixture
def doctor(client: TestClient) -> dict:
    return register_doctor(client)


@pytest.fixture
def auth_headers(doctor: dict) -> dict:
    """Kayıtlı doktorun token'ı ile Authorization header döner."""
    return {"Authorization": f"Bearer {doctor['token']}"}
