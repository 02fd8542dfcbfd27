"""Plans and subscriptions: trial auto-creation, upgrade, cancel, end dates."""
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from app.api.subscriptions import calculate_end_date
from app.core.database import engine
from app.core.timeutil import as_utc, utcnow
from app.models import Subscription, User


def test_list_plans_is_public(client: TestClient):
    r = client.get("/api/plans")
    assert r.status_code == 200
    ids = [p["id"] for p in r.json()]
    assert ids == ["trial", "monthly", "quarterly", "annual"]


def test_get_plan(client: TestClient):
    r = client.get("/api/plans/monthly")
    assert r.status_code == 200
    assert r.json()["analysis_limit"] == 100
    assert client.get("/api/plans/platinum").status_code == 404


def test_trial_created_on_first_access(client: TestClient, auth_headers: dict):
    r = client.get("/api/subscriptions", headers=auth_headers)
    assert r.status_code == 200
    sub = r.json()
    assert sub["plan"] == "trial"
    assert sub["status"] == "active"
    assert sub["analysis_limit"] == 5
    assert sub["analysis_used"] == 0
    assert sub["plan_details"]["id"] == "trial"
    # ikinci çağrı aynı aboneliği döner
    assert client.get("/api/subscriptions", headers=auth_headers).json()["id"] == sub["id"]


def test_upgrade_resets_usage_for_higher_limit(client: TestClient, auth_headers: dict):
    client.get("/api/subscriptions", headers=auth_headers)
    client.post("/api/analysis", data={"title": "Case"}, headers=auth_headers)
    assert client.get("/api/subscriptions", headers=auth_headers).json()["analysis_used"] == 1

    r = client.post("/api/subscriptions/upgrade", json={"plan": "monthly"}, headers=auth_headers)
    assert r.status_code == 200
    sub = r.json()
    assert sub["plan"] == "monthly"
    assert sub["analysis_limit"] == 100
    assert sub["analysis_used"] == 0


def test_upgrade_unknown_plan(client: TestClient, auth_headers: dict):
    r = client.post("/api/subscriptions/upgrade", json={"plan": "platinum"}, headers=auth_headers)
    assert r.status_code == 404


def test_cancel(client: TestClient, auth_headers: dict):
    assert client.post("/api/subscriptions/cancel", headers=auth_headers).status_code == 404
    client.get("/api/subscriptions", headers=auth_headers)
    r = client.post("/api/subscriptions/cancel", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert client.post("/api/subscriptions/cancel", headers=auth_headers).status_code == 400


def test_calculate_end_date():
    start = datetime(2024, 1, 31, 10, 0)
    assert calculate_end_date(start, "days", 7) == datetime(2024, 2, 7, 10, 0)
    assert calculate_end_date(start, "months", 1) == datetime(2024, 2, 29, 10, 0)
    assert calculate_end_date(start, "months", 3) == datetime(2024, 4, 30, 10, 0)
    assert calculate_end_date(start, "years", 1) == datetime(2025, 1, 31, 10, 0)
    assert calculate_end_date(datetime(2024, 11, 15), "months", 1) == datetime(2024, 12, 15)
    aware = datetime(2024, 1, 31, 10, 0, tzinfo=timezone.utc)
    assert calculate_end_date(aware, "months", 1) == datetime(2024, 2, 29, 10, 0, tzinfo=timezone.utc)


def test_timestamps_are_timezone_aware(client: TestClient, doctor: dict):
    with Session(engine) as db:
        user = db.get(User, doctor["user"]["id"])
        assert as_utc(user.created_at) <= utcnow()
    assert User(email="x@example.com", hashed_password="h", crm="c").created_at.tzinfo is timezone.utc


def test_expired_subscription_is_flipped_on_read(client: TestClient, doctor: dict, auth_headers: dict):
    client.get("/api/subscriptions", headers=auth_headers)
    with Session(engine) as db:
        sub = db.exec(select(Subscription).where(Subscription.user_id == doctor["user"]["id"])).one()
        sub.end_date = utcnow() - timedelta(days=1)
        db.add(sub)
        db.commit()

    r = client.get("/api/subscriptions", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "expired"
