"""Planlar ve abonelik: deneme aboneliği otomatik açılır, analiz kotası burada tutulur."""
import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from app.api.deps import get_current_user
from app.core.database import get_db
from app.core.timeutil import as_utc, utcnow
from app.models import Plan, Subscription, User
from app.schemas import PlanResponse, SubscriptionResponse, UpgradeRequest

log = logging.getLogger("medclinic")

plans_router = APIRouter(prefix="/api/plans", tags=["plans"])
router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

TRIAL_PLAN_ID = "trial"


def calculate_end_date(start: datetime, duration_type: str, duration_value: int) -> datetime:
    """Plan süresini başlangıca ekler. Ay ve yıl takvim bazlı; ayın günü taşarsa ayın son günü."""
    if duration_type == "days":
        return start + timedelta(days=duration_value)
    months = duration_value * 12 if duration_type == "years" else duration_value
    if duration_type not in ("months", "years"):
        raise ValueError(f"unknown duration_type: {duration_type}")
    total = start.month - 1 + months
    year, month = start.year + total // 12, total % 12 + 1
    # ayın son günü: bir sonraki ayın ilk gününden bir gün geri
    next_first = datetime(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_first - timedelta(days=1)).day
    return start.replace(year=year, month=month, day=min(start.day, last_day))


def _to_response(db: Session, sub: Subscription) -> SubscriptionResponse:
    plan = db.get(Plan, sub.plan)
    return SubscriptionResponse(
        id=sub.id,
        plan=sub.plan,
        status=sub.status,
        start_date=sub.start_date,
        end_date=sub.end_date,
        analysis_limit=sub.analysis_limit,
        analysis_used=sub.analysis_used,
        plan_details=PlanResponse.model_validate(plan) if plan else None,
    )


def _active_plan_or_404(db: Session, plan_id: str) -> Plan:
    plan = db.get(Plan, plan_id)
    if not plan or not plan.is_active:
        raise HTTPException(status_code=404, detail="Plan not found.")
    return plan


def get_or_create_subscription(db: Session, user: User) -> Subscription:
    sub = db.exec(select(Subscription).where(Subscription.user_id == user.id)).first()
    if sub:
        if sub.status == "active" and as_utc(sub.end_date) < utcnow():
            sub.status = "expired"
            db.add(sub)
            db.commit()
            db.refresh(sub)
        return sub
    trial = _active_plan_or_404(db, TRIAL_PLAN_ID)
    now = utcnow()
    sub = Subscription(
        user_id=user.id,
        plan=trial.id,
        status="active",
        start_date=now,
        end_date=calculate_end_date(now, trial.duration_type, trial.duration_value),
        analysis_limit=trial.analysis_limit,
        analysis_used=0,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    log.info("trial subscription created user=%s", user.id)
    return sub


@plans_router.get("", response_model=list[PlanResponse])
def list_plans(db: Session = Depends(get_db)):
    return db.exec(select(Plan).where(Plan.is_active == True).order_by(Plan.price)).all()  # noqa: E712


@plans_router.get("/{plan_id}", response_model=PlanResponse)
def get_plan(plan_id: str, db: Session = Depends(get_db)):
    return _active_plan_or_404(db, plan_id)


@router.get("", response_model=SubscriptionResponse)
def get_subscription(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _to_response(db, get_or_create_subscription(db, user))


@router.post("/upgrade", response_model=SubscriptionResponse)
def upgrade_subscription(body: UpgradeRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    plan = _active_plan_or_404(db, body.plan)
    sub = get_or_create_subscription(db, user)
    now = utcnow()
    # daha yüksek limitli plana geçişte kullanım sıfırlanır
    if plan.analysis_limit > sub.analysis_limit:
        sub.analysis_used = 0
    sub.plan = plan.id
    sub.status = "active"
    sub.start_date = now
    sub.end_date = calculate_end_date(now, plan.duration_type, plan.duration_value)
    sub.analysis_limit = plan.analysis_limit
    db.add(sub)
    db.commit()
    db.refresh(sub)
    log.info("subscription upgrade user=%s plan=%s", user.id, plan.id)
    return _to_response(db, sub)


@router.post("/cancel", response_model=SubscriptionResponse)
def cancel_subscription(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    sub = db.exec(select(Subscription).where(Subscription.user_id == user.id)).first()
    if not sub:
        raise HTTPException(status_code=404, detail="No subscription found.")
    if sub.status == "cancelled":
        raise HTTPException(status_code=400, detail="Subscription is already cancelled.")
    sub.status = "cancelled"
    db.add(sub)
    db.commit()
    db.refresh(sub)
    log.info("subscription cancelled user=%s", user.id)
    return _to_response(db, sub)
