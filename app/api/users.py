from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, func, select

from app.api.deps import get_current_user
from app.core.database import get_db
from app.core.security import hash_password, verify_password
from app.models import Analysis, Patient, User
from app.models.analysis import STATUS_COMPLETED, STATUS_PROCESSING
from app.schemas import ChangePasswordRequest, UserResponse, UserStats, UserUpdate

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return UserResponse.model_validate(user)


@router.put("/me", response_model=UserResponse)
def update_me(body: UserUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    for field, value in body.model_dump(exclude_unset=True).items():
        if isinstance(value, str):
            value = value.strip() or None
        if field == "name" and not value:
            continue
        setattr(user, field, value)
    db.add(user)
    db.commit()
    db.refresh(user)
    return UserResponse.model_validate(user)


@router.post("/change-password")
def change_password(body: ChangePasswordRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not verify_password(body.current_password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect.")
    user.hashed_password = hash_password(body.new_password)
    db.add(user)
    db.commit()
    return {"message": "Password changed."}


def _count(db: Session, stmt) -> int:
    return db.exec(stmt).one()


@router.get("/stats", response_model=UserStats)
def stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Giriş yapmış doktorun özet sayıları (ana ekran için)."""
    base = select(func.count()).select_from(Analysis).where(Analysis.doctor_id == user.id)
    return UserStats(
        total_analyses=_count(db, base),
        completed_analyses=_count(db, base.where(Analysis.status == STATUS_COMPLETED)),
        processing_analyses=_count(db, base.where(Analysis.status == STATUS_PROCESSING)),
        total_patients=_count(db, select(func.count()).select_from(Patient).where(Patient.doctor_id == user.id)),
    )
