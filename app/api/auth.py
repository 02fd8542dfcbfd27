from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from app.core.database import get_db
from app.core.rate_limit import limiter, login_limit, register_limit
from app.core.security import create_access_token, hash_password, verify_password
from app.core.timeutil import utcnow
from app.models import User
from app.schemas import AuthResponse, UserCreate, UserLogin, UserResponse

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _auth_response(user: User) -> AuthResponse:
    token = create_access_token({"sub": str(user.id)})
    return AuthResponse(token=token, user=UserResponse.model_validate(user))


@router.post("/register", response_model=AuthResponse)
@limiter.limit(register_limit)
def register(request: Request, body: UserCreate, db: Session = Depends(get_db)):
    if db.exec(select(User).where(User.email == body.email)).first():
        raise HTTPException(status_code=400, detail="Email already in use.")
    if db.exec(select(User).where(User.crm == body.crm)).first():
        raise HTTPException(status_code=400, detail="CRM already in use.")
    user = User(
        name=body.name,
        email=body.email,
        hashed_password=hash_password(body.password),
        crm=body.crm,
        phone=(body.phone or "").strip() or None,
        specialty=(body.specialty or "").strip() or None,
        avatar=body.avatar or None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return _auth_response(user)


@router.post("/login", response_model=AuthResponse)
@limiter.limit(login_limit)
def login(request: Request, body: UserLogin, db: Session = Depends(get_db)):
    user = db.exec(select(User).where(User.email == body.email.strip().lower())).first()
    if not user or not verify_password(body.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account disabled.")
    user.last_login_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    return _auth_response(user)
