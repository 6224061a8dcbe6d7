from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import cast, or_, String
from sqlalchemy.orm import Session

from common import auth
from common.config import get_settings
from common.database import Base, atomic, engine, get_db
from common.dependencies import ensure_self_or_admin, get_current_user, require_admin
from common.exceptions import ConflictError, NotFoundError, ValidationError, register_exception_handlers
from common.logging_middleware import add_audit_middleware, configure_logging
from common.models import RoleEnum, User
from common.patients import escape_like
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import NurseList, ProfileUpdate, Token, UserCreate, UserRead, UserUpdate

settings = get_settings()

USER_SEARCH_COLUMNS = (
    User.name,
    User.email,
    User.gender,
    User.staff_id,
    User.ic_number,
    User.contact_number,
    User.address,
    User.blood_type,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    configure_logging()
    fastapi_app = FastAPI(title="Users Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    register_exception_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "users")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "users"}


def _ensure_unique(db: Session, username: str, email: str, exclude_user_id: Optional[int] = None) -> None:
    query = db.query(User).filter((User.username == username) | (User.email == email))
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first():
        raise ValidationError("Username or email already exists", errors={"email": ["The email has already been taken."]})


def _get_user_or_404(db: Session, username: str) -> User:
    user = db.query(User).filter(User.username == username).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def _search(query, term: Optional[str]):
    term = (term or "").strip()
    if not term:
        return query
    pattern = f"%{escape_like(term)}%"
    columns = (cast(User.role, String), *USER_SEARCH_COLUMNS)
    return query.filter(or_(*(column.ilike(pattern, escape="\\") for column in columns)))


def _new_user(user_in: UserCreate, role: RoleEnum) -> User:
    return User(
        name=user_in.name,
        username=user_in.username,
        email=user_in.email,
        role=role,
        gender=user_in.gender,
        staff_id=user_in.staff_id if role != RoleEnum.PATIENT else None,
        hashed_password=auth.get_password_hash(user_in.password),
    )


@app.post("/users/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register_user(request: Request, user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    """Self-registration. Only the very first account may claim a staff role."""

    with atomic(db):
        _ensure_unique(db, user_in.username, user_in.email)
        admins_exist = db.query(User).filter(User.role == RoleEnum.ADMIN).first() is not None
        if user_in.role != RoleEnum.PATIENT and admins_exist:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only admins can assign staff roles")
        user = _new_user(user_in, user_in.role)
        db.add(user)
    return user


@app.post("/users/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = auth.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")
    return Token(access_token=auth.create_user_token(user))


@app.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_user(
    request: Request,
    user_in: UserCreate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> User:
    """Admin-created accounts (nurses, patients or other admins)."""

    with atomic(db):
        _ensure_unique(db, user_in.username, user_in.email)
        user = _new_user(user_in, user_in.role)
        db.add(user)
    return user


@app.get("/users", response_model=List[UserRead])
@limiter.limit("30/minute")
def list_users(
    request: Request,
    search: Optional[str] = None,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> List[User]:
    return _search(db.query(User), search).order_by(User.name.asc()).all()


@app.get("/users/nurses", response_model=NurseList)
@limiter.limit("30/minute")
def list_nurses(
    request: Request,
    search: Optional[str] = None,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> NurseList:
    nurses = _search(db.query(User).filter(User.role == RoleEnum.NURSE), search).order_by(User.name.asc()).all()
    active = db.query(User).filter(User.role == RoleEnum.NURSE).count()
    return NurseList(nurses=[UserRead.model_validate(nurse) for nurse in nurses], active_nurse_count=active)


@app.get("/users/{username}", response_model=UserRead)
@limiter.limit("30/minute")
def get_user(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    user = _get_user_or_404(db, username)
    ensure_self_or_admin(current_user, username)
    return user


@app.put("/users/{username}", response_model=UserRead)
@limiter.limit("10/minute")
def update_user(
    request: Request,
    username: str,
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    user = _get_user_or_404(db, username)
    ensure_self_or_admin(current_user, username)

    with atomic(db):
        if user_update.name:
            user.name = user_update.name
        if user_update.email and user_update.email != user.email:
            _ensure_unique(db, user.username, user_update.email, exclude_user_id=user.id)
            user.email = user_update.email
        if user_update.role and current_user.role == RoleEnum.ADMIN and user_update.role != user.role:
            if user.bed is not None:
                raise ConflictError("Discharge the patient before changing the role")
            user.role = user_update.role
        if user_update.password:
            user.hashed_password = auth.get_password_hash(user_update.password)
    return user


@app.put("/users/{username}/profile", response_model=UserRead)
@limiter.limit("10/minute")
def update_profile(
    request: Request,
    username: str,
    profile: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    """Personal and medical details of a patient or nurse."""

    user = _get_user_or_404(db, username)
    ensure_self_or_admin(current_user, username)

    data = profile.model_dump(exclude={"medical_history"})
    history = profile.medical_history or []
    with atomic(db):
        for field, value in data.items():
            setattr(user, field, value)
        user.medical_history = None if not history or "none" in history else ",".join(history)
    return user


@app.delete("/users/{username}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
def delete_user(
    request: Request,
    username: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    user = _get_user_or_404(db, username)
    ensure_self_or_admin(current_user, username)

    with atomic(db):
        if user.bed is not None:
            raise ConflictError("Cannot delete a patient who still occupies a bed")
        db.delete(user)
