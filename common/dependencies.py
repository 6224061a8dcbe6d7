"""FastAPI dependencies resolving the caller and gating routes by hospital role."""
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError as PayloadError
from sqlalchemy.orm import Session

from .auth import decode_token
from .database import get_db
from .models import RoleEnum, User
from .schemas import TokenData

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")

STAFF_ROLES = (RoleEnum.ADMIN, RoleEnum.NURSE)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def read_token(token: str = Depends(oauth_scheme)) -> TokenData:
    try:
        return TokenData.model_validate(decode_token(token))
    except PayloadError as exc:
        raise _unauthorized("Malformed token") from exc


def get_current_user(token: TokenData = Depends(read_token), db: Session = Depends(get_db)) -> User:
    """The account behind the token; its stored role wins over the token claim."""

    user = db.query(User).filter(User.username == token.username).first()
    if user is None:
        raise _unauthorized("Account no longer exists")
    return user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


def ensure_self_or_admin(current_user: User, username: str) -> None:
    if current_user.role != RoleEnum.ADMIN and current_user.username != username:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


require_admin = allow_roles(RoleEnum.ADMIN)
require_staff = allow_roles(*STAFF_ROLES)
