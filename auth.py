from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import Settings, get_settings
from database import get_db, object_id
from errors import NotFound, PermissionDenied, Unauthenticated

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


class Caller(BaseModel):
    """Identity resolved from a bearer token."""
    user_id: str
    is_admin: bool = False
    name: str
    email: str


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise Unauthenticated("Invalid Token")


def resolve_caller(db, token: str, settings: Settings) -> Caller:
    payload = decode_token(token, settings)
    # purpose-scoped tokens (password reset) are not logins
    if payload.get("purpose") is not None:
        raise Unauthenticated("Invalid Token")
    user_id = payload.get("sub")
    if user_id is None:
        raise Unauthenticated()
    try:
        user = db["user"].find_one({"_id": object_id(user_id, "User")})
    except NotFound:
        raise Unauthenticated()
    if not user:
        raise Unauthenticated()
    return Caller(
        user_id=str(user["_id"]),
        is_admin=user.get("is_admin", False),
        name=user.get("name"),
        email=user.get("email"),
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Caller:
    if credentials is None:
        raise Unauthenticated("No Token")
    return resolve_caller(db, credentials.credentials, settings)


def require_admin(current: Caller = Depends(get_current_user)) -> Caller:
    if not current.is_admin:
        raise PermissionDenied("Invalid Admin Token")
    return current
