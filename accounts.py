from datetime import timedelta

import structlog

from auth import Caller, create_access_token, decode_token, get_password_hash, verify_password
from config import Settings
from database import create_document, get_or_404, guarded_update, object_id
from errors import AlreadyExists, NotFound, PermissionDenied, Unauthenticated
from notifier import Notifier
from schemas import (
    AdminUserUpdate,
    AuthOut,
    ProfileUpdate,
    SigninRequest,
    SignupRequest,
    User,
    UserOut,
)

logger = structlog.get_logger(__name__)


def user_out(user: dict) -> UserOut:
    return UserOut(
        id=str(user["_id"]),
        name=user["name"],
        email=user["email"],
        avatar_url=user.get("avatar_url"),
        is_admin=user.get("is_admin", False),
    )


def auth_out(user: dict, settings: Settings) -> AuthOut:
    token = create_access_token({"sub": str(user["_id"])}, settings)
    return AuthOut(**user_out(user).model_dump(), token=token)


def _email_taken(db, email: str, exclude_id=None) -> bool:
    query = {"email": email}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["user"].find_one(query) is not None


def signup(db, settings: Settings, payload: SignupRequest) -> AuthOut:
    if _email_taken(db, payload.email):
        raise AlreadyExists("Email already registered")
    user = User(name=payload.name, email=payload.email, password_hash=get_password_hash(payload.password))
    user_id = create_document(db, "user", user.model_dump(), "Email already registered")
    logger.info("user_signed_up", user_id=user_id)
    return auth_out(db["user"].find_one({"_id": object_id(user_id)}), settings)


def signin(db, settings: Settings, payload: SigninRequest) -> AuthOut:
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthenticated("Invalid email or password")
    return auth_out(user, settings)


def _check_email_change(settings: Settings, user: dict, email):
    if email and email.lower() != user["email"].lower() and settings.is_protected(user["email"]):
        raise PermissionDenied("Cannot change the email of a protected account")


def update_profile(db, settings: Settings, caller: Caller, payload: ProfileUpdate) -> AuthOut:
    def mutate(user):
        _check_email_change(settings, user, payload.email)
        if payload.email and _email_taken(db, payload.email, user["_id"]):
            raise AlreadyExists("Email already registered")
        if payload.name:
            user["name"] = payload.name
        if payload.email:
            user["email"] = payload.email
        if payload.password:
            user["password_hash"] = get_password_hash(payload.password)
        if "avatar_url" in payload.model_fields_set:
            user["avatar_url"] = payload.avatar_url

    user, _ = guarded_update(db, "user", caller.user_id, mutate, settings.max_update_retries, "User")
    return auth_out(user, settings)


def list_users(db):
    return [user_out(u) for u in db["user"].find({})]


def get_user(db, user_id: str) -> UserOut:
    return user_out(get_or_404(db, "user", user_id, "User"))


def admin_update_user(db, settings: Settings, user_id: str, payload: AdminUserUpdate) -> UserOut:
    def mutate(user):
        _check_email_change(settings, user, payload.email)
        if payload.email and _email_taken(db, payload.email, user["_id"]):
            raise AlreadyExists("Email already registered")
        if payload.is_admin is False and settings.is_protected(user.get("email")):
            raise PermissionDenied("Cannot remove admin rights from a protected account")
        user.update(payload.model_dump(exclude_none=True))

    user, _ = guarded_update(db, "user", user_id, mutate, settings.max_update_retries, "User")
    return user_out(user)


def delete_user(db, settings: Settings, caller: Caller, user_id: str):
    user = get_or_404(db, "user", user_id, "User")
    if settings.is_protected(user.get("email")):
        logger.warning("protected_account_delete_refused", user_id=user_id, by=caller.user_id)
        raise PermissionDenied("Cannot Delete Protected Admin User")
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("user_deleted", user_id=user_id, by=caller.user_id)


def forget_password(db, settings: Settings, notifier: Notifier, email: str):
    user = db["user"].find_one({"email": email})
    if not user:
        raise NotFound("User Not Found")
    token = create_access_token(
        {"sub": str(user["_id"]), "purpose": "reset"},
        settings,
        timedelta(minutes=settings.reset_token_expire_minutes),
    )
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"reset_token": token}, "$inc": {"version": 1}})
    notifier.reset_password_email(user, f"{settings.base_url}/reset-password/{token}")
    logger.info("password_reset_requested", user_id=str(user["_id"]))
    return token


def reset_password(db, settings: Settings, token: str, password: str):
    payload = decode_token(token, settings)
    if payload.get("purpose") != "reset":
        raise Unauthenticated("Invalid Token")
    user = db["user"].find_one({"reset_token": token})
    if not user:
        raise NotFound("User Not Found")
    db["user"].update_one(
        {"_id": user["_id"], "reset_token": token},
        {"$set": {"password_hash": get_password_hash(password), "reset_token": None}, "$inc": {"version": 1}},
    )
    logger.info("password_reset", user_id=str(user["_id"]))
