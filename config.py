import logging
import os
from functools import lru_cache
from typing import List, Literal, Optional

import structlog
from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    secret_key: str = "supersecretkey"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30
    reset_token_expire_minutes: int = 60 * 3

    # accounts that can never be deleted, matched by email
    protected_account_emails: List[str] = Field(default_factory=list)

    sold_count_policy: Literal["created", "paid", "both"] = "both"
    require_paid_before_delivery: bool = True
    max_update_retries: int = Field(5, ge=1)

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    mail_from_name: str = "Reptiles Shop"
    base_url: str = "http://localhost:3000"

    log_level: str = "INFO"
    log_json: bool = False

    def is_protected(self, email: Optional[str]) -> bool:
        return bool(email) and email.lower() in self.protected_account_emails

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            secret_key=os.getenv("SECRET_KEY", "supersecretkey"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 30)),
            reset_token_expire_minutes=int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 60 * 3)),
            protected_account_emails=_env_list("PROTECTED_ACCOUNT_EMAILS"),
            sold_count_policy=os.getenv("SOLD_COUNT_POLICY", "both"),
            require_paid_before_delivery=_env_bool("REQUIRE_PAID_BEFORE_DELIVERY", True),
            max_update_retries=int(os.getenv("MAX_UPDATE_RETRIES", 5)),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", 587)),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            mail_from_name=os.getenv("MAIL_FROM_NAME", "Reptiles Shop"),
            base_url=os.getenv("BASE_URL", "http://localhost:3000"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", False),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(settings: Optional[Settings] = None):
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if settings.log_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
