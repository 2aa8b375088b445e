"""Runtime configuration for the storefront (toggleable during tests/runtime)."""
import logging
import os
from typing import NamedTuple, Optional


def _flag(value: Optional[str]) -> bool:
    return (value or "").lower() in ("1", "true", "yes", "on")


class Settings(NamedTuple):
    redis_host: str
    redis_port: int
    redis_username: str
    redis_password: Optional[str]
    connect_timeout: float
    jwt_secret: str
    admin_email: str
    email_from: str
    smtp_host: str
    smtp_port: int
    smtp_username: Optional[str]
    smtp_password: Optional[str]
    default_admin_password: str
    otp_expiry: int
    resend_timer: int
    unverified_expiry: int
    cleanup_interval: float
    notify_max_attempts: int
    decrement_stock_on_checkout: bool
    log_level: str
    host: str
    port: int


def load_settings() -> Settings:
    # REDIS_HOST may carry the port as "host:port"
    host = os.getenv("REDIS_HOST", "")
    port = os.getenv("REDIS_PORT", "6379")
    if ":" in host:
        host, port = host.rsplit(":", 1)

    return Settings(
        redis_host=host,
        redis_port=int(port),
        redis_username=os.getenv("REDIS_USERNAME", "default"),
        redis_password=os.getenv("REDIS_PASSWORD") or None,
        connect_timeout=float(os.getenv("STORAGE_CONNECT_TIMEOUT", "5")),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret"),
        admin_email=os.getenv("ADMIN_EMAIL", "admin@example.com"),
        email_from=os.getenv("EMAIL_FROM", "noreply@example.com"),
        smtp_host=os.getenv("SMTP_HOST", ""),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_username=os.getenv("SMTP_USERNAME") or None,
        smtp_password=os.getenv("SMTP_PASSWORD") or None,
        default_admin_password=os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123"),
        otp_expiry=int(os.getenv("OTP_EXPIRY", str(10 * 60))),
        resend_timer=int(os.getenv("RESEND_TIMER", "10")),
        unverified_expiry=int(os.getenv("UNVERIFIED_EXPIRY", str(10 * 60))),
        cleanup_interval=float(os.getenv("CLEANUP_INTERVAL", "60")),
        notify_max_attempts=int(os.getenv("NOTIFY_MAX_ATTEMPTS", "3")),
        decrement_stock_on_checkout=_flag(os.getenv("DECREMENT_STOCK_ON_CHECKOUT")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5000")),
    )


state = load_settings()


def get_settings() -> Settings:
    return state


def override_settings(**changes) -> Settings:
    global state
    state = state._replace(**changes)
    return state


def reset_settings() -> Settings:
    global state
    state = load_settings()
    return state


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=getattr(logging, level or state.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
