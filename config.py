import os
from datetime import timedelta
from urllib.parse import urlparse, urlunparse

DEFAULT_DATABASE_URL = "sqlite:///seedtrace.db"
DEFAULT_VERIFICATION_BASE_URL = "https://perbenihan.com/qrcodeverification.php"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    text = value.strip()
    if not text:
        return default
    try:
        return float(text)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = _env_float(name, float(default))
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list[str]:
    value = os.getenv(name) or ""
    return [part.strip() for part in value.split(",") if part.strip()]


def _normalize_db_url(url: str) -> str:
    if not url:
        return DEFAULT_DATABASE_URL

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    parsed = urlparse(url)

    if parsed.scheme not in {"postgresql", "postgresql+psycopg2"}:
        return url

    def _preferred_db_name() -> str | None:
        for key in ("PGDATABASE", "POSTGRES_DB", "POSTGRES_DATABASE", "DATABASE_NAME"):
            value = os.getenv(key)
            if value:
                return value
        return None

    path = (parsed.path or "").lstrip("/")
    preferred_db = _preferred_db_name()

    if preferred_db:
        if not path:
            parsed = parsed._replace(path=f"/{preferred_db}")
        elif path == "postgres" and preferred_db != "postgres":
            parsed = parsed._replace(path=f"/{preferred_db}")

    return urlunparse(parsed)


def _env_database_url() -> str | None:
    url = os.getenv("DATABASE_URL")
    return url if url and url.strip() else None


def current_database_url() -> str:
    return _normalize_db_url(_env_database_url() or DEFAULT_DATABASE_URL)


def _env_sqlalchemy_database_uri() -> str | None:
    uri = os.getenv("SQLALCHEMY_DATABASE_URI")
    return uri if uri and uri.strip() else None


class Config:
    SQLALCHEMY_DATABASE_URI = _env_sqlalchemy_database_uri() or current_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me-before-deploying")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=_env_float("JWT_ACCESS_TOKEN_HOURS", 10.0))
    ENV = os.getenv("FLASK_ENV", "production")

    MAIL_SERVER = (os.getenv("MAIL_SERVER") or "").strip() or None
    MAIL_PORT = _env_int("MAIL_PORT", 465)
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", False)
    MAIL_USE_SSL = _env_bool("MAIL_USE_SSL", True)
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = "".join((os.getenv("MAIL_PASSWORD") or "").split()) or None
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@localhost")
    # Without an SMTP server messages are only recorded, never sent.
    MAIL_SUPPRESS_SEND = _env_bool("MAIL_SUPPRESS_SEND", MAIL_SERVER is None)
    ADMIN_NOTIFICATION_EMAILS = _env_list("ADMIN_NOTIFICATION_EMAILS")

    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000").rstrip("/")
    VERIFICATION_BASE_URL = os.getenv("VERIFICATION_BASE_URL", DEFAULT_VERIFICATION_BASE_URL)
    COMPLAINT_NUMBER_PREFIX = os.getenv("COMPLAINT_NUMBER_PREFIX", "ADV-COMP")

    PROGRESS_TTL_SECONDS = _env_float("PROGRESS_TTL_SECONDS", 300.0)
    PROGRESS_STALE_SECONDS = _env_float("PROGRESS_STALE_SECONDS", 3600.0)
    PROGRESS_POLL_INTERVAL_MS = _env_int("PROGRESS_POLL_INTERVAL_MS", 300)
    PROGRESS_STREAM_WAIT_SECONDS = _env_float("PROGRESS_STREAM_WAIT_SECONDS", 5.0)

    EXPORT_DEFAULT_PROVINCE = os.getenv("EXPORT_DEFAULT_PROVINCE", "JAWA TIMUR")
    EXPORT_DEFAULT_SEED_TYPE = os.getenv("EXPORT_DEFAULT_SEED_TYPE", "Jagung Hibrida")
