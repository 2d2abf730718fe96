# medkit/core/config.py
import os
from typing import List
from urllib.parse import quote_plus

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "First Aid Kit")
    API_V1_STR: str = os.getenv("API_V1_STR", "/api")

    # CORS (env takes priority)
    BACKEND_CORS_ORIGINS: List[str] = _split_csv(
        os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ))

    # ---------- Database ----------
    MYSQL_HOST: str = os.getenv("MYSQL_HOST", "localhost")
    MYSQL_PORT: int = int(os.getenv("MYSQL_PORT", "3306"))
    MYSQL_USER: str = os.getenv("MYSQL_USER", "medkit_user")
    MYSQL_PASSWORD: str = os.getenv("MYSQL_PASSWORD", "")
    MYSQL_DB: str = os.getenv("MYSQL_DB", "medkit")
    DB_DRIVER: str = os.getenv("DB_DRIVER", "pymysql")

    # DATABASE_URL wins over the MYSQL_* parts (sqlite for local runs/tests)
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL") or (
        f"mysql+{DB_DRIVER}://{quote_plus(MYSQL_USER)}:{quote_plus(MYSQL_PASSWORD)}"
        f"@{MYSQL_HOST}:{MYSQL_PORT}/{MYSQL_DB}?charset=utf8mb4")

    # ---------- Security ----------
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-this")
    JWT_ALG: str = os.getenv("JWT_ALG", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(
        os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "2440"))

    # ---------- Email ----------
    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.office365.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_FROM: str = os.getenv("SMTP_FROM", "no-reply@firstaidkit.local")
    SMTP_TLS: bool = _flag("SMTP_TLS", "true")

    # ---------- Dates ----------
    TIMEZONE: str = os.getenv("TIMEZONE", "Europe/Warsaw")
    EXPIRING_SOON_DAYS: int = int(os.getenv("EXPIRING_SOON_DAYS", "30"))

    # ---------- Search ----------
    SEARCH_DEFAULT_PAGE_SIZE: int = int(
        os.getenv("SEARCH_DEFAULT_PAGE_SIZE", "20"))
    SEARCH_MAX_PAGE_SIZE: int = int(os.getenv("SEARCH_MAX_PAGE_SIZE", "100"))

    # ---------- Cache ----------
    CACHE_BACKEND: str = os.getenv("CACHE_BACKEND", "memory").lower()
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CACHE_TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "300"))
    CACHE_MAX_ENTRIES: int = int(os.getenv("CACHE_MAX_ENTRIES", "10000"))
    CACHE_SOCKET_TIMEOUT_SECONDS: float = float(
        os.getenv("CACHE_SOCKET_TIMEOUT_SECONDS", "0.5"))

    # ---------- Expiry alerts ----------
    ALERTS_SCHEDULER_ENABLED: bool = _flag("ALERTS_SCHEDULER_ENABLED", "true")
    ALERTS_SCHEDULE_HOUR: int = int(os.getenv("ALERTS_SCHEDULE_HOUR", "9"))
    ALERTS_SCHEDULE_MINUTE: int = int(os.getenv("ALERTS_SCHEDULE_MINUTE", "0"))
    ALERT_HORIZON_DAYS: int = int(os.getenv("ALERT_HORIZON_DAYS", "30"))
    ALERT_SEND_TIMEOUT_SECONDS: float = float(
        os.getenv("ALERT_SEND_TIMEOUT_SECONDS", "30"))
    ALERTS_JOB_LOCK_SECONDS: int = int(
        os.getenv("ALERTS_JOB_LOCK_SECONDS", "3600"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
