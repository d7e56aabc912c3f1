"""
Configuration for the campus gate pass backend.

Settings are loaded from environment variables or default values suitable
for development. Use environment variables or a `.env` file at the project
root to override as needed.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pathlib import Path
from dotenv import load_dotenv
import logging
import os

ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_PATH, override=False)


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # Database connection string. Default is a local SQLite file for dev.
    database_url: str = Field(default="sqlite+pysqlite:///./gatepass.db", env="DATABASE_URL")
    auto_create_db: bool = Field(default=True, env="AUTO_CREATE_DB")
    # Secret for security codes and QR verification tokens.
    gatepass_code_secret: str = Field(default="dev-gatepass-code-secret", env="GATEPASS_CODE_SECRET")
    pass_validity_min: int = Field(default=60, env="PASS_VALIDITY_MIN")
    qr_token_ttl_hours: int = Field(default=24, env="QR_TOKEN_TTL_HOURS")
    max_active_passes: int = Field(default=3, env="MAX_ACTIVE_PASSES")
    expiry_sweep_interval_sec: int = Field(default=300, env="EXPIRY_SWEEP_INTERVAL_SEC")
    expiry_warning_min: int = Field(default=15, env="EXPIRY_WARNING_MIN")
    sweep_batch_size: int = Field(default=200, env="SWEEP_BATCH_SIZE")
    reminder_after_min: int = Field(default=60, env="REMINDER_AFTER_MIN")
    smtp_host: str | None = Field(default=None, env="SMTP_HOST")
    smtp_port: int | None = Field(default=None, env="SMTP_PORT")
    smtp_user: str | None = Field(default=None, env="SMTP_USER")
    smtp_password: str | None = Field(default=None, env="SMTP_PASSWORD")
    smtp_from: str | None = Field(default=None, env="SMTP_FROM")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()


def get_app_env() -> str:
    raw = os.getenv("GATEPASS_ENV") or os.getenv("APP_ENV") or "dev"
    env = raw.strip().lower()
    if env not in {"dev", "prod"}:
        logging.getLogger("config").warning("Unknown GATEPASS_ENV=%s; defaulting to dev", raw)
        env = "dev"
    return env


def _auth_disabled() -> bool:
    return os.getenv("GATEPASS_AUTH_DISABLED", "true").lower() in {"1", "true", "yes"}


def _is_weak_secret(secret: str | None) -> bool:
    if not secret:
        return True
    secret = secret.strip()
    if len(secret) < 20:
        return True
    weak = {"change-me", "changeme", "password", "secret", "dev-gatepass-code-secret"}
    return secret.lower() in weak


def validate_runtime_settings() -> None:
    env = get_app_env()
    logger = logging.getLogger("config")

    auth_disabled = _auth_disabled()
    jwt_secret = (os.getenv("GATEPASS_JWT_SECRET") or "").strip()
    if env == "prod":
        if auth_disabled:
            raise RuntimeError("GATEPASS_AUTH_DISABLED must be false in prod.")
        if len(jwt_secret) < 20:
            raise RuntimeError("GATEPASS_JWT_SECRET must be set to a strong value in prod.")
        if _is_weak_secret(settings.gatepass_code_secret):
            raise RuntimeError("GATEPASS_CODE_SECRET must be set to a strong value in prod.")
        if not settings.smtp_host:
            logger.error("SMTP_HOST missing in prod; e-mail notifications will only be logged.")
        if os.getenv("AUTO_CREATE_DB", "true").lower() in {"1", "true", "yes"}:
            logger.warning("AUTO_CREATE_DB is enabled in prod. Consider running migrations instead.")
    else:
        if not auth_disabled and len(jwt_secret) < 20:
            logger.warning("GATEPASS_JWT_SECRET is weak or missing; dev fallback will be used.")
        if _is_weak_secret(settings.gatepass_code_secret):
            logger.warning("GATEPASS_CODE_SECRET is weak or missing; dev fallback will be used.")

    if settings.pass_validity_min <= 0:
        raise RuntimeError("PASS_VALIDITY_MIN must be positive.")
    if settings.sweep_batch_size <= 0:
        raise RuntimeError("SWEEP_BATCH_SIZE must be positive.")


validate_runtime_settings()
