"""Credential Engine — configuration loaded from environment."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, loaded from .env or environment variables."""

    # ── Database ──────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///./credential_engine.db"

    # ── Cache ─────────────────────────────────────────────
    redis_url: str = "redis://localhost:6379/0"
    cache_timeout_ms: int = 250

    # ── Sessions ──────────────────────────────────────────
    session_ttl_seconds: int = 24 * 60 * 60
    refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60

    # ── OTP throttling ────────────────────────────────────
    otp_resend_cooldown_seconds: int = 120
    otp_verify_window_seconds: int = 60 * 60
    otp_verify_threshold: int = 10

    # ── Login throttling ──────────────────────────────────
    login_window_seconds: int = 15 * 60
    login_threshold: int = 5

    # ── Email (SMTP) ──────────────────────────────────────
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    email_from: str = "no-reply@example.com"
    notification_timeout_seconds: float = 10.0

    # ── App ───────────────────────────────────────────────
    app_name: str = "Credential Engine"
    debug: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton settings instance
settings = Settings()
