"""
RiskGov Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "RiskGov"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8001, alias="API_PORT")
    api_prefix: str = "/api/v1"
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        alias="CORS_ORIGINS",
    )

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./riskgov.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, alias="DB_MAX_OVERFLOW")
    db_pool_recycle: int = Field(default=3600, alias="DB_POOL_RECYCLE")

    # ── JWT ────────────────────────────────────────────────────────────────
    jwt_secret: str = Field(
        default="dev-jwt-secret-change-in-production",
        alias="JWT_SECRET",
    )
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = Field(default=480, alias="JWT_EXPIRE_MINUTES")

    # ── Escalation ────────────────────────────────────────────────────────
    escalation_timeout_seconds: float = Field(default=10.0, alias="ESCALATION_TIMEOUT_SECONDS")
    escalation_webhook_url: str = Field(default="", alias="ESCALATION_WEBHOOK_URL")
    escalation_smtp_host: str = Field(default="", alias="ESCALATION_SMTP_HOST")
    escalation_smtp_port: int = Field(default=587, alias="ESCALATION_SMTP_PORT")
    escalation_smtp_user: str = Field(default="", alias="ESCALATION_SMTP_USER")
    escalation_smtp_password: str = Field(default="", alias="ESCALATION_SMTP_PASSWORD")
    escalation_from_email: str = Field(default="governance@riskgov.io", alias="ESCALATION_FROM_EMAIL")
    # Fallback recipients when a metric declares no contacts for a zone
    risk_officer_emails: List[str] = Field(default=[], alias="RISK_OFFICER_EMAILS")
    board_emails: List[str] = Field(default=[], alias="BOARD_EMAILS")

    # ── Appetite Engine ───────────────────────────────────────────────────
    evaluation_history_limit: int = Field(default=500, alias="EVALUATION_HISTORY_LIMIT")
    default_sustained_periods: int = Field(default=3, alias="DEFAULT_SUSTAINED_PERIODS")
    default_breach_count: int = Field(default=2, alias="DEFAULT_BREACH_COUNT")
    default_breach_window_days: int = Field(default=90, alias="DEFAULT_BREACH_WINDOW_DAYS")
    default_lookback_days: int = Field(default=30, alias="DEFAULT_LOOKBACK_DAYS")
    # A tolerance whose latest approved observation is older than this counts as missing data
    appetite_data_window_days: int = Field(default=90, alias="APPETITE_DATA_WINDOW_DAYS")

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")
    health_check_timeout_seconds: int = Field(default=5, alias="HEALTH_CHECK_TIMEOUT_SECONDS")

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def is_sqlite(self) -> bool:
        return self.async_database_url.startswith("sqlite")


settings = Settings()
