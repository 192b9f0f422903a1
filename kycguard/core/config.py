"""
Application Configuration Module.

Configuration with:
- Pydantic Settings v2
- Environment variable support (.env)
- Validation of stage and provider settings
"""

from typing import List, Optional
from functools import lru_cache

from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.get_logger(__name__)


SKIPPABLE_STAGES = ("documents", "selfie", "liveness", "voice")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Secrets (provider API key, database credentials) should come from the
    environment, never from code.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ========================================================================
    # APPLICATION
    # ========================================================================

    app_name: str = "KYCGuard"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="KYC_ENVIRONMENT")
    debug: bool = Field(default=False, alias="KYC_DEBUG")

    # ========================================================================
    # API
    # ========================================================================

    api_host: str = Field(default="0.0.0.0", alias="KYC_API_HOST")
    api_port: int = Field(default=8000, alias="KYC_API_PORT")
    api_prefix: str = Field(default="/api/v1", alias="KYC_API_PREFIX")
    allowed_origins: List[str] = Field(
        default=["http://localhost:3000"],
        alias="KYC_ALLOWED_ORIGINS",
    )

    # ========================================================================
    # DATABASE
    # ========================================================================

    database_url: str = Field(
        default="",
        alias="KYC_DATABASE_URL",
        description="Async SQLAlchemy URL; empty keeps sessions and ledger in memory",
    )
    db_pool_size: int = Field(default=10, alias="KYC_DB_POOL_SIZE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure database URL uses an async driver."""
        if v.startswith("postgresql://"):
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif v.startswith("sqlite://"):
            v = v.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return v

    # ========================================================================
    # CAPABILITY PROVIDERS
    # ========================================================================

    provider_base_url: Optional[str] = Field(
        default=None,
        alias="KYC_PROVIDER_BASE_URL",
        description="Detector service base URL; unset means every provider is unavailable",
    )
    provider_api_key: Optional[str] = Field(default=None, alias="KYC_PROVIDER_API_KEY")
    provider_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
        alias="KYC_PROVIDER_TIMEOUT_SECONDS",
    )
    flag_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        alias="KYC_FLAG_THRESHOLD",
    )

    # ========================================================================
    # SESSION POLICY
    # ========================================================================

    optional_stages: List[str] = Field(default_factory=list, alias="KYC_OPTIONAL_STAGES")
    duplicate_session_window_seconds: int = Field(
        default=3600,
        ge=0,
        alias="KYC_DUPLICATE_SESSION_WINDOW_SECONDS",
    )
    authorized_reviewers: List[str] = Field(
        default_factory=list,
        alias="KYC_AUTHORIZED_REVIEWERS",
        description="Reviewer ids allowed to override; empty allows any reviewer",
    )

    @field_validator("optional_stages")
    @classmethod
    def validate_optional_stages(cls, v: List[str]) -> List[str]:
        """Only evidence stages after personal info may be skipped."""
        unknown = [s for s in v if s not in SKIPPABLE_STAGES]
        if unknown:
            raise ValueError(f"Stages cannot be optional: {unknown}")
        return v

    # ========================================================================
    # OBSERVABILITY
    # ========================================================================

    log_level: str = Field(default="INFO", alias="KYC_LOG_LEVEL")
    log_format: str = Field(default="json", alias="KYC_LOG_FORMAT")  # json or console
    metrics_enabled: bool = Field(default=True, alias="KYC_METRICS_ENABLED")

    # ========================================================================
    # COMPUTED PROPERTIES
    # ========================================================================

    @computed_field
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @computed_field
    @property
    def uses_database(self) -> bool:
        """Check if a SQL database backs sessions and the ledger."""
        return bool(self.database_url)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    settings = Settings()

    logger.info(
        "settings_loaded",
        environment=settings.environment,
        debug=settings.debug,
        uses_database=settings.uses_database,
        provider_configured=settings.provider_base_url is not None,
        optional_stages=settings.optional_stages,
    )

    return settings
