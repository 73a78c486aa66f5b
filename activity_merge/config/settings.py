import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues.

    SQLite is for local development only. Set DATABASE_URL to a PostgreSQL
    connection string in any deployed environment.
    """
    db_url = os.getenv("DATABASE_URL", "")
    if db_url:
        logger.info(f"Using DATABASE_URL from environment: {db_url}")
        is_production = bool(os.getenv("RENDER") or os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("DYNO"))
        if db_url.startswith("sqlite://") and is_production:
            logger.error(
                "⚠️ CRITICAL: SQLite detected in production environment! "
                "Merge flags and review decisions will be LOST on rebuilds. Use PostgreSQL instead."
            )
        return db_url

    db_path = Path(__file__).parent.parent.parent / "activity_merge.db"
    abs_path = db_path.resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.warning(
        f"⚠️ Using SQLite database (LOCAL DEV ONLY): {db_url}\n"
        "⚠️ Set DATABASE_URL environment variable to use PostgreSQL in production."
    )
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE", description="Rotating log file; console only when unset")
    auth_user_header: str = Field(
        default="X-User-Id",
        validation_alias="AUTH_USER_HEADER",
        description="Header set by the upstream auth gateway carrying the authenticated owner id",
    )
    merge_scan_max_workers: int = Field(
        default=4,
        validation_alias="MERGE_SCAN_MAX_WORKERS",
        description="Upper bound on month chunks scanned concurrently",
    )
    merge_scan_default_days: int = Field(
        default=7,
        validation_alias="MERGE_SCAN_DEFAULT_DAYS",
        description="Look-back window used when a scan request omits its dates",
    )
    merge_include_low_confidence: bool = Field(
        default=False,
        validation_alias="MERGE_INCLUDE_LOW_CONFIDENCE",
        description="Surface LOW tier pairs as merge candidates",
    )
    merge_duplicate_policy: str = Field(
        default="mark",
        validation_alias="MERGE_DUPLICATE_POLICY",
        description="What accepting a merge does to the duplicate record: mark | delete",
    )
    merge_scan_scheduler_enabled: bool = Field(
        default=False,
        validation_alias="MERGE_SCAN_SCHEDULER_ENABLED",
        description="Run periodic duplicate scans for every owner",
    )
    merge_scan_interval_minutes: int = Field(
        default=60,
        validation_alias="MERGE_SCAN_INTERVAL_MINUTES",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Valid levels are: {', '.join(valid_levels)}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @field_validator("merge_scan_max_workers")
    @classmethod
    def validate_max_workers(cls, value: int) -> int:
        if value < 1:
            logger.warning(f"MERGE_SCAN_MAX_WORKERS must be at least 1, got {value}. Using 1.")
            return 1
        return value

    @field_validator("merge_duplicate_policy")
    @classmethod
    def validate_duplicate_policy(cls, value: str) -> str:
        """Validate the duplicate policy applied when a merge is accepted."""
        normalized = value.lower().strip()
        if normalized not in {"mark", "delete"}:
            logger.warning(f"Invalid MERGE_DUPLICATE_POLICY '{value}'. Valid policies are: mark, delete. Defaulting to mark.")
            return "mark"
        return normalized


settings = Settings()
