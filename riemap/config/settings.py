"""RieMap application settings loaded from environment variables."""

from enum import StrEnum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class LogLevel(StrEnum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Application-wide settings loaded from environment variables / .env file.

    Every variable is prefixed with ``RIEMAP_`` (e.g. ``RIEMAP_DATA_DIR``).
    """

    model_config = SettingsConfigDict(
        env_prefix="RIEMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Storage ---
    DATA_DIR: str = Field(
        default="./data",
        description="Root directory for versioned artifacts.",
    )
    TEMP_DIR: str = Field(
        default="./temp",
        description="Scratch directory for partial downloads.",
    )
    MAX_FILE_SIZE: int = Field(
        default=1_073_741_824,
        gt=0,
        description="Upper bound on a single upstream extract, in bytes.",
    )
    KEEP_VERSIONS: int = Field(
        default=10,
        gt=0,
        description="Versions retained per region by the cleanup policy.",
    )

    # --- Region catalog ---
    REGIONS_FILE: str = Field(
        default="",
        description="Optional JSON region list; built-in hierarchy when empty.",
    )

    # --- Database (jobs + quality reports) ---
    DATABASE_URL: str = Field(
        default="",
        description="Async SQLAlchemy URL. Empty keeps jobs and reports in memory.",
    )

    # --- Processing ---
    MAX_CONCURRENT_JOBS: int = Field(
        default=2,
        gt=0,
        description="Jobs allowed to run at once across all regions.",
    )

    # --- Upstream fetch ---
    FETCH_TIMEOUT_SECONDS: float = Field(
        default=60.0,
        gt=0,
        description="httpx connect/read/write/pool timeout for each network wait.",
    )
    FETCH_ATTEMPT_TIMEOUT_SECONDS: float = Field(
        default=3600.0,
        gt=0,
        description="Wall-clock limit for one download attempt, body included.",
    )
    FETCH_MAX_ATTEMPTS: int = Field(default=4, gt=0)
    FETCH_BACKOFF_BASE_SECONDS: float = Field(default=1.0, ge=0)
    FETCH_BACKOFF_MAX_SECONDS: float = Field(default=30.0, ge=0)
    FETCH_CHUNK_SIZE: int = Field(default=1_048_576, gt=0)

    # --- Server ---
    HOST: str = "127.0.0.1"
    PORT: int = Field(default=3001, gt=0, lt=65536)

    # --- Logging ---
    LOG_LEVEL: LogLevel = Field(
        default=LogLevel.INFO,
        description="Application log level.",
    )

    # --- Environment ---
    ENVIRONMENT: Environment = Field(
        default=Environment.DEV,
        description="Deployment environment (dev/staging/prod).",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == Environment.PROD


def get_settings() -> Settings:
    """Factory function for dependency injection via FastAPI Depends."""
    return Settings()
