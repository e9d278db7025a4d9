# cryptbin/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate all environment variables at startup.
Fail fast with clear error messages if config is invalid.
"""

from functools import lru_cache
from typing import ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage backend
    DATA_STORE: str = Field(
        default="filesystem",
        description="Storage backend: filesystem, database, s3",
    )
    FILESYSTEM_DATA_DIR: str = Field(
        default="./data",
        description="Root directory for the filesystem backend",
    )
    DATABASE_URL: str = Field(
        default="sqlite:///./data/cryptbin.sqlite3",
        description="SQLAlchemy URL for the database backend",
    )
    DATABASE_TABLE_PREFIX: str = Field(
        default="",
        description="Prefix prepended to the paste, comment and config table names",
    )
    LEGACY_DATA_DIR: str | None = Field(
        default=None,
        description="Filesystem data dir whose salt.php the database backend imports once",
    )
    S3_BUCKET: str | None = None
    S3_PREFIX: str = Field(
        default="",
        description="Key prefix for all objects in the bucket",
    )
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None

    # Purge scheduler
    PURGE_LIMIT_SECONDS: int = Field(
        default=300,
        description="Minimum seconds between purge sweeps (< 1 disables throttling)",
    )
    PURGE_BATCH_SIZE: int = Field(
        default=10,
        description="Maximum expired pastes removed per sweep",
    )

    # Traffic limiter
    TRAFFIC_LIMIT_SECONDS: int = Field(
        default=10,
        description="Minimum seconds between posts from one address (< 1 disables)",
    )
    TRAFFIC_EXEMPTED: str = Field(
        default="",
        description="Comma-separated CIDR ranges / identifiers exempt from the interval",
    )
    TRAFFIC_CREATORS: str = Field(
        default="",
        description="Comma-separated CIDR ranges / identifiers allowed to create pastes",
    )
    TRAFFIC_HEADER: str = Field(
        default="",
        description="Trusted proxy header carrying the client address (e.g. X-Forwarded-For)",
    )

    # Paste policy
    SIZE_LIMIT: int = Field(
        default=10485760,
        description="Maximum size of the ciphertext in bytes",
    )
    EXPIRE_OPTIONS: dict[str, int] = Field(
        default={
            "5min": 300,
            "10min": 600,
            "1hour": 3600,
            "1day": 86400,
            "1week": 604800,
            "1month": 2592000,
            "1year": 31536000,
            "never": 0,
        },
        description="Expiration labels offered to clients, in seconds (0 = never)",
    )
    EXPIRE_DEFAULT: str = Field(
        default="1week",
        description="Expiration label used when the client sends an unknown one",
    )
    DISCUSSION_ENABLED: bool = Field(
        default=True,
        description="Allow pastes with open discussion",
    )

    # Envelope format policy (heuristics, not security boundaries)
    FORMAT_MIN_ITERATIONS: int = Field(
        default=10000,
        description="Minimum PBKDF2 iteration count accepted in adata",
    )
    FORMAT_MAX_IV_BYTES: int = 16
    FORMAT_MAX_SALT_BYTES: int = 8
    FORMAT_MIN_ENTROPY_RATIO: float = Field(
        default=1.0,
        description="Reject ciphertext whose deflated size is below this share of its raw size",
    )

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    AVAILABLE_STORES: ClassVar[set[str]] = {"filesystem", "database", "s3"}

    @field_validator("DATA_STORE")
    @classmethod
    def validate_data_store(cls, v: str) -> str:
        name = v.lower().strip()
        if name not in cls.AVAILABLE_STORES:
            raise ValueError(f"Unknown data store: {v}. Available: {', '.join(sorted(cls.AVAILABLE_STORES))}")
        return name

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
