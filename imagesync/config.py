"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    """imagesync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/imagesync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # Trigger secrets
    sync_secret: str = ""
    webhook_secret: str = ""

    # Row store (Baserow)
    baserow_api_url: str = "https://api.baserow.io/api"
    baserow_api_token: str = ""
    baserow_database_id: int | None = None
    baserow_page_size: int = Field(default=200, ge=1, le=200)
    write_back_to_source: bool = False

    # Remote file source (Google Drive)
    google_drive_api_key: str = ""
    google_service_account_json: str = ""

    # Target store (S3-compatible, e.g. Cloudflare R2)
    storage_endpoint_url: str | None = None
    storage_access_key_id: str = ""
    storage_secret_access_key: str = ""
    storage_region: str = "auto"
    storage_bucket: str = "images"
    storage_prefix: str = ""
    public_url_prefix: str = ""

    # Image policy
    max_image_width: int = Field(default=2048, ge=16)
    max_image_height: int = Field(default=2048, ge=16)
    image_quality: int = Field(default=85, ge=1, le=100)
    max_image_size: int = Field(default=10 * MIB, ge=1)
    small_file_threshold: int = Field(default=2 * MIB, ge=0)
    target_size_ceiling: int = Field(default=1 * MIB, ge=1)
    max_transform_attempts: int = Field(default=3, ge=1, le=10)
    min_size_reduction: float = Field(default=0.05, ge=0.0, lt=1.0)
    quality_floor: int = Field(default=40, ge=1, le=100)
    quality_step: int = Field(default=10, ge=1, le=50)
    dimension_step: float = Field(default=0.8, gt=0.0, lt=1.0)
    transform_timeout_seconds: float = Field(default=30.0, gt=0)

    # Transport
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    storage_timeout_seconds: float = Field(default=30.0, gt=0)

    # Scheduling
    sync_interval_seconds: int = Field(default=0, ge=0, le=7 * 86400)

    @property
    def public_base_url(self) -> str:
        """Prefix for public object URLs, falling back to the bucket endpoint."""
        if self.public_url_prefix:
            return self.public_url_prefix.rstrip("/")
        if self.storage_endpoint_url:
            return f"{self.storage_endpoint_url.rstrip('/')}/{self.storage_bucket}"
        return f"https://{self.storage_bucket}.s3.amazonaws.com"

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if len(self.sync_secret) < 16:
            violations.append("SYNC_SECRET must be set to a high-entropy value (>=16 chars)")
        if len(self.webhook_secret) < 16:
            violations.append("WEBHOOK_SECRET must be set to a high-entropy value (>=16 chars)")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
