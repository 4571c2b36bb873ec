"""
Configuration and settings for the BGaze backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Profile database (any SQLAlchemy URL, Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # OTP store (Redis); in-process map when unset
    redis_url: Optional[str] = Field(default=None)
    otp_key_prefix: str = Field(default="bgaze:otp:")
    otp_ttl_seconds: int = Field(default=5 * 60)

    # Session tokens
    jwt_secret: Optional[str] = Field(default=None)
    jwt_algorithm: str = Field(default="HS256")
    token_ttl_days: int = Field(default=7)

    # Outbound mail
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=465)
    smtp_user: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_ssl: bool = Field(default=True)
    mail_from: Optional[str] = Field(default=None)

    # S3 object storage
    aws_s3_bucket: Optional[str] = Field(default=None)
    aws_region: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    s3_endpoint_url: Optional[str] = Field(default=None)
    s3_object_acl: Optional[str] = Field(default=None)
    upload_max_bytes: int = Field(default=5 * 1024 * 1024)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
