"""Configuration management using Pydantic Settings."""

from __future__ import annotations

import json
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_list(v: object) -> list[str]:
    """Parse a list from either a JSON array string, comma-separated string, or list."""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return []
        if v.startswith("["):
            return json.loads(v)
        return [item.strip() for item in v.split(",") if item.strip()]
    return list(v)  # type: ignore[arg-type]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Object storage (S3 or any S3-compatible endpoint such as MinIO)
    storage_endpoint: str = "s3.amazonaws.com"
    storage_region: str = "us-east-1"
    storage_access_key: str = ""
    storage_secret_key: str = ""
    storage_bucket: str = ""
    storage_secure: bool = True
    # Base for public object URLs; empty means https://<bucket>.s3.amazonaws.com
    storage_public_url: str = ""

    # Upload authority
    upload_url_expiry_seconds: int = 3600
    verify_uploads: bool = True
    api_port: int = 8080
    # Stored as str to avoid pydantic-settings JSON parse issues with env vars.
    # Use parse_list() at the point of use.
    cors_origins: str = "*"

    # Uploader client
    uploader_api_url: str = "http://localhost:8080"
    uploader_timeout_seconds: float = 30.0
    # 0 means no limit on concurrently running uploads
    uploader_max_concurrency: int = 0
    uploader_confirm_uploads: bool = True
    uploader_public_url: str = ""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def public_url_base(self) -> str:
        """Base URL that object keys are appended to for public links."""
        if self.storage_public_url:
            return self.storage_public_url.rstrip("/")
        return f"https://{self.storage_bucket}.s3.amazonaws.com"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
