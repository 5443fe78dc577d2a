"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pathlib import Path
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Avatar Banner Service"
    APP_VERSION: str = "1.0.0"
    NODE_ENV: str  # development, production; no default, must be set
    IMAGE_API_PORT: int = 8000

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    # Exact origins, e.g. "https://pepe-is.life,https://www.pepemanager.com"
    CORS_ALLOWED_ORIGINS: str = ""
    # Host suffixes accepted for any scheme/subdomain
    CORS_ALLOWED_ORIGIN_SUFFIXES: str = "pepe-is.life,pepemanager.com"
    CORS_ALLOW_ALL_IN_DEVELOPMENT: bool = True

    # ==========================================================================
    # Fetch Settings
    # ==========================================================================
    MAX_FETCH_BYTES: int = 8 * 1024 * 1024  # 8MB
    FETCH_TIMEOUT_SECONDS: float = 10.0
    ALLOWED_IMAGE_HOSTS: str = ""  # empty = any host
    FETCH_AS_PNG: bool = True  # ask the CDN for a static PNG rendition

    # ==========================================================================
    # Decode / Template Settings
    # ==========================================================================
    MAX_IMAGE_PIXELS: int = 25_000_000  # 25MP, decompression bomb guard
    TEMPLATE_DIR: Path = Path("assets/images")

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    @field_validator("NODE_ENV")
    @classmethod
    def validate_node_env(cls, v: str) -> str:
        if v not in ("development", "production"):
            raise ValueError("NODE_ENV isn't using the correct values")
        return v

    @property
    def in_production(self) -> bool:
        return self.NODE_ENV == "production"

    @property
    def server_host(self) -> str:
        """Public bind in production, loopback otherwise."""
        return "0.0.0.0" if self.in_production else "127.0.0.1"

    @property
    def server_addr(self) -> str:
        return f"{self.server_host}:{self.IMAGE_API_PORT}"

    @property
    def cors_allowed_origins(self) -> List[str]:
        return _split_csv(self.CORS_ALLOWED_ORIGINS)

    @property
    def cors_allowed_origin_suffixes(self) -> List[str]:
        return _split_csv(self.CORS_ALLOWED_ORIGIN_SUFFIXES)

    @property
    def allowed_image_hosts(self) -> List[str]:
        return [host.lower() for host in _split_csv(self.ALLOWED_IMAGE_HOSTS)]


# Global settings instance
settings = Settings()
