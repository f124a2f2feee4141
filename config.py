"""
Configuration for the storefront catalog API.

Settings come from environment variables (optionally via a .env file).
"""
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _list_env(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Runtime settings for the API."""

    # MongoDB
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    database_name: str = field(default_factory=lambda: os.getenv("DATABASE_NAME", ""))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    # HTTP
    cors_origins: List[str] = field(default_factory=lambda: _list_env("CORS_ORIGINS", "*"))
    port: int = field(default_factory=lambda: _int_env("PORT", 8000))

    # Listing pagination
    default_page_limit: int = field(default_factory=lambda: _int_env("DEFAULT_PAGE_LIMIT", 12))
    max_page_limit: int = field(default_factory=lambda: _int_env("MAX_PAGE_LIMIT", 50))
    admin_max_page_limit: int = field(default_factory=lambda: _int_env("ADMIN_MAX_PAGE_LIMIT", 100))


settings = Settings()
