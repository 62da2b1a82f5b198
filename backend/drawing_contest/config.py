"""
Configuration for the drawing contest API.

Values come from the environment (optionally a local .env file):
- DATABASE_URL: managed Postgres in production, SQLite for local runs
- AUTH_URL / AUTH_API_KEY: hosted auth provider validating bearer tokens
- CLOUDINARY_CLOUD_NAME / CLOUDINARY_UPLOAD_PRESET: media CDN upload target
- REFERENCE_TIMEZONE, QUIET_START_HOUR, QUIET_END_HOUR: contest calendar
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./drawing_contest.db")
    )

    # Hosted auth provider
    auth_url: str = field(default_factory=lambda: os.getenv("AUTH_URL", ""))
    auth_api_key: str = field(default_factory=lambda: os.getenv("AUTH_API_KEY", ""))

    # Media CDN
    cloudinary_cloud_name: str = field(
        default_factory=lambda: os.getenv("CLOUDINARY_CLOUD_NAME", "")
    )
    cloudinary_upload_preset: str = field(
        default_factory=lambda: os.getenv("CLOUDINARY_UPLOAD_PRESET", "")
    )
    http_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))
    )

    # Contest calendar
    reference_timezone: str = field(
        default_factory=lambda: os.getenv("REFERENCE_TIMEZONE", "Europe/Paris")
    )
    quiet_start_hour: int = field(
        default_factory=lambda: int(os.getenv("QUIET_START_HOUR", "0"))
    )
    quiet_end_hour: int = field(default_factory=lambda: int(os.getenv("QUIET_END_HOUR", "6")))

    cors_origins: list[str] = field(default_factory=lambda: _env_list("CORS_ORIGINS", "*"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
