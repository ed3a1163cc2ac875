"""Environment-driven configuration for the LineageWeaver backend."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"


def get_data_dir() -> Path:
    """Directory holding dataset databases, preferences and the dataset registry."""
    data_dir = Path(os.getenv("LINEAGEWEAVER_DATA_DIR", "./data"))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_cloud_url() -> str | None:
    """Base URL of the cloud document store, or None when sync is disabled."""
    url = os.getenv("LINEAGEWEAVER_CLOUD_URL", "").strip()
    return url.rstrip("/") or None


def get_cloud_token() -> str | None:
    return os.getenv("LINEAGEWEAVER_CLOUD_TOKEN") or None


def get_log_level() -> str:
    return os.getenv("LINEAGEWEAVER_LOG_LEVEL", "INFO").upper()


def get_cors_origins() -> list[str]:
    raw = os.getenv("LINEAGEWEAVER_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
