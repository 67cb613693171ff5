"""Configuration helpers and Settings container.

This module provides a small `Settings` dataclass and `get_settings` which
reads the MongoDB location, collection names and collector tuning knobs from
the environment.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

from dotenv import load_dotenv

# Explicitly load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env")

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Container for pipeline configuration read from the environment.

    Attributes:
        mongo_uri: MongoDB connection URI.
        mongo_db: Target MongoDB database name.
        mongo_tls: Whether to connect with TLS (certifi CA bundle).
        deployments_collection: Collection holding deployment records.
        chunks_collection: Collection holding serialized insight chunks.
        page_size: Page size used when scanning deployment records.
        max_workers: Number of concurrent collection tasks.
        backfill_days: History collected on the first run for a chunk.
    """
    mongo_uri: str
    mongo_db: str
    mongo_tls: bool
    deployments_collection: str
    chunks_collection: str
    page_size: int
    max_workers: int
    backfill_days: int


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def get_settings() -> Settings:
    """Read environment variables and return a frozen `Settings` object.

    Raises:
        RuntimeError: if one of the integer settings is malformed.
    """
    mongo_uri = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    mongo_db = os.getenv("MONGO_DB", "insights")
    mongo_tls = os.getenv("MONGO_TLS", "true").strip().lower() in _TRUTHY

    return Settings(
        mongo_uri=mongo_uri,
        mongo_db=mongo_db,
        mongo_tls=mongo_tls,
        deployments_collection=os.getenv("DEPLOYMENTS_COLLECTION", "deployments"),
        chunks_collection=os.getenv("CHUNKS_COLLECTION", "insight_chunks"),
        page_size=_env_int("INSIGHT_PAGE_SIZE", 50),
        max_workers=_env_int("INSIGHT_MAX_WORKERS", 4),
        backfill_days=_env_int("INSIGHT_BACKFILL_DAYS", 365),
    )
