"""
Run record store configuration.
All settings come from environment variables; StoreConfig carries them to the store.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/run_records.db")

# Debug flag - exposes /docs and lowers the log level
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Retention policy
MAX_RECORDS = int(os.getenv("MAX_RECORDS", "1000"))
MAX_AGE_MINUTES = int(os.getenv("MAX_AGE_MINUTES", "30"))
CLEANUP_INTERVAL_MS = int(os.getenv("CLEANUP_INTERVAL_MS", "300000"))  # 5 minutes

# Query paging
DEFAULT_LIMIT = int(os.getenv("DEFAULT_LIMIT", "50"))
MAX_LIMIT = int(os.getenv("MAX_LIMIT", "500"))

# HTTP server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3100"))

# Version string
VERSION = "1.0.0"


@dataclass(frozen=True)
class StoreConfig:
    """Settings needed to open a record store and run its retention timer."""
    db_path: str = DB_PATH
    max_records: int = MAX_RECORDS
    max_age_minutes: int = MAX_AGE_MINUTES
    cleanup_interval_ms: int = CLEANUP_INTERVAL_MS
    default_limit: int = DEFAULT_LIMIT
    max_limit: int = MAX_LIMIT

    @property
    def cleanup_interval_sec(self) -> float:
        return self.cleanup_interval_ms / 1000.0


def load_config(db_path: Optional[str] = None) -> StoreConfig:
    """Build a StoreConfig from the current environment.

    Reads os.environ at call time so tests and scripts can override variables
    after this module has been imported.
    """
    return StoreConfig(
        db_path=db_path or os.getenv("DB_PATH", DB_PATH),
        max_records=int(os.getenv("MAX_RECORDS", str(MAX_RECORDS))),
        max_age_minutes=int(os.getenv("MAX_AGE_MINUTES", str(MAX_AGE_MINUTES))),
        cleanup_interval_ms=int(os.getenv("CLEANUP_INTERVAL_MS", str(CLEANUP_INTERVAL_MS))),
        default_limit=int(os.getenv("DEFAULT_LIMIT", str(DEFAULT_LIMIT))),
        max_limit=int(os.getenv("MAX_LIMIT", str(MAX_LIMIT))),
    )


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str):
    """Ensure the database directory exists."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)


def validate_config(config: StoreConfig) -> List[str]:
    """Validate store configuration and return any issues."""
    issues = []

    if not config.db_path:
        issues.append("DB_PATH must not be empty")

    for name in ("max_records", "max_age_minutes", "cleanup_interval_ms", "default_limit", "max_limit"):
        value = getattr(config, name)
        if value < 1:
            issues.append(f"{name.upper()} must be >= 1 (got {value})")

    if config.default_limit > config.max_limit:
        issues.append(f"DEFAULT_LIMIT ({config.default_limit}) must not exceed MAX_LIMIT ({config.max_limit})")

    return issues
