"""
Shared configuration for the research archive core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("archive")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Database settings
ARCHIVE_DB_PATH = os.environ.get("ARCHIVE_DB_PATH", "./data/archive.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
SQLITE_BUSY_TIMEOUT_MS = _get_int("SQLITE_BUSY_TIMEOUT_MS", 5000)
SQLITE_JOURNAL_MODE = os.environ.get("SQLITE_JOURNAL_MODE", "WAL").strip().upper()

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Document tree (entities/, docs/)
CONTENT_REPO_PATH = os.environ.get("CONTENT_REPO_PATH", "./content-repo")

# Request/input limits
DEFAULT_PAGE_LIMIT = _get_int("ARCHIVE_DEFAULT_PAGE_LIMIT", 20)
MAX_PAGE_LIMIT = _get_int("ARCHIVE_MAX_PAGE_LIMIT", 200)
MAX_QUERY_LENGTH = _get_int("ARCHIVE_MAX_QUERY_LENGTH", 500)
MAX_FACET_LIMIT = _get_int("ARCHIVE_MAX_FACET_LIMIT", 100)

# Search presentation
SEARCH_SNIPPET_TOKENS = _get_int("ARCHIVE_SEARCH_SNIPPET_TOKENS", 32)
TOP_TAG_FACETS = _get_int("ARCHIVE_TOP_TAG_FACETS", 20)

# Dashboards
RECENT_LIMIT = _get_int("ARCHIVE_RECENT_LIMIT", 10)
GRAPH_DEFAULT_WEIGHT = _get_float("ARCHIVE_GRAPH_DEFAULT_WEIGHT", 1.0)

# Audit
AUDIT_ENABLED = _get_bool("ARCHIVE_AUDIT_ENABLED", True)

_JOURNAL_MODES = {"DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF"}


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL

    errors = []
    if SQLITE_JOURNAL_MODE not in _JOURNAL_MODES:
        errors.append(
            "SQLITE_JOURNAL_MODE must be one of: " + ", ".join(sorted(_JOURNAL_MODES))
        )
    if SQLITE_BUSY_TIMEOUT_MS < 0:
        errors.append("SQLITE_BUSY_TIMEOUT_MS must be zero or positive")
    if DEFAULT_PAGE_LIMIT <= 0 or DEFAULT_PAGE_LIMIT > MAX_PAGE_LIMIT:
        errors.append("ARCHIVE_DEFAULT_PAGE_LIMIT must be between 1 and ARCHIVE_MAX_PAGE_LIMIT")

    if not DATABASE_URL:
        if not ARCHIVE_DB_PATH:
            errors.append("ARCHIVE_DB_PATH environment variable is required")
        else:
            db_dir = os.path.dirname(os.path.abspath(ARCHIVE_DB_PATH))
            os.makedirs(db_dir, exist_ok=True)
            DATABASE_URL = f"sqlite:///{ARCHIVE_DB_PATH}"
    elif not DATABASE_URL.lower().startswith("sqlite"):
        # FTS5 and the connection pragmas only exist on SQLite.
        errors.append("DATABASE_URL must be a sqlite URL")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
