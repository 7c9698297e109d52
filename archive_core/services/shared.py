"""
Shared helpers and configuration for archive services.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Callable, Optional

import archive_core.config as config
from archive_core.errors import ValidationIssue

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

DEFAULT_PAGE_LIMIT = config.DEFAULT_PAGE_LIMIT
MAX_PAGE_LIMIT = config.MAX_PAGE_LIMIT
MAX_QUERY_LENGTH = config.MAX_QUERY_LENGTH
MAX_FACET_LIMIT = config.MAX_FACET_LIMIT
SEARCH_SNIPPET_TOKENS = config.SEARCH_SNIPPET_TOKENS
TOP_TAG_FACETS = config.TOP_TAG_FACETS
RECENT_LIMIT = config.RECENT_LIMIT
GRAPH_DEFAULT_WEIGHT = config.GRAPH_DEFAULT_WEIGHT

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


# =============================================================================
# Helper Functions
# =============================================================================

def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def next_timestamp(previous: Optional[str]) -> str:
    """Current UTC timestamp, nudged past ``previous`` so mutations strictly increase it."""
    now = datetime.now(timezone.utc)
    prior = _parse_timestamp(previous)
    if prior is not None and now <= prior:
        now = prior + timedelta(microseconds=1)
    return now.strftime(TIMESTAMP_FORMAT)


def later_timestamp(candidate: str, previous: Optional[str]) -> str:
    """``candidate`` when it is after ``previous``, otherwise a fresh timestamp past ``previous``."""
    prior = _parse_timestamp(previous)
    if prior is None:
        return candidate
    proposed = _parse_timestamp(candidate)
    if proposed is not None and proposed > prior:
        return candidate
    return next_timestamp(previous)


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_PAGE_LIMIT
    return max(1, min(int(limit), MAX_PAGE_LIMIT))


def clamp_page(page: Optional[int]) -> int:
    if page is None:
        return 1
    return max(1, int(page))


def total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if total else 0


def _tool_error_payload(tool_name: str, exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("service_validation_error", extra=payload)
    else:
        logger.info("service_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return _tool_error_payload(fn.__name__, exc)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    """Turn parameter validation failures into an error payload; everything else propagates."""
    return _tool_error_handler(fn)
