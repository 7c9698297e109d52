"""
Audit trail for archive writes (ingestion runs, single-entity ingests, deletes,
index rebuilds).

Events record who touched which ids and counts only. Entity text never
reaches the log: metadata keys naming document content are refused.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import select, tuple_

import archive_core.config as config
from archive_core.models import AuditEvent

ACTOR_TYPES = ("system", "admin", "integration")
TARGET_TYPES = ("entity", "edge", "search_index")

# Substrings of metadata keys that would carry document content
CONTENT_KEY_TOKENS = (
    "body",
    "title",
    "summary",
    "raw_metadata",
    "raw_text",
    "confidentiality_note",
    "review_notes",
)
MAX_METADATA_STRING_LENGTH = 500
MAX_TARGET_ID_LENGTH = 200
MAX_TARGET_IDS = 500


def _names_content(key: str) -> bool:
    normalized = key.strip().lower().replace("-", "_")
    return any(token in normalized for token in CONTENT_KEY_TOKENS)


def check_metadata(metadata: dict) -> None:
    """Walk nested dicts/lists; raise ValueError on content keys or oversized strings."""
    pending: list[tuple[str, Any]] = [("", metadata)]
    while pending:
        path, value = pending.pop()
        if isinstance(value, dict):
            for key, item in value.items():
                if not isinstance(key, str):
                    raise ValueError("metadata keys must be strings")
                if _names_content(key):
                    raise ValueError(f"metadata key '{key}' is not allowed")
                pending.append((f"{path}.{key}" if path else key, item))
        elif isinstance(value, (list, tuple)):
            pending.extend((path, item) for item in value)
        elif isinstance(value, str) and len(value) > MAX_METADATA_STRING_LENGTH:
            raise ValueError(f"metadata value too long at '{path or 'value'}'")


def _target_id_list(target_ids: Iterable[str]) -> list[str]:
    if isinstance(target_ids, (str, bytes)) or not isinstance(target_ids, (list, tuple, set, frozenset)):
        raise ValueError("target_ids must be a list of entity/edge ids")
    ids: list[str] = []
    for item in target_ids:
        if not isinstance(item, str):
            raise ValueError("target_ids must contain strings")
        if len(item) > MAX_TARGET_ID_LENGTH:
            raise ValueError("target_id value too long")
        if item not in ids:
            ids.append(item)
    return ids[:MAX_TARGET_IDS]


def log_event(
    db,
    *,
    event_type: str,
    actor_type: str = "system",
    actor_id: Optional[str] = None,
    target_type: str,
    target_ids: Iterable[str],
    count_affected: Optional[int] = None,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> Optional[AuditEvent]:
    """Add an event to ``db``'s transaction; it commits or rolls back with the write it describes."""
    if not config.AUDIT_ENABLED:
        return None
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("event_type must be a non-empty string")
    if actor_type not in ACTOR_TYPES:
        raise ValueError(f"actor_type must be one of: {'|'.join(ACTOR_TYPES)}")
    if target_type not in TARGET_TYPES:
        raise ValueError(f"target_type must be one of: {'|'.join(TARGET_TYPES)}")
    ids = _target_id_list(target_ids)
    if metadata is not None:
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be a dict")
        check_metadata(metadata)

    event = AuditEvent(
        created_at=datetime.utcnow(),
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        target_type=target_type,
        target_ids=ids,
        count_affected=count_affected,
        reason=reason,
        metadata_=metadata,
    )
    db.add(event)
    return event


def _naive_utc(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def audit_event_to_dict(event: AuditEvent) -> dict:
    return {
        "event_id": event.event_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
        "event_type": event.event_type,
        "event_version": event.event_version,
        "actor_type": event.actor_type,
        "actor_id": event.actor_id,
        "target_type": event.target_type,
        "target_ids": event.target_ids,
        "count_affected": event.count_affected,
        "reason": event.reason,
        "metadata": event.metadata_,
    }


def list_audit_events(
    db,
    *,
    event_type: Optional[str] = None,
    target_type: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    limit: int = 100,
    cursor: Optional[str] = None,
) -> dict:
    """Newest-first events; ``cursor`` is the last ``event_id`` of the previous page."""
    if limit <= 0:
        raise ValueError("limit must be positive")

    statement = select(AuditEvent)
    if event_type:
        statement = statement.where(AuditEvent.event_type == event_type)
    if target_type:
        statement = statement.where(AuditEvent.target_type == target_type)
    since = _naive_utc(date_from)
    until = _naive_utc(date_to)
    if since:
        statement = statement.where(AuditEvent.created_at >= since)
    if until:
        statement = statement.where(AuditEvent.created_at <= until)
    if cursor:
        anchor = db.get(AuditEvent, cursor)
        if anchor is not None:
            statement = statement.where(
                tuple_(AuditEvent.created_at, AuditEvent.event_id)
                < tuple_(anchor.created_at, anchor.event_id)
            )

    events = db.execute(
        statement.order_by(AuditEvent.created_at.desc(), AuditEvent.event_id.desc()).limit(limit)
    ).scalars().all()
    return {
        "status": "ok",
        "count": len(events),
        "events": [audit_event_to_dict(event) for event in events],
        "next_cursor": events[-1].event_id if events else None,
    }
