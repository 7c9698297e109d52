"""
Checksum gate: remembers the content hash last ingested for each entity id.
"""

from __future__ import annotations

from typing import Iterable, Optional

from archive_core.models import Entity


class ChecksumGate:
    """Memo of stored checksums; a matching checksum means the document can be skipped."""

    def __init__(self, checksums: Optional[dict[str, str]] = None):
        self._checksums: dict[str, str] = dict(checksums or {})

    @classmethod
    def load(cls, db) -> "ChecksumGate":
        rows = db.query(Entity.id, Entity.checksum).filter(Entity.checksum.isnot(None)).all()
        return cls({row.id: row.checksum for row in rows})

    @classmethod
    def for_entities(cls, db, entity_ids: Iterable[str]) -> "ChecksumGate":
        ids = list(entity_ids)
        if not ids:
            return cls()
        rows = (
            db.query(Entity.id, Entity.checksum)
            .filter(Entity.id.in_(ids), Entity.checksum.isnot(None))
            .all()
        )
        return cls({row.id: row.checksum for row in rows})

    def is_unchanged(self, entity_id: Optional[str], checksum: str) -> bool:
        if not entity_id:
            return False
        return self._checksums.get(entity_id) == checksum

    def remember(self, entity_id: str, checksum: str) -> None:
        self._checksums[entity_id] = checksum

    def forget(self, entity_id: str) -> None:
        self._checksums.pop(entity_id, None)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._checksums

    def __len__(self) -> int:
        return len(self._checksums)
