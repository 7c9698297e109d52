"""
Ingestion pipeline: synchronize the file-based documents into the store and index.

A full run happens in one transaction: any unexpected error rolls the whole
pass back. Per-document problems (unreadable files, schema violations) are
counted and reported, and the run moves on to the next file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import time
from typing import Optional

from archive_core.audit import log_event
from archive_core.audit_constants import (
    EVENT_ENTITY_DELETED,
    EVENT_ENTITY_INGESTED,
    EVENT_INGESTION_FULL_RUN,
    EVENT_SEARCH_INDEX_REBUILT,
)
from archive_core.db import session_scope
from archive_core.errors import MalformedDocumentError, ValidationIssue
from archive_core.models import EntityType, IssueType
from archive_core.services import search_index, store
from archive_core.services.checksums import ChecksumGate
from archive_core.services.document_validation import validate_edge, validate_entity
from archive_core.services.documents import (
    ENTITIES_DIR,
    EDGES_FILE,
    SourceDocument,
    content_root,
    load_bodies,
    read_edge_documents,
    read_entity_document,
    iter_entity_files,
)
from archive_core.services.shared import logger

RESULT_SKIPPED = "skipped"
RESULT_UPDATED = "updated"
RESULT_INVALID = "invalid"


@dataclass
class IngestionReport:
    entities_total: int = 0
    entities_valid: int = 0
    entities_invalid: int = 0
    entities_updated: int = 0
    edges_total: int = 0
    edges_valid: int = 0
    edges_invalid: int = 0
    issues: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "entities": {
                "total": self.entities_total,
                "valid": self.entities_valid,
                "invalid": self.entities_invalid,
                "updated": self.entities_updated,
            },
            "edges": {
                "total": self.edges_total,
                "valid": self.edges_valid,
                "invalid": self.edges_invalid,
            },
            "issues": list(self.issues),
            "duration_ms": self.duration_ms,
        }


def _document_id(data) -> Optional[str]:
    if isinstance(data, dict) and isinstance(data.get("id"), str) and data["id"]:
        return data["id"]
    return None


def _type_change_errors(db, document: dict) -> list[str]:
    stored_type = store.get_entity_type(db, document["id"])
    if stored_type is not None and stored_type != document["type"]:
        return [
            f'[type] Entity type is immutable (stored "{stored_type}", got "{document["type"]}")'
        ]
    return []


def _ingest_document(
    db,
    source: SourceDocument,
    gate: ChecksumGate,
    content_dir: Path,
) -> tuple[str, list[str]]:
    """Write one document (entity row, extension row, tags, index entry) unless it is unchanged."""
    if gate.is_unchanged(_document_id(source.data), source.checksum):
        return RESULT_SKIPPED, []

    outcome = validate_entity(source.data)
    if not outcome.success:
        return RESULT_INVALID, list(outcome.errors)

    document = outcome.data
    errors = _type_change_errors(db, document)
    if errors:
        return RESULT_INVALID, errors

    entity_id = document["id"]
    entity_type = document["type"]
    bodies = load_bodies(entity_id, content_dir)

    row = store.upsert_entity_document(db, document, source.data, bodies, source.checksum)
    store.upsert_extension_row(db, entity_type, entity_id, document)
    if entity_type == EntityType.media.value:
        store.upsert_media_attachment(db, document)
    store.set_entity_tags(db, entity_id, document.get("tags", []), reindex=False)
    search_index.index_entity(
        db, entity_id, row, " ".join(search_index.tag_names(db, entity_id))
    )
    gate.remember(entity_id, source.checksum)
    return RESULT_UPDATED, []


def _ingest_entities(db, root: Path, gate: ChecksumGate, report: IngestionReport) -> None:
    entities_dir = root / ENTITIES_DIR
    if not entities_dir.is_dir():
        report.issues.append(f"Entities directory not found: {entities_dir}")
        return

    for path in iter_entity_files(root):
        report.entities_total += 1
        try:
            source = read_entity_document(path)
        except MalformedDocumentError as exc:
            report.entities_invalid += 1
            report.issues.append(f"{path.name}: {exc}")
            logger.warning("entity_document_unreadable", extra={"path": str(path)})
            continue

        result, errors = _ingest_document(db, source, gate, root)
        if result == RESULT_INVALID:
            report.entities_invalid += 1
            joined = "; ".join(errors)
            report.issues.append(f"{path}: {joined}")
            logger.warning(
                "entity_document_invalid",
                extra={"path": str(path), "entity_id": _document_id(source.data), "errors": len(errors)},
            )
            store.record_integrity_issue(
                db,
                _document_id(source.data) or path.name,
                IssueType.schema_violation.value,
                joined,
            )
            continue

        report.entities_valid += 1
        if result == RESULT_UPDATED:
            report.entities_updated += 1


def _ingest_edges(db, root: Path, report: IngestionReport) -> None:
    try:
        edge_documents = read_edge_documents(root)
    except MalformedDocumentError as exc:
        report.issues.append(f"{EDGES_FILE}: {exc}")
        logger.warning("edges_document_unreadable", extra={"path": EDGES_FILE})
        return

    for data in edge_documents:
        report.edges_total += 1
        outcome = validate_edge(data)
        if not outcome.success:
            report.edges_invalid += 1
            edge_id = _document_id(data) or "unknown"
            report.issues.append(f"edge {edge_id}: {'; '.join(outcome.errors)}")
            logger.warning("edge_document_invalid", extra={"edge_id": edge_id, "errors": len(outcome.errors)})
            continue
        store.upsert_edge(db, outcome.data)
        report.edges_valid += 1


def _check_referential_integrity(db, report: IngestionReport) -> int:
    broken = store.find_broken_edges(db)
    for edge in broken:
        report.issues.append(f"Broken edge {edge.id}: references non-existent entity")
        logger.warning("edge_broken", extra={"edge_id": edge.id})
        store.record_integrity_issue(
            db,
            edge.id,
            IssueType.broken_link.value,
            f"from={edge.from_id} to={edge.to_id}",
        )
    return len(broken)


def run_full_ingestion(content_dir: Path | str | None = None) -> dict:
    """Resynchronize every document under the content root in a single transaction."""
    start = time.monotonic()
    root = content_root(content_dir)
    report = IngestionReport()

    logger.info("ingestion_started", extra={"content_root": str(root)})
    with session_scope() as db:
        store.clear_integrity_issues(db)
        gate = ChecksumGate.load(db)

        _ingest_entities(db, root, gate, report)
        _ingest_edges(db, root, report)
        broken_count = _check_referential_integrity(db, report)

        report.duration_ms = int((time.monotonic() - start) * 1000)
        log_event(
            db,
            event_type=EVENT_INGESTION_FULL_RUN,
            target_type="entity",
            target_ids=[],
            count_affected=report.entities_updated,
            metadata={
                "entities_total": report.entities_total,
                "entities_invalid": report.entities_invalid,
                "edges_total": report.edges_total,
                "edges_invalid": report.edges_invalid,
                "broken_edges": broken_count,
                "duration_ms": report.duration_ms,
            },
        )

    logger.info(
        "ingestion_full_run",
        extra={
            "entities_total": report.entities_total,
            "entities_updated": report.entities_updated,
            "entities_invalid": report.entities_invalid,
            "edges_total": report.edges_total,
            "issues": len(report.issues),
            "duration_ms": report.duration_ms,
        },
    )
    return report.to_dict()


def _infer_content_root(path: Path) -> Optional[Path]:
    # <root>/entities/<plural-dir>/<id>.json
    if path.parent.parent.name == ENTITIES_DIR:
        return path.parent.parent.parent
    return None


def ingest_single_entity(path: Path | str, content_dir: Path | str | None = None) -> dict:
    """Re-read, validate and write one entity file in its own transaction."""
    path = Path(path).resolve()
    if content_dir is not None:
        root = content_root(content_dir)
    else:
        root = _infer_content_root(path) or content_root()

    try:
        source = read_entity_document(path)
    except MalformedDocumentError as exc:
        logger.warning("entity_ingest_failed", extra={"path": str(path), "reason": "malformed"})
        return {"success": False, "errors": [str(exc)]}

    entity_id = _document_id(source.data)
    with session_scope() as db:
        gate = ChecksumGate.for_entities(db, [entity_id] if entity_id else [])
        result, errors = _ingest_document(db, source, gate, root)
        if result == RESULT_INVALID:
            logger.warning(
                "entity_ingest_failed",
                extra={"path": str(path), "entity_id": entity_id, "errors": len(errors)},
            )
            return {"success": False, "errors": errors}
        if result == RESULT_UPDATED:
            log_event(
                db,
                event_type=EVENT_ENTITY_INGESTED,
                target_type="entity",
                target_ids=[entity_id],
                count_affected=1,
            )

    logger.info("entity_ingested", extra={"entity_id": entity_id, "result": result})
    return {"success": True}


def delete_entity(entity_id: str, actor_type: str = "admin", reason: Optional[str] = None) -> dict:
    """Remove an entity and everything that cascades from it, in one transaction."""
    if not isinstance(entity_id, str) or not entity_id.strip():
        raise ValidationIssue("id is required", field="id", error_type="required")

    with session_scope() as db:
        deleted = store.delete_entity(db, entity_id)
        if deleted:
            log_event(
                db,
                event_type=EVENT_ENTITY_DELETED,
                actor_type=actor_type,
                target_type="entity",
                target_ids=[entity_id],
                count_affected=1,
                reason=reason,
            )
    return {"success": deleted, "id": entity_id, "deleted": deleted}


def rebuild_search_index() -> dict:
    with session_scope() as db:
        indexed = search_index.rebuild_index(db)
        log_event(
            db,
            event_type=EVENT_SEARCH_INDEX_REBUILT,
            target_type="search_index",
            target_ids=[],
            count_affected=indexed,
        )
    return {"indexed": indexed}
