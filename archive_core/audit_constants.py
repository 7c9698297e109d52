"""
Canonical audit event type strings.
"""

EVENT_INGESTION_FULL_RUN = "ingestion.full_run"
EVENT_ENTITY_INGESTED = "entity.ingested"
EVENT_ENTITY_DELETED = "entity.deleted"
EVENT_SEARCH_INDEX_REBUILT = "search_index.rebuilt"

__all__ = [
    "EVENT_INGESTION_FULL_RUN",
    "EVENT_ENTITY_INGESTED",
    "EVENT_ENTITY_DELETED",
    "EVENT_SEARCH_INDEX_REBUILT",
]
