import os

import pytest

os.environ.setdefault("ARCHIVE_AUDIT_ENABLED", "true")

from archive_core.audit import list_audit_events, log_event
from archive_core.audit_constants import EVENT_ENTITY_DELETED, EVENT_ENTITY_INGESTED
from archive_core.models import AuditEvent


def test_audit_rejects_content_metadata(db_session):
    before = db_session.query(AuditEvent).count()
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_INGESTED,
            actor_type="system",
            target_type="entity",
            target_ids=["proj-1"],
            metadata={"title_en": "should_not_log"},
        )
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_INGESTED,
            actor_type="system",
            target_type="entity",
            target_ids=["proj-1"],
            metadata={"changes": [{"Body-Zh": "正文"}]},
        )
    db_session.rollback()
    after = db_session.query(AuditEvent).count()
    assert after == before


def test_audit_rejects_long_strings(db_session):
    before = db_session.query(AuditEvent).count()
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_DELETED,
            actor_type="admin",
            target_type="entity",
            target_ids=["proj-1"],
            metadata={"note": "x" * 600},
        )
    db_session.rollback()
    after = db_session.query(AuditEvent).count()
    assert after == before


def test_audit_rejects_unknown_actor_and_target(db_session):
    with pytest.raises(ValueError):
        log_event(db_session, event_type=EVENT_ENTITY_DELETED, actor_type="visitor",
                  target_type="entity", target_ids=["a"])
    with pytest.raises(ValueError):
        log_event(db_session, event_type=EVENT_ENTITY_DELETED, target_type="memory", target_ids=["a"])
    with pytest.raises(ValueError):
        log_event(db_session, event_type=EVENT_ENTITY_DELETED, target_type="entity", target_ids=[1])


def test_audit_events_list_newest_first(db_session):
    for entity_id in ("a", "b"):
        log_event(
            db_session,
            event_type=EVENT_ENTITY_INGESTED,
            target_type="entity",
            target_ids=[entity_id],
            metadata={"checksum_changed": True},
        )
    log_event(db_session, event_type=EVENT_ENTITY_DELETED, actor_type="admin",
              target_type="entity", target_ids=["a"], reason="duplicate")
    db_session.commit()

    ingested = list_audit_events(db_session, event_type=EVENT_ENTITY_INGESTED, target_type="entity")
    assert ingested["count"] == 2
    assert {tuple(event["target_ids"]) for event in ingested["events"]} == {("a",), ("b",)}

    first_page = list_audit_events(db_session, limit=1)
    assert first_page["count"] == 1
    rest = list_audit_events(db_session, limit=10, cursor=first_page["next_cursor"])
    assert rest["count"] == 2
