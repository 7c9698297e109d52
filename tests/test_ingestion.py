import os

import pytest

os.environ.setdefault("ARCHIVE_AUDIT_ENABLED", "true")

from sqlalchemy import text

from archive_core.db import DB
from archive_core.models import AuditEvent, Edge, Entity, IntegrityIssue, Media, Project, Tag
from archive_core.services import ingestion, store
from archive_core.services.checksums import ChecksumGate


def _scalar(engine, sql: str, **params):
    with engine.connect() as conn:
        return conn.execute(text(sql), params).scalar()


def _fts_ids(engine, fts_query: str) -> list:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT id FROM search_index WHERE search_index MATCH :q ORDER BY id"),
            {"q": fts_query},
        ).all()
    return [row.id for row in rows]


def test_full_ingestion_writes_entity_extension_and_index(archive_db, content_repo, make_document):
    document = make_document("proj-a", "project", title="Cathode cracking", tags=["battery", "ml"])
    content_repo.write_entity(document)
    content_repo.write_body("proj-a", "en", "---\ntitle: x\n---\nLong body about dendrites")

    report = ingestion.run_full_ingestion(content_repo.root)

    assert report["entities"] == {"total": 1, "valid": 1, "invalid": 0, "updated": 1}
    assert report["edges"] == {"total": 0, "valid": 0, "invalid": 0}
    assert report["issues"] == []
    assert report["duration_ms"] >= 0

    with DB.SessionLocal() as db:
        entity = db.get(Entity, "proj-a")
        assert entity.title_en == "Cathode cracking"
        assert entity.body_en == "Long body about dendrites"
        assert entity.body_zh == ""
        assert entity.owner_role == "pi"
        assert entity.source_of_truth_kind == "file"
        assert entity.raw_metadata == document
        project = db.get(Project, "proj-a")
        assert project.start_date == "2023-09-01"
        assert project.problem_statement_zh == "Why cathodes crack 中文"
        assert {tag.id for tag in db.query(Tag).all()} == {"battery", "ml"}
        assert all(tag.category == "custom" for tag in db.query(Tag).all())

    assert _fts_ids(archive_db, '"dendrites"') == ["proj-a"]
    assert _fts_ids(archive_db, '"battery"') == ["proj-a"]


def test_reingesting_unchanged_document_skips_it(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("skill-1"))

    ingestion.run_full_ingestion(content_repo.root)
    before = _scalar(archive_db, "SELECT rowid || '|' || updated_at || '|' || checksum FROM entities WHERE id = 'skill-1'")

    second = ingestion.run_full_ingestion(content_repo.root)

    assert second["entities"] == {"total": 1, "valid": 1, "invalid": 0, "updated": 0}
    after = _scalar(archive_db, "SELECT rowid || '|' || updated_at || '|' || checksum FROM entities WHERE id = 'skill-1'")
    assert after == before
    assert _scalar(archive_db, "SELECT COUNT(*) FROM entities") == 1
    assert _scalar(archive_db, "SELECT COUNT(*) FROM search_index WHERE id = 'skill-1'") == 1


def test_changed_title_replaces_indexed_text(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("skill-1", title="Crystallography basics"))
    ingestion.run_full_ingestion(content_repo.root)
    assert _fts_ids(archive_db, '"crystallography"') == ["skill-1"]

    content_repo.write_entity(make_document("skill-1", title="Spectroscopy basics"))
    report = ingestion.run_full_ingestion(content_repo.root)

    assert report["entities"]["updated"] == 1
    assert _scalar(archive_db, "SELECT title_en FROM entities WHERE id = 'skill-1'") == "Spectroscopy basics"
    assert _fts_ids(archive_db, '"crystallography"') == []
    assert _fts_ids(archive_db, '"spectroscopy"') == ["skill-1"]
    assert _scalar(archive_db, "SELECT COUNT(*) FROM search_index") == 1


def test_reingest_never_moves_updated_at_backwards(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("skill-1", title="Crystallography basics"))
    ingestion.run_full_ingestion(content_repo.root)
    first = _scalar(archive_db, "SELECT updated_at FROM entities WHERE id = 'skill-1'")
    assert first == "2024-01-01T00:00:00Z"

    content_repo.write_entity(
        make_document("skill-1", title="Spectroscopy basics", updated_at="2020-01-01T00:00:00Z")
    )
    ingestion.run_full_ingestion(content_repo.root)
    second = _scalar(archive_db, "SELECT updated_at FROM entities WHERE id = 'skill-1'")
    assert second > first

    content_repo.write_entity(
        make_document("skill-1", title="Microscopy basics", updated_at="2999-01-01T00:00:00Z")
    )
    ingestion.run_full_ingestion(content_repo.root)
    assert _scalar(archive_db, "SELECT updated_at FROM entities WHERE id = 'skill-1'") == "2999-01-01T00:00:00Z"


def test_broken_edge_is_reported_once_and_kept(archive_db, content_repo, make_document, make_edge):
    content_repo.write_entity(make_document("a"))
    content_repo.write_entity(make_document("b", "method"))
    content_repo.write_edges([
        make_edge("e-ok", "a", "b", "implements"),
        make_edge("e-broken", "a", "ghost"),
    ])

    report = ingestion.run_full_ingestion(content_repo.root)

    assert report["entities"]["valid"] == 2
    assert report["edges"] == {"total": 2, "valid": 2, "invalid": 0}
    assert report["issues"] == ["Broken edge e-broken: references non-existent entity"]

    with DB.SessionLocal() as db:
        issues = db.query(IntegrityIssue).filter(IntegrityIssue.issue_type == "broken-link").all()
        assert [(issue.entity_id, issue.message) for issue in issues] == [("e-broken", "from=a to=ghost")]
        assert db.get(Edge, "e-broken") is not None
        assert db.get(Edge, "e-ok").weight == 1.0


def test_integrity_issues_are_recomputed_each_run(archive_db, content_repo, make_document, make_edge):
    content_repo.write_entity(make_document("a"))
    content_repo.write_edges([make_edge("e-1", "a", "later")])
    ingestion.run_full_ingestion(content_repo.root)
    assert _scalar(archive_db, "SELECT COUNT(*) FROM integrity_issues") == 1

    content_repo.write_entity(make_document("later"))
    report = ingestion.run_full_ingestion(content_repo.root)

    assert report["issues"] == []
    assert _scalar(archive_db, "SELECT COUNT(*) FROM integrity_issues") == 0


def test_bad_documents_do_not_stop_the_batch(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("good"))
    content_repo.write_raw("skills", "broken.json", "{not json")
    invalid = make_document("no-title")
    del invalid["title"]
    content_repo.write_entity(invalid)
    content_repo.write_raw("skills", "alien.json", '{"id": "alien", "type": "spaceship"}')

    report = ingestion.run_full_ingestion(content_repo.root)

    assert report["entities"] == {"total": 4, "valid": 1, "invalid": 3, "updated": 1}
    assert any(issue.startswith("broken.json:") for issue in report["issues"])
    assert any("no-title.json: [title] Field required" in issue for issue in report["issues"])
    assert any('Unknown entity type: "spaceship"' in issue for issue in report["issues"])

    with DB.SessionLocal() as db:
        violations = {
            issue.entity_id
            for issue in db.query(IntegrityIssue).filter(IntegrityIssue.issue_type == "schema-violation")
        }
        assert violations == {"no-title", "alien"}
        assert db.query(Entity).count() == 1


def test_ingestion_logs_start_and_rejected_documents(archive_db, content_repo, make_document, make_edge, caplog):
    content_repo.write_entity(make_document("a"))
    content_repo.write_raw("skills", "broken.json", "{not json")
    invalid = make_document("no-title")
    del invalid["title"]
    content_repo.write_entity(invalid)
    content_repo.write_edges([make_edge("e-bad", "a", "a", "likes")])

    with caplog.at_level("INFO", logger="archive"):
        ingestion.run_full_ingestion(content_repo.root)

    records = [record for record in caplog.records if record.name == "archive"]
    messages = [record.getMessage() for record in records]
    assert messages[0] == "ingestion_started"
    assert messages[-1] == "ingestion_full_run"
    warnings = {
        record.getMessage(): record for record in records if record.levelname == "WARNING"
    }
    assert warnings["entity_document_unreadable"].path.endswith("broken.json")
    assert warnings["entity_document_invalid"].entity_id == "no-title"
    assert warnings["edge_document_invalid"].edge_id == "e-bad"


def test_invalid_edges_are_counted(archive_db, content_repo, make_document, make_edge):
    content_repo.write_entity(make_document("a"))
    content_repo.write_edges([make_edge("e-bad", "a", "a", "likes"), "not an edge"])

    report = ingestion.run_full_ingestion(content_repo.root)

    assert report["edges"] == {"total": 2, "valid": 0, "invalid": 2}
    assert any(issue.startswith("edge e-bad: [edge_type]") for issue in report["issues"])
    assert any(issue.startswith("edge unknown:") for issue in report["issues"])


def test_unexpected_failure_rolls_back_the_whole_run(
    archive_db, content_repo, make_document, make_edge, monkeypatch
):
    content_repo.write_entity(make_document("a"))
    content_repo.write_edges([make_edge("e-1", "a", "a")])

    def _explode(db, document):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "upsert_edge", _explode)

    with pytest.raises(RuntimeError):
        ingestion.run_full_ingestion(content_repo.root)

    assert _scalar(archive_db, "SELECT COUNT(*) FROM entities") == 0
    assert _scalar(archive_db, "SELECT COUNT(*) FROM search_index") == 0


def test_missing_entities_directory_is_reported(archive_db, tmp_path):
    report = ingestion.run_full_ingestion(tmp_path / "empty")

    assert report["entities"]["total"] == 0
    assert report["issues"][0].startswith("Entities directory not found")


def test_media_entity_gets_attachment_row(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("fig-1", "media"))

    ingestion.run_full_ingestion(content_repo.root)

    with DB.SessionLocal() as db:
        media = db.get(Media, "fig-1")
        assert media.entity_id == "fig-1"
        assert media.source_path == "media/fig-1.png"
        assert media.size_bytes == 2048


def test_full_run_writes_audit_event(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("a"))

    ingestion.run_full_ingestion(content_repo.root)

    with DB.SessionLocal() as db:
        event = db.query(AuditEvent).filter(AuditEvent.event_type == "ingestion.full_run").one()
        assert event.count_affected == 1
        assert event.metadata_["entities_total"] == 1


def test_single_entity_ingestion(archive_db, content_repo, make_document):
    path = content_repo.write_entity(make_document("note-1", "note", title="Sputtering recipe"))
    content_repo.write_body("note-1", "zh-Hans", "溅射")

    result = ingestion.ingest_single_entity(path)

    assert result == {"success": True}
    with DB.SessionLocal() as db:
        entity = db.get(Entity, "note-1")
        assert entity.title_en == "Sputtering recipe"
        assert entity.body_zh == "溅射"
    assert _fts_ids(archive_db, '"sputtering"') == ["note-1"]


def test_single_entity_ingestion_reports_errors(archive_db, content_repo, make_document):
    document = make_document("skill-x")
    document["visibility"] = "secret"
    path = content_repo.write_entity(document)

    result = ingestion.ingest_single_entity(path)

    assert result["success"] is False
    assert any(error.startswith("[visibility]") for error in result["errors"])
    assert _scalar(archive_db, "SELECT COUNT(*) FROM entities") == 0


def test_single_entity_ingestion_rejects_unreadable_file(archive_db, content_repo):
    path = content_repo.write_raw("skills", "bad.json", "[")

    result = ingestion.ingest_single_entity(path)

    assert result["success"] is False
    assert "Invalid JSON" in result["errors"][0]


def test_entity_type_cannot_change(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("shape-shifter", "skill"))
    ingestion.run_full_ingestion(content_repo.root)

    moved = make_document("shape-shifter", "method")
    path = content_repo.write_entity(moved)
    result = ingestion.ingest_single_entity(path)

    assert result["success"] is False
    assert "immutable" in result["errors"][0]
    assert _scalar(archive_db, "SELECT type FROM entities WHERE id = 'shape-shifter'") == "skill"


def test_delete_entity_service(archive_db, content_repo, make_document, make_edge):
    content_repo.write_entity(make_document("a"))
    content_repo.write_entity(make_document("b"))
    content_repo.write_edges([make_edge("e-1", "a", "b")])
    ingestion.run_full_ingestion(content_repo.root)

    result = ingestion.delete_entity("a")

    assert result == {"success": True, "id": "a", "deleted": True}
    assert _scalar(archive_db, "SELECT COUNT(*) FROM edges") == 0
    assert _scalar(archive_db, "SELECT COUNT(*) FROM audit_events WHERE event_type = 'entity.deleted'") == 1
    assert ingestion.delete_entity("a")["success"] is False


def test_rebuild_search_index(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("a", title="Raman mapping"))
    content_repo.write_entity(make_document("b"))
    ingestion.run_full_ingestion(content_repo.root)
    with archive_db.begin() as conn:
        conn.execute(text("DELETE FROM search_index"))

    assert ingestion.rebuild_search_index() == {"indexed": 2}
    assert _fts_ids(archive_db, '"raman"') == ["a"]


def test_checksum_gate_memoizes_by_id(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("a"))
    ingestion.run_full_ingestion(content_repo.root)

    with DB.SessionLocal() as db:
        gate = ChecksumGate.load(db)
        stored = db.get(Entity, "a").checksum

    assert gate.is_unchanged("a", stored)
    assert not gate.is_unchanged("a", "other")
    assert not gate.is_unchanged(None, stored)
    gate.forget("a")
    assert not gate.is_unchanged("a", stored)
    gate.remember("b", "abc")
    assert "b" in gate and len(gate) == 1
