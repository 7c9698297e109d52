import os

import pytest

os.environ.setdefault("ARCHIVE_AUDIT_ENABLED", "true")

from sqlalchemy import text

from archive_core.errors import ValidationIssue
from archive_core.models import Visibility, Entity
from archive_core.services import ingestion, search_index


@pytest.fixture
def indexed(archive_db, content_repo, make_document):
    content_repo.write_entity(make_document("s-1", title="Perovskite films", tags=["solar"],
                                            created_at="2024-01-01T00:00:00Z"))
    content_repo.write_entity(make_document("s-2", title="Tandem solar cells",
                                            created_at="2024-02-01T00:00:00Z"))
    content_repo.write_entity(make_document("s-3", title="钙钛矿 薄膜", created_at="2024-03-01T00:00:00Z"))
    content_repo.write_body("s-2", "en", "Perovskite top cell on silicon.")
    ingestion.run_full_ingestion(content_repo.root)
    return content_repo


def _public():
    return Entity.visibility == Visibility.public.value


def test_sanitize_query_quotes_every_token():
    assert search_index.sanitize_query('foo AND "bar" NEAR(baz)') == '"foo" "AND" "bar" "NEAR" "baz"'
    assert search_index.sanitize_query("title_en:secret*") == '"title_en" "secret"'
    assert search_index.sanitize_query("***") == ""
    assert search_index.sanitize_query(None) == ""


def test_search_ranks_and_highlights(indexed, db_session):
    result = search_index.search(db_session, "perovskite", _public())
    assert result["total"] == 2
    assert {row["id"] for row in result["results"]} == {"s-1", "s-2"}
    assert all("<mark>" in row["snippet"] for row in result["results"])
    assert result["facets"]["types"] == [{"value": "skill", "count": 2}]
    assert result["facets"]["tags"] == [{"value": "solar", "count": 1}]


def test_tags_and_cjk_are_searchable(indexed, db_session):
    by_tag = search_index.search(db_session, "solar", _public(), sort="date_asc")
    assert [row["id"] for row in by_tag["results"]] == ["s-1", "s-2"]

    cjk = search_index.search(db_session, "薄膜", _public())
    assert [row["id"] for row in cjk["results"]] == ["s-3"]


def test_operator_input_is_matched_literally(indexed, db_session):
    for query in ('"unterminated', "NEAR(", "title_en:perovskite", "a OR", "-solar", "(((", "*"):
        result = search_index.search(db_session, query, _public())
        assert result["page"] == 1


def test_empty_query_lists_by_date(indexed, db_session):
    result = search_index.search(db_session, "  ", _public(), limit=2)
    assert [row["id"] for row in result["results"]] == ["s-3", "s-2"]
    assert all(row["rank"] == 0 and row["snippet"] == "" for row in result["results"])
    assert result["total"] == 3
    assert result["totalPages"] == 2

    with pytest.raises(ValidationIssue):
        search_index.search(db_session, "x", _public(), sort="random")


def test_rebuild_repopulates_from_entities(indexed, archive_db, db_session):
    with archive_db.begin() as conn:
        conn.execute(text("DELETE FROM search_index"))
    assert search_index.search(db_session, "perovskite", _public())["total"] == 0

    assert search_index.rebuild_index(db_session) == 3
    db_session.commit()
    assert search_index.search(db_session, "perovskite", _public())["total"] == 2
    tags_text = db_session.execute(
        text("SELECT tags_text FROM search_index WHERE id = 's-1'")
    ).scalar()
    assert tags_text == "solar"


def test_reindex_drops_entries_for_missing_rows(indexed, db_session):
    search_index.index_entity(db_session, "ghost", {"title_en": "Ghost entry"})
    assert search_index.reindex_entity(db_session, "ghost") is False
    remaining = db_session.execute(
        text("SELECT COUNT(*) FROM search_index WHERE id = 'ghost'")
    ).scalar()
    assert remaining == 0
