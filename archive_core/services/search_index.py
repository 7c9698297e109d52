"""
Full-text index over bilingual title/summary/body and tag text (SQLite FTS5).

Entries are replaced whole (delete, then insert) on every entity write, so the
index never carries a partially updated row.
"""

from __future__ import annotations

import re
from typing import Optional

from sqlalchemy import column, func, literal, literal_column, select, table, text

from archive_core.errors import ValidationIssue
from archive_core.models import SEARCH_INDEX_COLUMNS, Entity, EntityTag, Tag
from archive_core.services.shared import (
    SEARCH_SNIPPET_TOKENS,
    TOP_TAG_FACETS,
    clamp_limit,
    clamp_page,
    logger,
    total_pages,
)

# Anything that is not a word character, whitespace or CJK becomes a separator,
# which removes FTS5 operators and column filters from user input.
_UNSAFE_QUERY_CHARS = re.compile(r"[^\w\s\u4e00-\u9fff\u3400-\u4dbf]")

SEARCH_SORTS = ("relevance", "date_desc", "date_asc", "title")

search_index_table = table(
    "search_index",
    column("id"),
    *(column(name) for name in SEARCH_INDEX_COLUMNS),
)

_DELETE_ENTRY = text("DELETE FROM search_index WHERE id = :id")
_INSERT_ENTRY = text(
    "INSERT INTO search_index (id, "
    + ", ".join(SEARCH_INDEX_COLUMNS)
    + ") VALUES (:id, "
    + ", ".join(f":{name}" for name in SEARCH_INDEX_COLUMNS)
    + ")"
)

RESULT_COLUMNS = (
    Entity.id,
    Entity.type,
    Entity.title_en,
    Entity.title_zh,
    Entity.summary_en,
    Entity.summary_zh,
    Entity.status,
    Entity.visibility,
    Entity.created_at,
    Entity.updated_at,
)


def sanitize_query(query: Optional[str]) -> str:
    """Quote every token so user input is matched literally; empty when nothing is left."""
    if not query:
        return ""
    tokens = _UNSAFE_QUERY_CHARS.sub(" ", query).split()
    return " ".join(f'"{token}"' for token in tokens)


def match_clause(fts_query: str):
    return text("search_index MATCH :fts_query").bindparams(fts_query=fts_query)


def matching_ids(fts_query: str):
    """Subquery of entity ids whose index entry matches an already-sanitized query."""
    return select(search_index_table.c.id).where(match_clause(fts_query))


def index_entity(db, entity_id: str, fields: dict, tags_text: str = "") -> None:
    params = {"id": entity_id, "tags_text": tags_text or ""}
    for name in SEARCH_INDEX_COLUMNS:
        if name != "tags_text":
            params[name] = fields.get(name) or ""
    db.execute(_DELETE_ENTRY, {"id": entity_id})
    db.execute(_INSERT_ENTRY, params)


def remove_entity(db, entity_id: str) -> None:
    db.execute(_DELETE_ENTRY, {"id": entity_id})


def tag_names(db, entity_id: str) -> list[str]:
    rows = (
        db.query(Tag.name_en)
        .join(EntityTag, EntityTag.tag_id == Tag.id)
        .filter(EntityTag.entity_id == entity_id)
        .order_by(Tag.name_en)
        .all()
    )
    return [row.name_en for row in rows]


def _entity_fields(entity: Entity) -> dict:
    return {
        "title_en": entity.title_en,
        "title_zh": entity.title_zh,
        "summary_en": entity.summary_en,
        "summary_zh": entity.summary_zh,
        "body_en": entity.body_en,
        "body_zh": entity.body_zh,
    }


def reindex_entity(db, entity_id: str) -> bool:
    """Rewrite one entry from the stored row; drops the entry when the row is gone."""
    entity = db.get(Entity, entity_id)
    if entity is None:
        remove_entity(db, entity_id)
        return False
    index_entity(db, entity_id, _entity_fields(entity), " ".join(tag_names(db, entity_id)))
    return True


def rebuild_index(db) -> int:
    """Clear the index and repopulate it from every stored entity."""
    db.execute(text("DELETE FROM search_index"))
    names_by_entity: dict[str, list[str]] = {}
    tag_rows = (
        db.query(EntityTag.entity_id, Tag.name_en)
        .join(Tag, Tag.id == EntityTag.tag_id)
        .order_by(EntityTag.entity_id, Tag.name_en)
        .all()
    )
    for row in tag_rows:
        names_by_entity.setdefault(row.entity_id, []).append(row.name_en)

    count = 0
    for entity in db.query(Entity).order_by(Entity.id).all():
        index_entity(
            db,
            entity.id,
            _entity_fields(entity),
            " ".join(names_by_entity.get(entity.id, [])),
        )
        count += 1
    logger.info("search_index_rebuilt", extra={"indexed": count})
    return count


def _facet_rows(db, base_ids, group_column) -> list[dict]:
    rows = db.execute(
        select(group_column.label("value"), func.count().label("count"))
        .where(Entity.id.in_(base_ids))
        .group_by(group_column)
        .order_by(func.count().desc(), group_column)
    ).all()
    return [{"value": row.value, "count": row.count} for row in rows]


def _tag_facets(db, base_ids) -> list[dict]:
    rows = db.execute(
        select(EntityTag.tag_id.label("value"), func.count(EntityTag.entity_id).label("count"))
        .where(EntityTag.entity_id.in_(base_ids))
        .group_by(EntityTag.tag_id)
        .order_by(func.count(EntityTag.entity_id).desc(), EntityTag.tag_id)
        .limit(TOP_TAG_FACETS)
    ).all()
    return [{"value": row.value, "count": row.count} for row in rows]


def search(
    db,
    query: Optional[str],
    visible_clause,
    *,
    entity_type: Optional[str] = None,
    status: Optional[str] = None,
    sort: str = "relevance",
    page: Optional[int] = None,
    limit: Optional[int] = None,
) -> dict:
    """Ranked search within ``visible_clause``; an empty query lists by date instead."""
    if sort not in SEARCH_SORTS:
        raise ValidationIssue(
            f"sort must be one of: {'|'.join(SEARCH_SORTS)}",
            field="sort",
            error_type="invalid_choice",
        )
    page = clamp_page(page)
    limit = clamp_limit(limit)
    fts_query = sanitize_query(query)

    conditions = [visible_clause]
    if entity_type:
        conditions.append(Entity.type == entity_type)
    if status:
        conditions.append(Entity.status == status)

    if fts_query:
        snippet = func.snippet(
            literal_column("search_index"), -1, "<mark>", "</mark>", "...", SEARCH_SNIPPET_TOKENS
        )
        rank = literal_column("search_index.rank")
        statement = (
            select(*RESULT_COLUMNS, snippet.label("snippet"), rank.label("rank"))
            .select_from(search_index_table.join(Entity, Entity.id == search_index_table.c.id))
            .where(match_clause(fts_query), *conditions)
        )
        base_ids = (
            select(Entity.id)
            .select_from(search_index_table.join(Entity, Entity.id == search_index_table.c.id))
            .where(match_clause(fts_query), *conditions)
            .correlate(None)
        )
        order_by = {
            "relevance": (rank,),
            "date_desc": (Entity.created_at.desc(),),
            "date_asc": (Entity.created_at.asc(),),
            "title": (Entity.title_en.asc(),),
        }[sort]
    else:
        statement = select(
            *RESULT_COLUMNS, literal("").label("snippet"), literal(0).label("rank")
        ).where(*conditions)
        base_ids = select(Entity.id).where(*conditions).correlate(None)
        order_by = {
            "relevance": (Entity.created_at.desc(),),
            "date_desc": (Entity.created_at.desc(),),
            "date_asc": (Entity.created_at.asc(),),
            "title": (Entity.title_en.asc(),),
        }[sort]

    total = db.execute(select(func.count()).select_from(base_ids.subquery())).scalar() or 0
    rows = db.execute(
        statement.order_by(*order_by, Entity.id).limit(limit).offset((page - 1) * limit)
    ).mappings().all()

    return {
        "query": query or "",
        "results": [dict(row) for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
        "facets": {
            "types": _facet_rows(db, base_ids, Entity.type),
            "statuses": _facet_rows(db, base_ids, Entity.status),
            "tags": _tag_facets(db, base_ids),
        },
    }
