"""
Relational store operations over the entity mirror.

All values reach SQL as bound parameters; column choices (sort, facet,
partial-upsert keys) are looked up in fixed maps of ORM columns, so there is
no path for caller text to become an identifier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import aliased

from archive_core.errors import UnknownEntityTypeError, ValidationIssue
from archive_core.models import (
    EXTENSION_MODELS,
    Edge,
    Entity,
    EntityTag,
    EntityType,
    IntegrityIssue,
    Media,
    Project,
    Status,
    Tag,
    Visibility,
)
from archive_core.services import search_index
from archive_core.services.extension_rows import build_extension_row
from archive_core.services.shared import (
    GRAPH_DEFAULT_WEIGHT,
    MAX_FACET_LIMIT,
    clamp_limit,
    clamp_page,
    later_timestamp,
    logger,
    next_timestamp,
    total_pages,
)
from archive_core.validators import (
    validate_choice,
    validate_iso_date,
    validate_query,
    validate_string_list,
)

DEFAULT_TAG_CATEGORY = "custom"

ENTITY_COLUMNS = tuple(column.key for column in Entity.__table__.columns)

# Keys a partial upsert may supply; updated_at is always set by the store.
ENTITY_WRITABLE_COLUMNS = frozenset(ENTITY_COLUMNS) - {"id", "updated_at"}

SORT_COLUMNS = {
    "created_at": Entity.created_at,
    "updated_at": Entity.updated_at,
    "title": Entity.title_en,
}
SORT_ORDERS = ("asc", "desc")

FACET_COLUMNS = {
    "status": Entity.status,
    "visibility": Entity.visibility,
    "type": Entity.type,
    "owner_role": Entity.owner_role,
    "source_of_truth_kind": Entity.source_of_truth_kind,
}

_TEXT_COLUMNS = ("title_en", "title_zh", "summary_en", "summary_zh", "body_en", "body_zh")

MAX_FILTER_TAGS = 50
MAX_TAG_LENGTH = 200


@dataclass
class EntityFilters:
    type: Optional[str] = None
    status: Optional[str] = None
    visibility: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    query: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    sort: str = "created_at"
    order: str = "desc"
    page: Optional[int] = None
    limit: Optional[int] = None

    @classmethod
    def from_value(cls, value) -> "EntityFilters":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if not isinstance(value, dict):
            raise ValidationIssue("filters must be a mapping", field="filters", error_type="invalid_type")
        unknown = sorted(set(value) - set(cls.__dataclass_fields__))
        if unknown:
            raise ValidationIssue(
                f"Unknown filter keys: {', '.join(unknown)}",
                field="filters",
                error_type="unknown_field",
            )
        filters = cls(**value)
        filters.tags = list(filters.tags or [])
        return filters

    def validate(self) -> None:
        validate_choice(self.type, "type", [member.value for member in EntityType])
        validate_choice(self.status, "status", [member.value for member in Status])
        validate_choice(self.visibility, "visibility", [member.value for member in Visibility])
        validate_string_list(self.tags, "tags", MAX_FILTER_TAGS, MAX_TAG_LENGTH)
        validate_query(self.query)
        validate_iso_date(self.date_from, "date_from")
        validate_iso_date(self.date_to, "date_to")
        validate_choice(self.sort, "sort", SORT_COLUMNS)
        validate_choice(self.order, "order", SORT_ORDERS)


# =============================================================================
# Entity reads
# =============================================================================

def get_entity(db, entity_id: str) -> Optional[Entity]:
    return db.get(Entity, entity_id)


def get_entity_type(db, entity_id: str) -> Optional[str]:
    return db.execute(select(Entity.type).where(Entity.id == entity_id)).scalar()


def entity_exists(db, entity_id: str) -> bool:
    return get_entity_type(db, entity_id) is not None


def entity_to_dict(entity: Entity) -> dict:
    return {key: getattr(entity, key) for key in ENTITY_COLUMNS}


def get_extension_row(db, entity: Entity) -> Optional[dict]:
    model = EXTENSION_MODELS.get(entity.type)
    if model is None:
        raise UnknownEntityTypeError(entity.type)
    row = db.get(model, entity.id)
    if row is None:
        return None
    return {
        column.key: getattr(row, column.key)
        for column in model.__table__.columns
        if column.key != "entity_id"
    }


def get_tags(db, entity_id: str) -> list[str]:
    rows = (
        db.query(EntityTag.tag_id)
        .filter(EntityTag.entity_id == entity_id)
        .order_by(EntityTag.tag_id)
        .all()
    )
    return [row.tag_id for row in rows]


def filter_conditions(filters: EntityFilters, visible_clause=None) -> list:
    """WHERE conditions for ``filters``; every tag in ``filters.tags`` must be present."""
    conditions = []
    if visible_clause is not None:
        conditions.append(visible_clause)
    if filters.type:
        conditions.append(Entity.type == filters.type)
    if filters.status:
        conditions.append(Entity.status == filters.status)
    if filters.visibility:
        conditions.append(Entity.visibility == filters.visibility)
    for tag in dict.fromkeys(filters.tags):
        conditions.append(
            Entity.id.in_(select(EntityTag.entity_id).where(EntityTag.tag_id == tag))
        )
    fts_query = search_index.sanitize_query(filters.query)
    if fts_query:
        conditions.append(Entity.id.in_(search_index.matching_ids(fts_query)))
    if filters.date_from:
        conditions.append(Entity.created_at >= filters.date_from)
    if filters.date_to:
        conditions.append(Entity.created_at <= filters.date_to)
    return conditions


def list_entities(db, filters: EntityFilters, visible_clause=None) -> dict:
    """Filtered, sorted page of entities as ``{items, total, page, limit, totalPages}``."""
    filters.validate()
    page = clamp_page(filters.page)
    limit = clamp_limit(filters.limit)
    conditions = filter_conditions(filters, visible_clause)

    sort_column = SORT_COLUMNS[filters.sort]
    ordering = sort_column.asc() if filters.order == "asc" else sort_column.desc()

    total = db.query(func.count(Entity.id)).filter(*conditions).scalar() or 0
    rows = (
        db.query(Entity)
        .filter(*conditions)
        .order_by(ordering, Entity.id)
        .limit(limit)
        .offset((page - 1) * limit)
        .all()
    )
    return {
        "items": [entity_to_dict(row) for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages(total, limit),
    }


def get_facet_counts(db, facet: str, visible_clause=None) -> list[dict]:
    column = FACET_COLUMNS.get(facet)
    if column is None:
        raise ValidationIssue(
            f'Facet field "{facet}" is not allowed. Use one of: {", ".join(FACET_COLUMNS)}',
            field="facet",
            error_type="not_whitelisted",
        )
    query = db.query(column.label("value"), func.count(Entity.id).label("count"))
    if visible_clause is not None:
        query = query.filter(visible_clause)
    rows = query.group_by(column).order_by(func.count(Entity.id).desc(), column).all()
    return [{"value": row.value, "count": row.count} for row in rows]


# =============================================================================
# Entity writes
# =============================================================================

def _document_row(document: dict, raw_document: dict, bodies: dict, checksum: str) -> dict:
    title = document.get("title") or {}
    summary = document.get("summary") or {}
    authorship = document.get("authorship") or {}
    source = document.get("source_of_truth") or {}
    return {
        "id": document["id"],
        "type": document["type"],
        "title_en": title.get("en", ""),
        "title_zh": title.get("zh-Hans", ""),
        "summary_en": summary.get("en", ""),
        "summary_zh": summary.get("zh-Hans", ""),
        "body_en": bodies.get("en", ""),
        "body_zh": bodies.get("zh-Hans", ""),
        "slug": document.get("slug"),
        "status": document["status"],
        "visibility": document["visibility"],
        "cover_media_id": document.get("cover_media_id"),
        "checksum": checksum,
        "source_of_truth_kind": source.get("kind"),
        "source_of_truth_pointer": source.get("pointer"),
        "owner_role": authorship.get("owner_role"),
        "raw_metadata": raw_document,
        "created_at": document["created_at"],
        "updated_at": document["updated_at"],
    }


def _guard_type_change(db, entity_id: str, entity_type: str) -> None:
    stored_type = get_entity_type(db, entity_id)
    if stored_type is not None and stored_type != entity_type:
        raise ValidationIssue(
            f'Entity type is immutable (stored "{stored_type}", got "{entity_type}")',
            field="type",
            error_type="immutable",
            data={"id": entity_id},
        )


def upsert_entity_document(
    db,
    document: dict,
    raw_document: dict,
    bodies: dict,
    checksum: str,
) -> dict:
    """Full replace of every entity column from a validated document; returns the written row.

    A stored ``updated_at`` never moves backwards, whatever the document claims.
    """
    _guard_type_change(db, document["id"], document["type"])
    row = _document_row(document, raw_document, bodies, checksum)
    previous = db.execute(select(Entity.updated_at).where(Entity.id == row["id"])).scalar()
    row["updated_at"] = later_timestamp(row["updated_at"], previous)
    stmt = sqlite_insert(Entity).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Entity.id],
        set_={key: stmt.excluded[key] for key in row if key != "id"},
    )
    db.execute(stmt)
    return row


def upsert_entity_fields(db, entity_id: str, fields: dict) -> dict:
    """Insert or update only the supplied columns; ``updated_at`` always moves forward."""
    unexpected = sorted(set(fields) - ENTITY_WRITABLE_COLUMNS)
    if unexpected:
        raise ValidationIssue(
            f"Columns not allowed: {', '.join(unexpected)}",
            field="fields",
            error_type="not_whitelisted",
        )
    existing = get_entity(db, entity_id)
    if existing is None:
        if "type" not in fields:
            raise ValidationIssue("type is required for a new entity", field="type", error_type="required")
        validate_choice(fields["type"], "type", [member.value for member in EntityType])
    elif "type" in fields and fields["type"] != existing.type:
        _guard_type_change(db, entity_id, fields["type"])

    if existing is None:
        updated_at = next_timestamp(None)
        values = dict(fields)
        values.setdefault("created_at", updated_at)
        db.execute(insert(Entity).values(id=entity_id, updated_at=updated_at, **values))
    else:
        updated_at = next_timestamp(existing.updated_at)
        # Only the supplied columns change; the NOT NULL columns already hold values.
        db.execute(
            update(Entity)
            .where(Entity.id == entity_id)
            .values(updated_at=updated_at, **fields)
        )
    db.expire_all()

    if existing is None or any(key in fields for key in _TEXT_COLUMNS):
        search_index.reindex_entity(db, entity_id)
    return {"id": entity_id, "updated_at": updated_at}


def upsert_extension_row(db, entity_type: str, entity_id: str, document: dict) -> None:
    model, row = build_extension_row(entity_type, document)
    stmt = sqlite_insert(model).values(entity_id=entity_id, **row)
    stmt = stmt.on_conflict_do_update(index_elements=["entity_id"], set_=row)
    db.execute(stmt)


def upsert_media_attachment(db, document: dict) -> None:
    """Mirror a media entity into the attachment table under the same id."""
    size = document.get("size_bytes")
    row = {
        "entity_id": document["id"],
        "media_type": document.get("media_type"),
        "source_path": document["source_path"],
        "checksum": document.get("checksum"),
        "size_bytes": int(size) if isinstance(size, (int, float)) and not isinstance(size, bool) else None,
        "preview_path": document.get("preview_path"),
    }
    stmt = sqlite_insert(Media).values(id=document["id"], **row)
    stmt = stmt.on_conflict_do_update(index_elements=[Media.id], set_=row)
    db.execute(stmt)


def set_entity_tags(db, entity_id: str, tags: Iterable[str], reindex: bool = True) -> list[str]:
    """Replace the entity's tag set, creating unknown tags on the way."""
    unique_tags = [tag for tag in dict.fromkeys(tags) if isinstance(tag, str) and tag]
    db.query(EntityTag).filter(EntityTag.entity_id == entity_id).delete(synchronize_session=False)
    for tag in unique_tags:
        db.execute(
            sqlite_insert(Tag)
            .values(id=tag, name_en=tag, category=DEFAULT_TAG_CATEGORY)
            .on_conflict_do_nothing(index_elements=[Tag.id])
        )
        db.execute(
            sqlite_insert(EntityTag)
            .values(entity_id=entity_id, tag_id=tag)
            .on_conflict_do_nothing()
        )
    if reindex:
        search_index.reindex_entity(db, entity_id)
    return unique_tags


def delete_entity(db, entity_id: str) -> bool:
    """Remove an entity with everything hanging off it; media rows are detached, not deleted."""
    entity_type = get_entity_type(db, entity_id)
    if entity_type is None:
        search_index.remove_entity(db, entity_id)
        return False

    model = EXTENSION_MODELS.get(entity_type)
    if model is not None:
        db.query(model).filter(model.entity_id == entity_id).delete(synchronize_session=False)
    db.query(EntityTag).filter(EntityTag.entity_id == entity_id).delete(synchronize_session=False)
    db.query(Edge).filter(
        or_(Edge.from_id == entity_id, Edge.to_id == entity_id)
    ).delete(synchronize_session=False)
    db.query(Media).filter(Media.entity_id == entity_id).update(
        {Media.entity_id: None}, synchronize_session=False
    )
    db.query(IntegrityIssue).filter(IntegrityIssue.entity_id == entity_id).delete(
        synchronize_session=False
    )
    search_index.remove_entity(db, entity_id)
    db.query(Entity).filter(Entity.id == entity_id).delete(synchronize_session=False)
    db.expire_all()
    logger.info("entity_deleted", extra={"entity_id": entity_id, "entity_type": entity_type})
    return True


# =============================================================================
# Edges
# =============================================================================

def edge_to_dict(edge: Edge) -> dict:
    return {
        "id": edge.id,
        "from_id": edge.from_id,
        "to_id": edge.to_id,
        "edge_type": edge.edge_type,
        "label_en": edge.label_en,
        "label_zh": edge.label_zh,
        "context_snippet": edge.context_snippet,
        "weight": edge.weight,
        "created_at": edge.created_at,
    }


def upsert_edge(db, document: dict) -> None:
    """Replace an edge by id from a validated edge document."""
    label = document.get("label") or {}
    weight = document.get("weight")
    row = {
        "from_id": document["from_id"],
        "to_id": document["to_id"],
        "edge_type": document["edge_type"],
        "label_en": label.get("en"),
        "label_zh": label.get("zh-Hans"),
        "context_snippet": document.get("context_snippet"),
        "weight": float(weight) if weight is not None else GRAPH_DEFAULT_WEIGHT,
        "created_at": document["created_at"],
    }
    stmt = sqlite_insert(Edge).values(id=document["id"], **row)
    stmt = stmt.on_conflict_do_update(index_elements=[Edge.id], set_=row)
    db.execute(stmt)


def _edges_with_related(db, entity_id: str, direction: str, edge_clause=None) -> list[dict]:
    """Edges on one side of ``entity_id``, each carrying the type and titles of the entity at the far end."""
    related = aliased(Entity)
    anchor_key, far_key = ("from_id", "to_id") if direction == "outgoing" else ("to_id", "from_id")
    query = (
        db.query(Edge, related.type, related.title_en, related.title_zh)
        .outerjoin(related, related.id == getattr(Edge, far_key))
        .filter(getattr(Edge, anchor_key) == entity_id)
    )
    if edge_clause is not None:
        query = query.filter(edge_clause)
    edges = []
    for edge, related_type, title_en, title_zh in query.order_by(Edge.created_at, Edge.id).all():
        item = edge_to_dict(edge)
        item["related_entity"] = (
            {"id": item[far_key], "type": related_type, "title_en": title_en, "title_zh": title_zh}
            if related_type is not None
            else None
        )
        edges.append(item)
    return edges


def list_edges_for_entity(db, entity_id: str, edge_clause=None) -> dict:
    return {
        "outgoing": _edges_with_related(db, entity_id, "outgoing", edge_clause),
        "incoming": _edges_with_related(db, entity_id, "incoming", edge_clause),
    }


# =============================================================================
# Integrity issues
# =============================================================================

def clear_integrity_issues(db) -> int:
    return db.query(IntegrityIssue).delete(synchronize_session=False)


def record_integrity_issue(db, entity_id: Optional[str], issue_type: str, message: str) -> IntegrityIssue:
    issue = IntegrityIssue(entity_id=entity_id, issue_type=issue_type, message=message)
    db.add(issue)
    return issue


def find_broken_edges(db) -> list[Edge]:
    """Edges whose from_id or to_id has no entity row."""
    existing = select(Entity.id)
    return (
        db.query(Edge)
        .filter(or_(Edge.from_id.not_in(existing), Edge.to_id.not_in(existing)))
        .order_by(Edge.id)
        .all()
    )


def integrity_issue_to_dict(issue: IntegrityIssue) -> dict:
    return {
        "id": issue.id,
        "entity_id": issue.entity_id,
        "issue_type": issue.issue_type,
        "message": issue.message,
        "detected_at": issue.detected_at.isoformat() if issue.detected_at else None,
        "resolved_at": issue.resolved_at.isoformat() if issue.resolved_at else None,
    }


def list_integrity_issues(db, issue_type: Optional[str] = None, unresolved_only: bool = False) -> list[dict]:
    query = db.query(IntegrityIssue)
    if issue_type:
        query = query.filter(IntegrityIssue.issue_type == issue_type)
    if unresolved_only:
        query = query.filter(IntegrityIssue.resolved_at.is_(None))
    return [
        integrity_issue_to_dict(issue)
        for issue in query.order_by(IntegrityIssue.detected_at.desc(), IntegrityIssue.id.desc()).all()
    ]


# =============================================================================
# Media
# =============================================================================

def list_media(db, visible_ids=None, entity_id: Optional[str] = None) -> list[dict]:
    """Attachments; when ``visible_ids`` is given, only those owned by visible entities."""
    query = db.query(Media)
    if entity_id is not None:
        query = query.filter(Media.entity_id == entity_id)
    if visible_ids is not None:
        query = query.filter(Media.entity_id.in_(visible_ids))
    return [
        {
            "id": media.id,
            "entity_id": media.entity_id,
            "media_type": media.media_type,
            "source_path": media.source_path,
            "checksum": media.checksum,
            "size_bytes": media.size_bytes,
            "preview_path": media.preview_path,
        }
        for media in query.order_by(Media.id).all()
    ]


# =============================================================================
# Facets
# =============================================================================

LINKED_FACETS = {
    "methods": (EntityType.method.value, ("implements", "related_to")),
    "materials": (EntityType.material_system.value, ("related_to", "project_contains")),
    "metrics": (EntityType.metric.value, ("evaluated_on", "related_to")),
}
TIME_GRANULARITIES = {"year": "%Y", "month": "%Y-%m"}
DEFAULT_LINKED_FACET_LIMIT = 20
DEFAULT_TAG_FACET_LIMIT = 30


def get_tag_facets(
    db,
    visible_clause=None,
    category: Optional[str] = None,
    limit: int = DEFAULT_TAG_FACET_LIMIT,
) -> list[dict]:
    query = (
        db.query(
            EntityTag.tag_id.label("value"),
            func.count(func.distinct(EntityTag.entity_id)).label("count"),
            Tag.name_en.label("label_en"),
            Tag.name_zh.label("label_zh"),
        )
        .join(Entity, Entity.id == EntityTag.entity_id)
        .outerjoin(Tag, Tag.id == EntityTag.tag_id)
    )
    if visible_clause is not None:
        query = query.filter(visible_clause)
    if category:
        query = query.filter(Tag.category == category)
    rows = (
        query.group_by(EntityTag.tag_id)
        .order_by(func.count(func.distinct(EntityTag.entity_id)).desc(), EntityTag.tag_id)
        .limit(max(1, min(limit, MAX_FACET_LIMIT)))
        .all()
    )
    return [
        {"value": row.value, "count": row.count, "label_en": row.label_en, "label_zh": row.label_zh}
        for row in rows
    ]


def get_linked_facets(
    db,
    facet: str,
    visible_clause=None,
    target_clause=None,
    limit: int = DEFAULT_LINKED_FACET_LIMIT,
) -> list[dict]:
    """Entities of one type (methods, materials, metrics) counted by how many entities link to them."""
    if facet not in LINKED_FACETS:
        raise ValidationIssue(
            f'Linked facet "{facet}" is not allowed. Use one of: {", ".join(LINKED_FACETS)}',
            field="facet",
            error_type="not_whitelisted",
        )
    target_type, edge_types = LINKED_FACETS[facet]
    target = aliased(Entity)
    query = (
        db.query(
            target.id.label("value"),
            func.count(func.distinct(Edge.from_id)).label("count"),
            target.title_en.label("label_en"),
            target.title_zh.label("label_zh"),
        )
        .select_from(Edge)
        .join(target, and_(Edge.to_id == target.id, target.type == target_type))
        .join(Entity, Edge.from_id == Entity.id)
        .filter(Edge.edge_type.in_(edge_types))
    )
    if visible_clause is not None:
        query = query.filter(visible_clause)
    if target_clause is not None:
        query = query.filter(target_clause(target))
    rows = (
        query.group_by(target.id)
        .order_by(func.count(func.distinct(Edge.from_id)).desc(), target.id)
        .limit(max(1, min(limit, MAX_FACET_LIMIT)))
        .all()
    )
    return [
        {"value": row.value, "count": row.count, "label_en": row.label_en, "label_zh": row.label_zh}
        for row in rows
    ]


def _period_expression(column, granularity: str):
    fmt = TIME_GRANULARITIES.get(granularity)
    if fmt is None:
        raise ValidationIssue(
            "granularity must be one of: year|month",
            field="granularity",
            error_type="invalid_choice",
        )
    return func.strftime(fmt, column)


def get_time_range_facets(db, visible_clause=None, granularity: str = "year") -> list[dict]:
    period = _period_expression(Entity.created_at, granularity).label("period")
    query = db.query(period, func.count(Entity.id).label("count"))
    if visible_clause is not None:
        query = query.filter(visible_clause)
    rows = query.group_by(period).order_by(period).all()
    return [{"period": row.period, "count": row.count} for row in rows if row.period]


def get_project_timeline_facets(db, visible_clause=None, granularity: str = "year") -> list[dict]:
    """Projects bucketed by start date; archived projects are left out."""
    period = _period_expression(Project.start_date, granularity).label("period")
    query = (
        db.query(period, func.count(Project.entity_id).label("count"))
        .join(Entity, Entity.id == Project.entity_id)
        .filter(Project.start_date.isnot(None), Entity.status != Status.archived.value)
    )
    if visible_clause is not None:
        query = query.filter(visible_clause)
    rows = query.group_by(period).order_by(period).all()
    return [{"period": row.period, "count": row.count} for row in rows if row.period]
