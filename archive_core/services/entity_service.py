"""
Visibility-scoped read services.

Every query here takes its row predicate from ``VisibilityFilter`` for the
caller's view mode; nothing in this module writes a visibility condition by
hand. Rows leaving the module pass through ``sanitize_entity``.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import and_, func, or_, select

from archive_core.context import ViewContext, resolve_view_context
from archive_core.db import DB
from archive_core.errors import ValidationIssue
from archive_core.models import Edge, Entity, EntityType, IntegrityIssue, Media
from archive_core.services import search_index, store
from archive_core.services.shared import RECENT_LIMIT, logger, service_tool
from archive_core.services.store import EntityFilters
from archive_core.services.visibility import Scope, VisibilityFilter, sanitize_entity
from archive_core.validators import validate_choice, validate_query

SUMMARY_COLUMNS = (
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
    Entity.slug,
)


def _open_session():
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return DB.SessionLocal()


def _context(mode, view_id: Optional[str] = None) -> ViewContext:
    return resolve_view_context(mode, view_id)


def _grouped_counts(db, column, clause) -> dict:
    rows = db.query(column, func.count(Entity.id)).filter(clause).group_by(column).all()
    return {value: count for value, count in rows}


# =============================================================================
# Detail
# =============================================================================

def get_by_id(entity_id: str, mode=None, view_id: Optional[str] = None) -> Optional[dict]:
    """Entity detail (row, extension, tags, listed edges, media) or None when not visible.

    The entity itself resolves at detail scope, so unlisted rows open by id. Its
    edges only lead to neighbours the caller could list.
    """
    context = _context(mode, view_id)
    if not isinstance(entity_id, str) or not entity_id:
        return None

    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        entity = (
            db.query(Entity)
            .filter(Entity.id == entity_id, vis.entity_clause(Scope.detail))
            .first()
        )
        if entity is None:
            return None

        detail = sanitize_entity(store.entity_to_dict(entity), context)
        detail["extension"] = store.get_extension_row(db, entity)
        detail["tags"] = store.get_tags(db, entity_id)
        detail["edges"] = store.list_edges_for_entity(db, entity_id, vis.edge_clause(Scope.list))
        detail["media"] = store.list_media(db, entity_id=entity_id)
        return detail
    finally:
        db.close()


# =============================================================================
# Lists and search
# =============================================================================

@service_tool
def list_entities(filters=None, mode=None, view_id: Optional[str] = None) -> dict:
    context = _context(mode, view_id)
    parsed = EntityFilters.from_value(filters)

    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        page = store.list_entities(db, parsed, vis.entity_clause(Scope.list))
        page["items"] = [sanitize_entity(item, context) for item in page["items"]]
        return page
    finally:
        db.close()


@service_tool
def search_entities(
    query: Optional[str] = None,
    filters: Optional[dict] = None,
    mode=None,
    view_id: Optional[str] = None,
) -> dict:
    """Full-text search within the caller's visible set."""
    context = _context(mode, view_id)
    validate_query(query)
    filters = dict(filters or {})
    unknown = sorted(set(filters) - {"type", "status", "sort", "page", "limit"})
    if unknown:
        raise ValidationIssue(
            f"Unknown filter keys: {', '.join(unknown)}",
            field="filters",
            error_type="unknown_field",
        )
    validate_choice(filters.get("type"), "type", [member.value for member in EntityType])

    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        return search_index.search(
            db,
            query,
            vis.entity_clause(Scope.list),
            entity_type=filters.get("type"),
            status=filters.get("status"),
            sort=filters.get("sort") or "relevance",
            page=filters.get("page"),
            limit=filters.get("limit"),
        )
    finally:
        db.close()


def list_projects(mode=None, view_id: Optional[str] = None) -> list[dict]:
    context = _context(mode, view_id)
    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        rows = (
            db.query(Entity.id, Entity.title_en, Entity.title_zh)
            .filter(Entity.type == EntityType.project.value, vis.entity_clause(Scope.list))
            .order_by(Entity.updated_at.desc(), Entity.id)
            .all()
        )
        return [{"id": row.id, "title_en": row.title_en, "title_zh": row.title_zh} for row in rows]
    finally:
        db.close()


# =============================================================================
# Aggregates
# =============================================================================

@service_tool
def get_dashboard_stats(mode=None, view_id: Optional[str] = None) -> dict:
    context = _context(mode, view_id)
    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        clause = vis.entity_clause(Scope.list)

        total = db.query(func.count(Entity.id)).filter(clause).scalar() or 0
        recent_rows = (
            db.query(*SUMMARY_COLUMNS)
            .filter(clause)
            .order_by(Entity.updated_at.desc(), Entity.id)
            .limit(RECENT_LIMIT)
            .all()
        )
        total_edges = db.query(func.count(Edge.id)).filter(vis.edge_clause(Scope.list)).scalar() or 0
        total_media = (
            db.query(func.count(Media.id))
            .filter(Media.entity_id.in_(vis.visible_ids(Scope.list)))
            .scalar()
            or 0
        )
        integrity_issues = 0
        if vis.is_private:
            integrity_issues = (
                db.query(func.count(IntegrityIssue.id))
                .filter(IntegrityIssue.resolved_at.is_(None))
                .scalar()
                or 0
            )

        return {
            "total": total,
            "by_type": _grouped_counts(db, Entity.type, clause),
            "by_status": _grouped_counts(db, Entity.status, clause),
            "by_visibility": _grouped_counts(db, Entity.visibility, clause),
            "recent": [dict(row._mapping) for row in recent_rows],
            "total_edges": total_edges,
            "total_media": total_media,
            "integrity_issues": integrity_issues,
        }
    finally:
        db.close()


@service_tool
def get_graph_data(mode=None, view_id: Optional[str] = None) -> dict:
    """Visible nodes plus the edges whose endpoints are both visible."""
    context = _context(mode, view_id)
    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        node_rows = (
            db.query(Entity.id, Entity.type, Entity.title_en, Entity.title_zh)
            .filter(vis.entity_clause(Scope.list))
            .order_by(Entity.id)
            .all()
        )
        edge_rows = (
            db.query(Edge.id, Edge.from_id, Edge.to_id, Edge.edge_type, Edge.weight)
            .filter(vis.edge_clause(Scope.list))
            .order_by(Edge.id)
            .all()
        )
        return {
            "nodes": [
                {
                    "id": row.id,
                    "type": row.type,
                    "title_en": row.title_en,
                    "title_zh": row.title_zh,
                    "group": row.type,
                }
                for row in node_rows
            ],
            "edges": [
                {
                    "id": row.id,
                    "source": row.from_id,
                    "target": row.to_id,
                    "type": row.edge_type,
                    "weight": row.weight,
                }
                for row in edge_rows
            ],
        }
    finally:
        db.close()


def get_timeline(
    mode=None,
    project_id: Optional[str] = None,
    view_id: Optional[str] = None,
) -> list[dict]:
    """Visible entities newest first; with ``project_id``, the project and its edge neighbours."""
    context = _context(mode, view_id)
    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        conditions = [vis.entity_clause(Scope.list)]
        if project_id:
            project_visible = db.query(Entity.id).filter(
                Entity.id == project_id, vis.entity_clause(Scope.list)
            ).first()
            if project_visible is None:
                return []
            edges = vis.edge_clause(Scope.list)
            conditions.append(
                or_(
                    Entity.id == project_id,
                    Entity.id.in_(select(Edge.to_id).where(Edge.from_id == project_id, edges)),
                    Entity.id.in_(select(Edge.from_id).where(Edge.to_id == project_id, edges)),
                )
            )
        rows = (
            db.query(
                Entity.id,
                Entity.type,
                Entity.title_en,
                Entity.title_zh,
                Entity.created_at.label("date"),
                Entity.status,
            )
            .filter(*conditions)
            .order_by(Entity.created_at.desc(), Entity.id)
            .all()
        )
        return [dict(row._mapping) for row in rows]
    finally:
        db.close()


@service_tool
def get_facets(
    mode=None,
    filters=None,
    view_id: Optional[str] = None,
    granularity: str = "year",
) -> dict:
    """Facet counts over the visible set narrowed by ``filters``."""
    context = _context(mode, view_id)
    parsed = EntityFilters.from_value(filters)
    parsed.validate()

    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        conditions = store.filter_conditions(parsed, vis.entity_clause(Scope.list))
        clause = and_(*conditions)

        def visible_target(target):
            return vis.entity_clause(Scope.list, target)

        facets = {
            "types": store.get_facet_counts(db, "type", clause),
            "statuses": store.get_facet_counts(db, "status", clause),
            "tags": store.get_tag_facets(db, clause),
            "methods": store.get_linked_facets(db, "methods", clause, visible_target),
            "materials": store.get_linked_facets(db, "materials", clause, visible_target),
            "metrics": store.get_linked_facets(db, "metrics", clause, visible_target),
            "time_range": store.get_time_range_facets(db, clause, granularity),
            "project_timeline": store.get_project_timeline_facets(db, clause, granularity),
        }
        if vis.is_private:
            facets["visibilities"] = store.get_facet_counts(db, "visibility", clause)
        return facets
    finally:
        db.close()


# =============================================================================
# Media and integrity
# =============================================================================

def list_media(mode=None, view_id: Optional[str] = None) -> list[dict]:
    """Attachments of visible entities; detached attachments only in private mode."""
    context = _context(mode, view_id)
    db = _open_session()
    try:
        vis = VisibilityFilter.for_context(db, context)
        if vis.is_private:
            return store.list_media(db)
        return store.list_media(db, vis.visible_ids(Scope.list))
    finally:
        db.close()


def list_integrity_issues(mode=None, issue_type: Optional[str] = None) -> list[dict]:
    """Open integrity issues joined with entity titles; owner only."""
    context = _context(mode)
    if not context.is_private:
        logger.info("integrity_issues_denied", extra={"mode": context.mode.value})
        return []

    db = _open_session()
    try:
        issues = store.list_integrity_issues(db, issue_type=issue_type, unresolved_only=True)
        entity_ids = {issue["entity_id"] for issue in issues if issue["entity_id"]}
        titles = {}
        if entity_ids:
            rows = (
                db.query(Entity.id, Entity.title_en, Entity.title_zh)
                .filter(Entity.id.in_(entity_ids))
                .all()
            )
            titles = {row.id: (row.title_en, row.title_zh) for row in rows}
        for issue in issues:
            title_en, title_zh = titles.get(issue["entity_id"], (None, None))
            issue["entity_title_en"] = title_en
            issue["entity_title_zh"] = title_zh
        return issues
    finally:
        db.close()
