"""
Curated views: shared read-only selections resolved by allowlist or filter config.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import and_, select, true

from archive_core.models import CuratedView, Entity, EntityTag, Visibility

FILTER_CONFIG_KEYS = ("types", "statuses", "tags")


def get_curated_view(db, view_id: str) -> Optional[CuratedView]:
    if not view_id:
        return None
    return db.get(CuratedView, view_id)


def get_curated_view_by_token(db, access_token: str) -> Optional[CuratedView]:
    if not access_token:
        return None
    return db.query(CuratedView).filter(CuratedView.access_token == access_token).first()


def curated_view_clause(view: CuratedView, entity=Entity):
    """Membership predicate for a view: the allowlist when set, else the filter config."""
    allowlist = [entity_id for entity_id in (view.entity_allowlist or []) if isinstance(entity_id, str)]
    if allowlist:
        return entity.id.in_(allowlist)

    config = view.filter_config or {}
    clauses = []
    types = config.get("types") or []
    if types:
        clauses.append(entity.type.in_(types))
    statuses = config.get("statuses") or []
    if statuses:
        clauses.append(entity.status.in_(statuses))
    tags = config.get("tags") or []
    if tags:
        clauses.append(
            entity.id.in_(select(EntityTag.entity_id).where(EntityTag.tag_id.in_(tags)))
        )
    if not clauses:
        return true()
    return and_(*clauses)


def validate_curated_view(db, view: CuratedView | dict) -> dict:
    """Allowlisted entities must exist and must not be private."""
    if isinstance(view, dict):
        allowlist = view.get("entity_allowlist") or []
        filter_config = view.get("filter_config") or {}
    else:
        allowlist = view.entity_allowlist or []
        filter_config = view.filter_config or {}

    issues = []
    for entity_id in allowlist:
        row = db.query(Entity.id, Entity.visibility).filter(Entity.id == entity_id).first()
        if row is None:
            issues.append(f"Entity {entity_id} not found")
        elif row.visibility == Visibility.private.value:
            issues.append(f"Entity {entity_id} is private but included in curated view")

    unknown_keys = sorted(set(filter_config) - set(FILTER_CONFIG_KEYS))
    for key in unknown_keys:
        issues.append(f"Unknown filter_config key: {key}")

    return {"valid": not issues, "issues": issues}
