"""
Visibility predicates and field sanitization for every read path.

Predicates are generated from the view context, never written per call site:
services ask a ``VisibilityFilter`` for the clause of a scope and attach it to
their query.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Optional

from sqlalchemy import and_, false, select
from sqlalchemy.orm import aliased

from archive_core.context import ViewContext, ViewMode
from archive_core.models import CuratedView, Edge, Entity, Visibility
from archive_core.services.curated_views import curated_view_clause, get_curated_view
from archive_core.services.shared import logger

# Stripped from rows (and from raw_metadata) outside private mode
RESTRICTED_FIELDS = (
    "confidentiality_note",
    "review_notes",
    "source_of_truth",
    "source_of_truth_kind",
    "source_of_truth_pointer",
    "owner_role",
)
RESTRICTED_METADATA_KEYS = ("confidentiality_note", "review_notes", "source_of_truth")


class Scope(str, Enum):
    list = "list"  # enumerable results: lists, search, graph, aggregates
    detail = "detail"  # direct access by id


def visible_tiers(context: ViewContext, scope: Scope = Scope.list) -> tuple[str, ...]:
    if context.mode is ViewMode.private:
        return context.allowed_visibilities
    if scope is Scope.detail:
        return (Visibility.unlisted.value, Visibility.public.value)
    # Unlisted content is reachable by link but never enumerable.
    return (Visibility.public.value,)


def is_visible(visibility: Optional[str], context: ViewContext, scope: Scope = Scope.list) -> bool:
    return visibility in visible_tiers(context, scope)


class VisibilityFilter:
    """Clause builder bound to one view context (and its curated view, if any)."""

    def __init__(
        self,
        context: ViewContext,
        view: Optional[CuratedView] = None,
        view_missing: bool = False,
    ):
        self.context = context
        self.view = view
        self.view_missing = view_missing

    @classmethod
    def for_context(cls, db, context: ViewContext) -> "VisibilityFilter":
        if context.mode is not ViewMode.curated or not context.view_id:
            return cls(context)
        view = get_curated_view(db, context.view_id)
        if view is None:
            logger.warning("curated_view_not_found", extra={"view_id": context.view_id})
            return cls(context, view_missing=True)
        return cls(context, view=view)

    @property
    def is_private(self) -> bool:
        return self.context.mode is ViewMode.private

    def entity_clause(self, scope: Scope = Scope.list, entity=Entity):
        if self.view_missing:
            return false()
        clause = entity.visibility.in_(visible_tiers(self.context, scope))
        if self.view is not None:
            clause = and_(clause, curated_view_clause(self.view, entity))
        return clause

    def visible_ids(self, scope: Scope = Scope.list):
        endpoint = aliased(Entity)
        return select(endpoint.id).where(self.entity_clause(scope, endpoint))

    def edge_clause(self, scope: Scope = Scope.list, edge=Edge):
        """Both endpoints must pass independently; dangling endpoints never pass."""
        return and_(
            edge.from_id.in_(self.visible_ids(scope)),
            edge.to_id.in_(self.visible_ids(scope)),
        )


def sanitize_entity(row: dict, context: ViewContext) -> dict:
    """Copy of ``row`` with owner-only fields removed for non-private modes."""
    if context.mode is ViewMode.private:
        return dict(row)
    sanitized = {key: value for key, value in row.items() if key not in RESTRICTED_FIELDS}
    metadata = sanitized.get("raw_metadata")
    if isinstance(metadata, dict):
        metadata = copy.deepcopy(metadata)
        for key in RESTRICTED_METADATA_KEYS:
            metadata.pop(key, None)
        authorship = metadata.get("authorship")
        if isinstance(authorship, dict):
            authorship.pop("owner_role", None)
        sanitized["raw_metadata"] = metadata
    return sanitized
