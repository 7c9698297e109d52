"""
Request-scoped view context for read services.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
import contextvars

from archive_core.errors import ValidationIssue
from archive_core.models import Visibility


class ViewMode(str, Enum):
    private = "private"
    public = "public"
    curated = "curated"


ALLOWED_VISIBILITIES: dict[ViewMode, tuple[str, ...]] = {
    ViewMode.private: (
        Visibility.private.value,
        Visibility.unlisted.value,
        Visibility.public.value,
    ),
    ViewMode.public: (Visibility.public.value,),
    ViewMode.curated: (Visibility.unlisted.value, Visibility.public.value),
}


@dataclass(frozen=True)
class ViewContext:
    mode: ViewMode
    view_id: Optional[str] = None

    @property
    def allowed_visibilities(self) -> tuple[str, ...]:
        return ALLOWED_VISIBILITIES[self.mode]

    @property
    def is_private(self) -> bool:
        return self.mode is ViewMode.private


def parse_view_mode(mode) -> ViewMode:
    if isinstance(mode, ViewMode):
        return mode
    try:
        return ViewMode(mode)
    except ValueError as exc:
        raise ValidationIssue(
            "mode must be one of: private|public|curated",
            field="mode",
            error_type="invalid_choice",
        ) from exc


def get_view_context(mode, view_id: Optional[str] = None) -> ViewContext:
    """Build the context for a mode; only curated mode carries a view id."""
    parsed = parse_view_mode(mode)
    if parsed is not ViewMode.curated:
        view_id = None
    return ViewContext(mode=parsed, view_id=view_id)


_CURRENT_VIEW_CONTEXT: contextvars.ContextVar[Optional[ViewContext]] = contextvars.ContextVar(
    "archive_view_context",
    default=None,
)


def get_current_view_context() -> Optional[ViewContext]:
    return _CURRENT_VIEW_CONTEXT.get()


def set_current_view_context(context: Optional[ViewContext]) -> contextvars.Token:
    return _CURRENT_VIEW_CONTEXT.set(context)


def reset_current_view_context(token: contextvars.Token) -> None:
    _CURRENT_VIEW_CONTEXT.reset(token)


def resolve_view_context(mode=None, view_id: Optional[str] = None) -> ViewContext:
    """Explicit mode wins; otherwise the ambient context; otherwise public."""
    if isinstance(mode, ViewContext):
        return mode
    if mode is not None:
        return get_view_context(mode, view_id)
    current = get_current_view_context()
    if current is not None:
        return current
    return ViewContext(mode=ViewMode.public)
