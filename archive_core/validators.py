"""
Shared parameter validation helpers for archive services.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from archive_core.config import MAX_QUERY_LENGTH
from archive_core.errors import ValidationIssue


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_query(value: Optional[str], field: str = "query") -> None:
    validate_optional_text(value, field, MAX_QUERY_LENGTH)


def validate_choice(value: Optional[str], field: str, choices: Iterable[str]) -> None:
    if value is None:
        return
    allowed = tuple(choices)
    if value not in allowed:
        raise ValidationIssue(
            f"{field} must be one of: {'|'.join(allowed)}",
            field=field,
            error_type="invalid_choice",
        )


def validate_string_list(
    values: Optional[Sequence[str]],
    field: str,
    max_items: int,
    max_item_length: int,
) -> None:
    if values is None:
        return
    if isinstance(values, str) or not isinstance(values, (list, tuple, set, frozenset)):
        raise ValidationIssue(f"{field} must be a list of strings", field=field, error_type="invalid_type")
    if len(values) > max_items:
        raise ValidationIssue(f"{field} exceeds max items {max_items}", field=field, error_type="max_items")
    for item in values:
        if not isinstance(item, str):
            raise ValidationIssue(f"{field} must contain only strings", field=field, error_type="invalid_type")
        if len(item) > max_item_length:
            raise ValidationIssue(
                f"{field} item exceeds max length {max_item_length}",
                field=field,
                error_type="max_length",
            )


def validate_iso_date(value: Optional[str], field: str) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be an ISO-8601 string", field=field, error_type="invalid_type")
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationIssue(
            f"{field} must be an ISO-8601 date", field=field, error_type="invalid_format"
        ) from exc
