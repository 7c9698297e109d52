"""
Structural validation of entity and edge documents.

Validation failures are returned as flat ``"[field.path] message"`` lists and
never raised, so callers can show them verbatim next to the offending document.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any, Optional, Sequence

from pydantic import BaseModel, ValidationError

from archive_core.models import EntityType
from archive_core.schemas import ENTITY_SCHEMAS, BaseEntity, EdgeDocument

ENTITY_TYPES = tuple(member.value for member in EntityType)

ERROR_KIND_MALFORMED = "malformed"
ERROR_KIND_UNKNOWN_TYPE = "unknown_type"
ERROR_KIND_SCHEMA = "schema"


@dataclass(frozen=True)
class ValidationOutcome:
    success: bool
    data: Optional[dict] = None
    errors: tuple[str, ...] = ()
    error_kind: Optional[str] = None

    @staticmethod
    def ok(data: dict) -> "ValidationOutcome":
        return ValidationOutcome(success=True, data=data)

    @staticmethod
    def failure(errors: Sequence[str], kind: str) -> "ValidationOutcome":
        return ValidationOutcome(success=False, errors=tuple(errors), error_kind=kind)


@dataclass
class BatchValidationReport:
    total: int = 0
    valid: int = 0
    invalid: int = 0
    entity_errors: list[dict] = field(default_factory=list)
    edge_errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "entity_errors": self.entity_errors,
            "edge_errors": self.edge_errors,
        }


def format_errors(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error.get("loc", ())) or "(root)"
        messages.append(f"[{path}] {error.get('msg', 'Invalid value')}")
    return messages


def _run_schema(schema: type[BaseModel], document: dict) -> ValidationOutcome:
    try:
        model = schema.model_validate(document)
    except ValidationError as exc:
        return ValidationOutcome.failure(format_errors(exc), ERROR_KIND_SCHEMA)
    return ValidationOutcome.ok(model.model_dump(mode="json", by_alias=True, exclude_none=True))


def validate_entity(document: Any) -> ValidationOutcome:
    """Dispatch on ``type``; malformed input and unknown types fail before any schema runs."""
    if not isinstance(document, dict):
        return ValidationOutcome.failure(
            ["Entity data must be a non-null object"], ERROR_KIND_MALFORMED
        )
    entity_type = document.get("type")
    if not isinstance(entity_type, str):
        return ValidationOutcome.failure(
            ['Entity must have a "type" field of type string'], ERROR_KIND_MALFORMED
        )
    schema = ENTITY_SCHEMAS.get(entity_type)
    if schema is None:
        return ValidationOutcome.failure(
            [f'Unknown entity type: "{entity_type}". Valid types: {", ".join(ENTITY_TYPES)}'],
            ERROR_KIND_UNKNOWN_TYPE,
        )
    return _run_schema(schema, document)


def validate_base_entity(document: Any) -> ValidationOutcome:
    if not isinstance(document, dict):
        return ValidationOutcome.failure(
            ["Entity data must be a non-null object"], ERROR_KIND_MALFORMED
        )
    return _run_schema(BaseEntity, document)


def validate_edge(document: Any) -> ValidationOutcome:
    if not isinstance(document, dict):
        return ValidationOutcome.failure(
            ["Edge data must be a non-null object"], ERROR_KIND_MALFORMED
        )
    return _run_schema(EdgeDocument, document)


def _document_id(document: Any) -> str:
    if isinstance(document, dict) and isinstance(document.get("id"), str) and document["id"]:
        return document["id"]
    return "unknown"


def validate_batch(entities: Sequence[Any], edges: Sequence[Any]) -> BatchValidationReport:
    report = BatchValidationReport(total=len(entities) + len(edges))
    for document in entities:
        outcome = validate_entity(document)
        if outcome.success:
            report.valid += 1
        else:
            report.invalid += 1
            report.entity_errors.append({"id": _document_id(document), "errors": list(outcome.errors)})
    for document in edges:
        outcome = validate_edge(document)
        if outcome.success:
            report.valid += 1
        else:
            report.invalid += 1
            report.edge_errors.append({"id": _document_id(document), "errors": list(outcome.errors)})
    return report


def _looks_like_edge(document: Any) -> bool:
    return isinstance(document, dict) and ("edge_type" in document or "from_id" in document)


def validate_content_dir(content_dir: Path | str) -> dict:
    """Validate every JSON file under ``content_dir``; arrays are edge lists."""
    root = Path(content_dir)
    report = {"total": 0, "valid": 0, "invalid": 0, "errors": []}
    for path in sorted(root.rglob("*.json")):
        relative = str(path.relative_to(root))
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            report["total"] += 1
            report["invalid"] += 1
            report["errors"].append({"file": relative, "errors": [f"Failed to parse: {exc}"]})
            continue

        if isinstance(data, list):
            file_errors = []
            for index, item in enumerate(data):
                report["total"] += 1
                outcome = validate_edge(item)
                if outcome.success:
                    report["valid"] += 1
                else:
                    report["invalid"] += 1
                    file_errors.extend(f"[{index}] {message}" for message in outcome.errors)
            if file_errors:
                report["errors"].append({"file": relative, "errors": file_errors})
            continue

        report["total"] += 1
        outcome = validate_edge(data) if _looks_like_edge(data) else validate_entity(data)
        if outcome.success:
            report["valid"] += 1
        else:
            report["invalid"] += 1
            report["errors"].append({"file": relative, "errors": list(outcome.errors)})
    return report


def check_edge_integrity(entity_ids: set[str], edges: Sequence[dict]) -> list[str]:
    issues = []
    for edge in edges:
        if edge["from_id"] not in entity_ids:
            issues.append(
                f'Edge "{edge["id"]}": from_id "{edge["from_id"]}" references non-existent entity'
            )
        if edge["to_id"] not in entity_ids:
            issues.append(
                f'Edge "{edge["id"]}": to_id "{edge["to_id"]}" references non-existent entity'
            )
    return issues


def check_entity_cross_references(entity_ids: set[str], entity: dict) -> list[str]:
    """Links, project advisor/institution/artifacts and publication projects must resolve."""
    issues = []
    entity_id = entity.get("id")
    for link in entity.get("links") or []:
        if isinstance(link, str) and link and link not in entity_ids:
            issues.append(f'Entity "{entity_id}": link "{link}" references non-existent entity')

    entity_type = entity.get("type")
    if entity_type == EntityType.project.value:
        for key in ("advisor_id", "institution_id"):
            ref = entity.get(key)
            if ref and ref not in entity_ids:
                issues.append(
                    f'Project "{entity_id}": {key} "{ref}" references non-existent entity'
                )
        artifacts = entity.get("artifacts") or {}
        for category in ("repos", "datasets", "experiments", "publications", "notes"):
            for ref in artifacts.get(category) or []:
                if ref not in entity_ids:
                    issues.append(
                        f'Project "{entity_id}": artifacts.{category} references non-existent entity "{ref}"'
                    )
    elif entity_type == EntityType.publication.value:
        for ref in entity.get("associated_projects") or []:
            if ref not in entity_ids:
                issues.append(
                    f'Publication "{entity_id}": associated_projects references non-existent entity "{ref}"'
                )
    return issues
