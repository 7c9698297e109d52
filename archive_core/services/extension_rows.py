"""
Per-type extension rows: which document fields are promoted to which columns.

Every entity type has exactly one builder; the produced keys are checked
against the extension table's own column set before any write.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from archive_core.errors import UnknownEntityTypeError, ValidationIssue
from archive_core.models import EXTENSION_MODELS, EntityType


def _en(value: Any) -> Optional[str]:
    return value.get("en") if isinstance(value, dict) else None


def _zh(value: Any) -> Optional[str]:
    return value.get("zh-Hans") if isinstance(value, dict) else None


def _bilingual(document: dict, key: str, column: Optional[str] = None) -> dict:
    column = column or key
    value = document.get(key)
    return {f"{column}_en": _en(value), f"{column}_zh": _zh(value)}


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _nested(document: dict, key: str) -> dict:
    value = document.get(key)
    return value if isinstance(value, dict) else {}


def _project(doc: dict) -> dict:
    timeline = _nested(doc, "timeline")
    return {
        "project_kind": doc.get("project_kind"),
        "research_area": doc.get("research_area"),
        **_bilingual(doc, "problem_statement"),
        **_bilingual(doc, "contributions"),
        "start_date": timeline.get("start_date"),
        "end_date": timeline.get("end_date"),
        "advisor_id": doc.get("advisor_id"),
        "institution_id": doc.get("institution_id"),
        **_bilingual(doc, "headline"),
        **_bilingual(doc, "impact_story"),
    }


def _publication(doc: dict) -> dict:
    identifiers = _nested(doc, "identifiers")
    return {
        "publication_type": doc.get("publication_type"),
        **_bilingual(doc, "venue"),
        "pub_date": doc.get("date"),
        **_bilingual(doc, "abstract"),
        "doi": identifiers.get("doi"),
        "arxiv": identifiers.get("arxiv"),
        "bibtex": doc.get("bibtex"),
        "peer_review_status": doc.get("peer_review_status"),
    }


def _experiment(doc: dict) -> dict:
    return {
        "experiment_type": doc.get("experiment_type"),
        **_bilingual(doc, "hypothesis"),
        **_bilingual(doc, "protocol"),
        "reproducibility": doc.get("reproducibility"),
    }


def _dataset(doc: dict) -> dict:
    storage = _nested(doc, "storage")
    return {
        "dataset_kind": doc.get("dataset_kind"),
        **_bilingual(doc, "description"),
        "schema_def": doc.get("schema_def"),
        "license": doc.get("license"),
        "provenance": doc.get("provenance"),
        "storage_location": storage.get("location"),
        "storage_format": storage.get("format"),
        "storage_size": _int_or_none(storage.get("size_bytes")),
        "storage_checksum": storage.get("checksum"),
    }


def _model(doc: dict) -> dict:
    return {
        "model_kind": doc.get("model_kind"),
        "task": doc.get("task"),
        **_bilingual(doc, "architecture"),
        "model_artifacts": doc.get("model_artifacts"),
    }


def _repo(doc: dict) -> dict:
    return {
        "repo_kind": doc.get("repo_kind"),
        "remote_url": doc.get("remote_url"),
        "local_path": doc.get("local_path"),
        "default_branch": doc.get("default_branch"),
        "license": doc.get("license"),
    }


def _note(doc: dict) -> dict:
    return {
        "note_type": doc.get("note_type"),
        "body_mdx_id": doc.get("body_mdx_id"),
        "canonicality": doc.get("canonicality"),
    }


def _lit_review(doc: dict) -> dict:
    return {
        **_bilingual(doc, "scope"),
        **_bilingual(doc, "synthesis"),
        **_bilingual(doc, "takeaways"),
    }


def _meeting(doc: dict) -> dict:
    return {
        "date_time": doc.get("date_time"),
        **_bilingual(doc, "agenda"),
        **_bilingual(doc, "notes_content", column="notes"),
        "action_items": doc.get("action_items"),
    }


def _idea(doc: dict) -> dict:
    return {
        "idea_kind": doc.get("idea_kind"),
        **_bilingual(doc, "problem"),
        **_bilingual(doc, "proposed_approach"),
        "expected_value": doc.get("expected_value"),
        "idea_status": doc.get("idea_status"),
    }


def _skill(doc: dict) -> dict:
    return {"category": doc.get("category"), "proficiency": doc.get("proficiency")}


def _method(doc: dict) -> dict:
    return {"domain": doc.get("domain"), **_bilingual(doc, "description")}


def _material_system(doc: dict) -> dict:
    return {"composition": doc.get("composition"), "structure_type": doc.get("structure_type")}


def _metric(doc: dict) -> dict:
    return {
        **_bilingual(doc, "definition"),
        "unit": doc.get("unit"),
        "higher_is_better": doc.get("higher_is_better"),
    }


def _collaborator(doc: dict) -> dict:
    contact = _nested(doc, "contact_links")
    return {
        "name": doc.get("name"),
        "role": doc.get("role"),
        "affiliation": doc.get("affiliation"),
        "website": contact.get("website"),
        "orcid": contact.get("orcid"),
    }


def _institution(doc: dict) -> dict:
    return {
        "name": doc.get("name"),
        "location": doc.get("location"),
        "department": doc.get("department"),
        "website": doc.get("website"),
    }


def _media(doc: dict) -> dict:
    return {
        "media_type": doc.get("media_type"),
        "source_path": doc.get("source_path"),
        "checksum": doc.get("checksum"),
        "size_bytes": _int_or_none(doc.get("size_bytes")),
        "preview_path": doc.get("preview_path"),
        "provenance_entity_id": doc.get("provenance_entity_id"),
    }


EXTENSION_ROW_BUILDERS: dict[str, Callable[[dict], dict]] = {
    EntityType.project.value: _project,
    EntityType.publication.value: _publication,
    EntityType.experiment.value: _experiment,
    EntityType.dataset.value: _dataset,
    EntityType.model.value: _model,
    EntityType.repo.value: _repo,
    EntityType.note.value: _note,
    EntityType.lit_review.value: _lit_review,
    EntityType.meeting.value: _meeting,
    EntityType.idea.value: _idea,
    EntityType.skill.value: _skill,
    EntityType.method.value: _method,
    EntityType.material_system.value: _material_system,
    EntityType.metric.value: _metric,
    EntityType.collaborator.value: _collaborator,
    EntityType.institution.value: _institution,
    EntityType.media.value: _media,
}

_uncovered = {member.value for member in EntityType} - set(EXTENSION_ROW_BUILDERS)
if _uncovered:
    raise RuntimeError(f"Missing extension row builders for: {sorted(_uncovered)}")


def extension_columns(entity_type: str) -> frozenset[str]:
    model = EXTENSION_MODELS.get(entity_type)
    if model is None:
        raise UnknownEntityTypeError(entity_type)
    return frozenset(column.key for column in model.__table__.columns) - {"entity_id"}


def build_extension_row(entity_type: str, document: dict) -> tuple[type, dict]:
    """Return the extension model and its column values for a validated document."""
    builder = EXTENSION_ROW_BUILDERS.get(entity_type)
    if builder is None:
        raise UnknownEntityTypeError(entity_type)
    row = builder(document)
    allowed = extension_columns(entity_type)
    unexpected = sorted(set(row) - allowed)
    if unexpected:
        raise ValidationIssue(
            f"Columns not allowed on {entity_type} extension: {', '.join(unexpected)}",
            field="columns",
            error_type="not_whitelisted",
        )
    return EXTENSION_MODELS[entity_type], row
