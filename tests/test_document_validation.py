import os

import pytest

os.environ.setdefault("ARCHIVE_AUDIT_ENABLED", "true")

from pydantic import ValidationError

from archive_core.schemas import EdgeDocument
from archive_core.services import document_validation as validation


def test_valid_document_keeps_locale_keys(make_document):
    outcome = validation.validate_entity(make_document("s-1"))
    assert outcome.success
    assert outcome.data["title"] == {"en": "Entity s-1", "zh-Hans": "Entity s-1 中文"}
    assert outcome.errors == ()


def test_malformed_and_unknown_type(make_document):
    outcome = validation.validate_entity(None)
    assert outcome.error_kind == validation.ERROR_KIND_MALFORMED

    document = make_document("s-1")
    del document["type"]
    outcome = validation.validate_entity(document)
    assert outcome.error_kind == validation.ERROR_KIND_MALFORMED
    assert outcome.errors == ('Entity must have a "type" field of type string',)

    document["type"] = "spaceship"
    outcome = validation.validate_entity(document)
    assert outcome.error_kind == validation.ERROR_KIND_UNKNOWN_TYPE
    assert outcome.errors[0].startswith('Unknown entity type: "spaceship"')


def test_schema_errors_name_the_field(make_document):
    document = make_document("s-1")
    del document["title"]
    document["visibility"] = "secret"
    outcome = validation.validate_entity(document)
    assert outcome.error_kind == validation.ERROR_KIND_SCHEMA
    assert "[title] Field required" in outcome.errors
    assert any(error.startswith("[visibility]") for error in outcome.errors)


def test_strict_boolean_fields(make_document):
    assert validation.validate_entity(make_document("m-1", "metric")).success
    outcome = validation.validate_entity(make_document("m-1", "metric", higher_is_better="yes"))
    assert not outcome.success
    assert outcome.errors[0].startswith("[higher_is_better]")


def test_base_entity_validation_ignores_type_specific_fields(make_document):
    document = make_document("m-1", "metric")
    del document["definition"]
    assert not validation.validate_entity(document).success
    assert validation.validate_base_entity(document).success


def test_root_errors_are_labelled():
    with pytest.raises(ValidationError) as excinfo:
        EdgeDocument.model_validate([])
    messages = validation.format_errors(excinfo.value)
    assert messages[0].startswith("[(root)]")


def test_edge_validation(make_edge):
    assert validation.validate_edge(make_edge("e-1", "a", "b")).success
    assert validation.validate_edge(make_edge("e-1", "a", "b", weight=0.4)).success

    outcome = validation.validate_edge(make_edge("e-1", "a", "b", "likes"))
    assert outcome.errors[0].startswith("[edge_type]")
    assert validation.validate_edge("e-1").error_kind == validation.ERROR_KIND_MALFORMED


def test_validate_batch_counts(make_document, make_edge):
    broken = make_document("s-2")
    del broken["summary"]
    report = validation.validate_batch(
        [make_document("s-1"), broken, "junk"],
        [make_edge("e-1", "s-1", "s-2"), {"id": "e-2"}],
    ).to_dict()
    assert (report["total"], report["valid"], report["invalid"]) == (5, 2, 3)
    assert [error["id"] for error in report["entity_errors"]] == ["s-2", "unknown"]
    assert [error["id"] for error in report["edge_errors"]] == ["e-2"]


def test_validate_content_dir(content_repo, make_document, make_edge):
    content_repo.write_entity(make_document("s-1"))
    content_repo.write_entity(make_document("m-1", "method", status="finished"))
    content_repo.write_edges([make_edge("e-1", "s-1", "m-1"), make_edge("e-2", "s-1", "m-1", "likes")])
    content_repo.write_raw("skills", "broken.json", "[")

    report = validation.validate_content_dir(content_repo.root)
    assert (report["total"], report["valid"], report["invalid"]) == (5, 2, 3)
    by_file = {entry["file"]: entry["errors"] for entry in report["errors"]}
    assert by_file["entities/edges.json"][0].startswith("[1] [edge_type]")
    assert by_file["entities/methods/m-1.json"][0].startswith("[status]")
    assert by_file["entities/skills/broken.json"][0].startswith("Failed to parse:")


def test_edge_integrity_names_both_endpoints(make_edge):
    issues = validation.check_edge_integrity(
        {"a", "b"},
        [make_edge("e-1", "a", "b"), make_edge("e-2", "a", "x"), make_edge("e-3", "y", "z")],
    )
    assert issues == [
        'Edge "e-2": to_id "x" references non-existent entity',
        'Edge "e-3": from_id "y" references non-existent entity',
        'Edge "e-3": to_id "z" references non-existent entity',
    ]


def test_entity_cross_references(make_document):
    project = make_document("proj-1", "project", links=["s-1", "ghost"], advisor_id="prof-x")
    project["artifacts"]["datasets"] = ["ds-1"]
    issues = validation.check_entity_cross_references({"proj-1", "s-1"}, project)
    assert issues == [
        'Entity "proj-1": link "ghost" references non-existent entity',
        'Project "proj-1": advisor_id "prof-x" references non-existent entity',
        'Project "proj-1": artifacts.datasets references non-existent entity "ds-1"',
    ]
