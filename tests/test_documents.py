import os

import pytest

os.environ.setdefault("ARCHIVE_AUDIT_ENABLED", "true")

from archive_core.errors import MalformedDocumentError
from archive_core.services import documents


def test_checksum_is_sha256_of_raw_text():
    assert documents.compute_checksum("abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )


def test_iter_entity_files_is_sorted_and_skips_edges(content_repo, make_document, make_edge):
    content_repo.write_entity(make_document("b-skill"))
    content_repo.write_entity(make_document("a-skill"))
    content_repo.write_entity(make_document("m-1", "method"))
    content_repo.write_edges([make_edge("e-1", "a-skill", "b-skill")])
    content_repo.write_raw("skills", "README.md", "not an entity")

    names = [path.name for path in documents.iter_entity_files(content_repo.root)]
    assert names == ["m-1.json", "a-skill.json", "b-skill.json"]


def test_iter_entity_files_without_entities_dir(tmp_path):
    assert list(documents.iter_entity_files(tmp_path / "missing")) == []


def test_read_entity_document(content_repo, make_document):
    path = content_repo.write_entity(make_document("s-1"))
    source = documents.read_entity_document(path)
    assert source.data["id"] == "s-1"
    assert source.checksum == documents.compute_checksum(path.read_bytes())

    broken = content_repo.write_raw("skills", "broken.json", "{not json")
    with pytest.raises(MalformedDocumentError) as excinfo:
        documents.read_entity_document(broken)
    assert "Invalid JSON" in str(excinfo.value)
    assert excinfo.value.path == str(broken)


def test_checksum_covers_line_endings(content_repo, make_document):
    path = content_repo.write_entity(make_document("s-1"))
    unix_checksum = documents.read_entity_document(path).checksum

    path.write_bytes(path.read_bytes().replace(b"\n", b"\r\n"))
    source = documents.read_entity_document(path)

    assert source.data["id"] == "s-1"
    assert source.checksum == documents.compute_checksum(path.read_bytes())
    assert source.checksum != unix_checksum


def test_read_edge_documents(content_repo, make_edge, tmp_path):
    assert documents.read_edge_documents(tmp_path / "nowhere") == []

    content_repo.write_edges([make_edge("e-1", "a", "b")])
    assert [edge["id"] for edge in documents.read_edge_documents(content_repo.root)] == ["e-1"]

    content_repo.write_raw("", "edges.json", '{"id": "e-1"}')
    with pytest.raises(MalformedDocumentError):
        documents.read_edge_documents(content_repo.root)


def test_bodies_strip_front_matter(content_repo):
    content_repo.write_body("s-1", "en", "---\ntitle: ignored\n---\n# Heading\n\nText\n")
    bodies = documents.load_bodies("s-1", content_repo.root)
    assert bodies == {"en": "# Heading\n\nText", "zh-Hans": ""}


def test_wiki_links_and_backlinks(content_repo):
    links = documents.extract_wiki_links("See [[proj-1]] and [[method-1|the method]] but not [[ ]].")
    assert [(link.entity_id, link.display_text) for link in links] == [
        ("proj-1", None),
        ("method-1", "the method"),
    ]
    assert links[0].offset == 4

    content_repo.write_body("note-1", "en", "Builds on [[proj-1]].")
    content_repo.write_body("note-2", "zh-Hans", "参见 [[proj-1|项目]]")
    content_repo.write_body("note-3", "en", "Unrelated [[proj-9]]")
    assert documents.find_backlinks("proj-1", content_repo.root) == ["note-1", "note-2"]


def test_locale_completeness(content_repo, make_document):
    document = make_document("s-1")
    assert documents.compute_locale_completeness(document, content_repo.root) == {
        "en": 0.75,
        "zh-Hans": 0.75,
    }

    content_repo.write_body("s-1", "en", "Body")
    document["summary"] = {"en": "Only English", "zh-Hans": " "}
    assert documents.compute_locale_completeness(document, content_repo.root) == {
        "en": 1.0,
        "zh-Hans": 0.5,
    }


def test_directory_names_map_to_types(content_repo, make_document):
    assert documents.directory_entity_type("lit-reviews") == "lit_review"
    assert documents.directory_entity_type("materials") == "material_system"
    assert documents.directory_entity_type("skills") == "skill"

    path = documents.entity_file_path("ms-1", "material_system", content_repo.root)
    assert path == content_repo.root / "entities" / "materials" / "ms-1.json"
    with pytest.raises(ValueError):
        documents.entity_file_path("x", "spaceship", content_repo.root)
