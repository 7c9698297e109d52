import copy
import json
import os
from pathlib import Path

import pytest

os.environ.setdefault("ARCHIVE_AUDIT_ENABLED", "true")
os.environ.setdefault("AUTO_MIGRATE_ON_STARTUP", "false")

from sqlalchemy.orm import sessionmaker

from archive_core.db import DB, build_engine
from archive_core.models import Base
from archive_core.services.documents import DOCS_DIR, EDGES_FILE, ENTITIES_DIR, TYPE_DIRECTORIES


def _bilingual(text: str) -> dict:
    return {"en": text, "zh-Hans": f"{text} 中文"}


TYPE_PAYLOADS = {
    "project": lambda entity_id: {
        "project_kind": "thesis",
        "research_area": "battery materials",
        "problem_statement": _bilingual("Why cathodes crack"),
        "contributions": _bilingual("A crack model"),
        "methods": [],
        "material_systems": [],
        "key_results": [{"metric": "capacity", "value": 170, "unit": "mAh/g"}],
        "timeline": {"start_date": "2023-09-01"},
        "artifacts": {
            "repos": [],
            "datasets": [],
            "experiments": [],
            "publications": [],
            "notes": [],
        },
    },
    "skill": lambda entity_id: {
        "name": _bilingual("Electron microscopy"),
        "category": "lab",
        "proficiency": "expert",
        "evidence_links": [],
    },
    "method": lambda entity_id: {
        "name": _bilingual("Phase field"),
        "domain": "simulation",
        "description": _bilingual("Diffuse interface modelling"),
        "canonical_refs": [],
    },
    "metric": lambda entity_id: {
        "name": _bilingual("Capacity retention"),
        "definition": _bilingual("Share of capacity kept after cycling"),
        "unit": "%",
        "higher_is_better": True,
        "references": [],
    },
    "material_system": lambda entity_id: {
        "name": _bilingual("LFP"),
        "composition": "LiFePO4",
        "structure_type": "olivine",
        "domain_tags": [],
    },
    "institution": lambda entity_id: {
        "name": "Materials Lab",
        "location": "Shanghai",
    },
    "note": lambda entity_id: {
        "note_type": "howto",
        "body_mdx_id": entity_id,
        "related_entities": [],
    },
    "media": lambda entity_id: {
        "media_type": "image",
        "source_path": f"media/{entity_id}.png",
        "checksum": "0" * 64,
        "size_bytes": 2048,
    },
}


def build_document(
    entity_id: str,
    entity_type: str = "skill",
    *,
    title: str | None = None,
    visibility: str = "public",
    status: str = "active",
    tags: list | None = None,
    created_at: str = "2024-01-01T00:00:00Z",
    **overrides,
) -> dict:
    title = title or f"Entity {entity_id}"
    document = {
        "id": entity_id,
        "type": entity_type,
        "title": _bilingual(title),
        "summary": _bilingual(f"Summary of {title}"),
        "created_at": created_at,
        "updated_at": created_at,
        "status": status,
        "visibility": visibility,
        "tags": list(tags or []),
        "links": [],
        "authorship": {"owner_role": "pi", "contributors": []},
        "source_of_truth": {"kind": "file", "pointer": f"entities/{entity_id}.json"},
    }
    document.update(TYPE_PAYLOADS[entity_type](entity_id))
    document.update(overrides)
    return document


def build_edge(edge_id: str, from_id: str, to_id: str, edge_type: str = "related_to", **overrides) -> dict:
    edge = {
        "id": edge_id,
        "from_id": from_id,
        "to_id": to_id,
        "edge_type": edge_type,
        "created_at": "2024-01-02T00:00:00Z",
    }
    edge.update(overrides)
    return edge


class ContentRepo:
    """Writes a document tree (entities/, docs/) under a temporary root."""

    def __init__(self, root: Path):
        self.root = root
        (root / ENTITIES_DIR).mkdir(parents=True, exist_ok=True)
        (root / DOCS_DIR).mkdir(parents=True, exist_ok=True)

    def entity_path(self, document: dict) -> Path:
        directory = TYPE_DIRECTORIES[document["type"]]
        return self.root / ENTITIES_DIR / directory / f"{document['id']}.json"

    def write_entity(self, document: dict) -> Path:
        path = self.entity_path(document)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    def write_raw(self, directory: str, name: str, text: str) -> Path:
        path = self.root / ENTITIES_DIR / directory / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def write_edges(self, edges: list) -> Path:
        path = self.root / ENTITIES_DIR / EDGES_FILE
        path.write_text(json.dumps(edges, indent=2), encoding="utf-8")
        return path

    def write_body(self, entity_id: str, locale: str, text: str) -> Path:
        path = self.root / DOCS_DIR / f"{entity_id}.{locale}.mdx"
        path.write_text(text, encoding="utf-8")
        return path


@pytest.fixture
def make_document():
    def _make(*args, **kwargs):
        return copy.deepcopy(build_document(*args, **kwargs))
    return _make


@pytest.fixture
def make_edge():
    return build_edge


@pytest.fixture
def content_repo(tmp_path):
    return ContentRepo(tmp_path / "content")


@pytest.fixture
def archive_db(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'archive.sqlite'}")
    Base.metadata.create_all(engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine)
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(archive_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
