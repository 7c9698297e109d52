"""
Document source reader: entity JSON files, the edge list and bilingual MDX bodies.

Layout under the content root:
    entities/<plural-dir>/<id>.json   one entity document per file
    entities/edges.json               JSON array of edge documents
    docs/<id>.<locale>.mdx            body text per (entity, locale)

Nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import json
from pathlib import Path
import re
from typing import Any, Iterator, Optional

import archive_core.config as config
from archive_core.errors import MalformedDocumentError

LOCALES = ("en", "zh-Hans")

ENTITIES_DIR = "entities"
DOCS_DIR = "docs"
EDGES_FILE = "edges.json"

TYPE_DIRECTORIES = {
    "project": "projects",
    "publication": "publications",
    "experiment": "experiments",
    "dataset": "datasets",
    "model": "models",
    "repo": "repos",
    "note": "notes",
    "lit_review": "lit-reviews",
    "meeting": "meetings",
    "idea": "ideas",
    "skill": "skills",
    "method": "methods",
    "material_system": "materials",
    "metric": "metrics",
    "collaborator": "collaborators",
    "institution": "institutions",
    "media": "media",
}

_DIRECTORY_TYPES = {directory: entity_type for entity_type, directory in TYPE_DIRECTORIES.items()}

_FRONT_MATTER_RE = re.compile(r"^---[\s\S]*?---\n?")
_WIKI_LINK_RE = re.compile(r"\[\[([^\]]+)\]\]")

# Bilingual fields beyond title/summary, per type
BILINGUAL_TYPE_FIELDS = {
    "project": ("problem_statement", "contributions", "headline", "impact_story", "highlights"),
    "publication": ("venue", "abstract"),
    "experiment": ("hypothesis", "protocol"),
    "dataset": ("description",),
    "model": ("architecture",),
    "idea": ("problem", "proposed_approach"),
    "lit_review": ("scope", "synthesis", "takeaways"),
    "meeting": ("agenda", "notes_content"),
    "skill": ("name",),
    "method": ("name", "description"),
    "material_system": ("name",),
    "metric": ("name", "definition"),
}
BILINGUAL_BASE_FIELDS = ("title", "summary")


@dataclass(frozen=True)
class SourceDocument:
    path: Path
    raw_text: str
    data: Any
    checksum: str


@dataclass(frozen=True)
class WikiLink:
    entity_id: str
    offset: int
    display_text: Optional[str] = None


def content_root(content_dir: Path | str | None = None) -> Path:
    return Path(content_dir if content_dir is not None else config.CONTENT_REPO_PATH)


def directory_entity_type(directory_name: str) -> str:
    """Map a plural directory name back to its entity type (unknown names pass through)."""
    return _DIRECTORY_TYPES.get(directory_name, directory_name)


def entity_file_path(entity_id: str, entity_type: str, content_dir: Path | str | None = None) -> Path:
    directory = TYPE_DIRECTORIES.get(entity_type)
    if directory is None:
        raise ValueError(f"Unknown entity type: {entity_type}")
    return content_root(content_dir) / ENTITIES_DIR / directory / f"{entity_id}.json"


def body_file_path(entity_id: str, locale: str, content_dir: Path | str | None = None) -> Path:
    return content_root(content_dir) / DOCS_DIR / f"{entity_id}.{locale}.mdx"


def edges_file_path(content_dir: Path | str | None = None) -> Path:
    return content_root(content_dir) / ENTITIES_DIR / EDGES_FILE


def compute_checksum(raw: bytes | str) -> str:
    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def iter_entity_files(content_dir: Path | str | None = None) -> Iterator[Path]:
    """Yield every entity document under entities/<dir>/, sorted for stable runs."""
    entities_dir = content_root(content_dir) / ENTITIES_DIR
    if not entities_dir.is_dir():
        return
    for type_dir in sorted(p for p in entities_dir.iterdir() if p.is_dir()):
        for path in sorted(type_dir.glob("*.json")):
            if path.is_file():
                yield path


def _read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise MalformedDocumentError(f"Cannot read {path}: {exc}", path=str(path)) from exc


def _decode(raw: bytes, path: Path) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedDocumentError(f"Cannot read {path}: {exc}", path=str(path)) from exc


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedDocumentError(f"Cannot read {path}: {exc}", path=str(path)) from exc


def _parse_json(raw_text: str, path: Path) -> Any:
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise MalformedDocumentError(f"Invalid JSON in {path}: {exc}", path=str(path)) from exc


def read_entity_document(path: Path | str) -> SourceDocument:
    """Read one entity file; the checksum covers the bytes exactly as stored, line endings included."""
    path = Path(path)
    raw = _read_bytes(path)
    raw_text = _decode(raw, path)
    data = _parse_json(raw_text, path)
    return SourceDocument(path=path, raw_text=raw_text, data=data, checksum=compute_checksum(raw))


def read_edge_documents(content_dir: Path | str | None = None) -> list[Any]:
    path = edges_file_path(content_dir)
    if not path.exists():
        return []
    data = _parse_json(_read_text(path), path)
    if not isinstance(data, list):
        raise MalformedDocumentError(f"{path} must contain a JSON array", path=str(path))
    return data


def strip_front_matter(raw: str) -> str:
    return _FRONT_MATTER_RE.sub("", raw, count=1).strip()


def load_body(entity_id: str, locale: str, content_dir: Path | str | None = None) -> str:
    """Body text for (entity, locale); a missing file is an empty body."""
    path = body_file_path(entity_id, locale, content_dir)
    if not path.exists():
        return ""
    return strip_front_matter(_read_text(path))


def load_bodies(entity_id: str, content_dir: Path | str | None = None) -> dict[str, str]:
    return {locale: load_body(entity_id, locale, content_dir) for locale in LOCALES}


def extract_wiki_links(text: str) -> list[WikiLink]:
    """Find [[entity-id]] and [[entity-id|display text]] references."""
    links = []
    for match in _WIKI_LINK_RE.finditer(text):
        inner = match.group(1)
        target, sep, display = inner.partition("|")
        target = target.strip()
        if not target:
            continue
        links.append(
            WikiLink(
                entity_id=target,
                offset=match.start(),
                display_text=display.strip() if sep else None,
            )
        )
    return links


def find_backlinks(entity_id: str, content_dir: Path | str | None = None) -> list[str]:
    """Ids of entities whose bodies link to ``entity_id``."""
    docs_dir = content_root(content_dir) / DOCS_DIR
    if not docs_dir.is_dir():
        return []
    sources = set()
    for path in sorted(docs_dir.glob("*.mdx")):
        # <entity-id>.<locale>.mdx
        parts = path.name.split(".")
        if len(parts) < 3:
            continue
        source_id = ".".join(parts[:-2])
        for link in extract_wiki_links(_read_text(path)):
            if link.entity_id == entity_id:
                sources.add(source_id)
                break
    return sorted(sources)


def _filled(value: Any, key: str) -> bool:
    return isinstance(value, dict) and isinstance(value.get(key), str) and bool(value[key].strip())


def compute_locale_completeness(entity: dict, content_dir: Path | str | None = None) -> dict:
    """Share of bilingual fields (plus the body) filled per locale, rounded to 2 places."""
    fields = BILINGUAL_BASE_FIELDS + BILINGUAL_TYPE_FIELDS.get(entity.get("type"), ())
    en_filled = sum(1 for field in fields if _filled(entity.get(field), "en"))
    zh_filled = sum(1 for field in fields if _filled(entity.get(field), "zh-Hans"))
    total = len(fields)

    entity_id = entity.get("id")
    if isinstance(entity_id, str) and entity_id:
        total += 1
        if load_body(entity_id, "en", content_dir):
            en_filled += 1
        if load_body(entity_id, "zh-Hans", content_dir):
            zh_filled += 1

    return {
        "en": round(en_filled / total, 2),
        "zh-Hans": round(zh_filled / total, 2),
    }
