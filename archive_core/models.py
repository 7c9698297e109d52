"""
Research archive database models
SQLite schema: shared entity table + one extension table per type + FTS5 index
"""

from datetime import datetime
from enum import Enum as PyEnum
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean,
    DateTime, ForeignKey, CheckConstraint, Index, JSON, DDL, event
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid_default() -> str:
    return str(uuid.uuid4())

# =============================================================================
# Enums
# =============================================================================

class EntityType(str, PyEnum):
    project = "project"
    publication = "publication"
    experiment = "experiment"
    dataset = "dataset"
    model = "model"
    repo = "repo"
    note = "note"
    lit_review = "lit_review"
    meeting = "meeting"
    idea = "idea"
    skill = "skill"
    method = "method"
    material_system = "material_system"
    metric = "metric"
    collaborator = "collaborator"
    institution = "institution"
    media = "media"


class Status(str, PyEnum):
    active = "active"
    paused = "paused"
    completed = "completed"
    archived = "archived"


class Visibility(str, PyEnum):
    private = "private"
    unlisted = "unlisted"
    public = "public"


class EdgeType(str, PyEnum):
    project_contains = "project_contains"
    produced = "produced"
    evaluated_on = "evaluated_on"
    cites = "cites"
    derived_from = "derived_from"
    implements = "implements"
    collaborates_with = "collaborates_with"
    related_to = "related_to"
    supersedes = "supersedes"


class SourceKind(str, PyEnum):
    file = "file"
    db = "db"
    external = "external"


class IssueType(str, PyEnum):
    schema_violation = "schema-violation"
    broken_link = "broken-link"


def _in_clause(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


# =============================================================================
# Entities (shared base columns for all 17 types)
# =============================================================================

class Entity(Base):
    __tablename__ = "entities"

    id = Column(String(200), primary_key=True)
    type = Column(String(50), nullable=False)
    title_en = Column(Text, nullable=False, default="")
    title_zh = Column(Text, nullable=False, default="")
    summary_en = Column(Text, nullable=False, default="")
    summary_zh = Column(Text, nullable=False, default="")
    body_en = Column(Text, nullable=False, default="")
    body_zh = Column(Text, nullable=False, default="")
    slug = Column(String(255))
    status = Column(String(20), nullable=False, default=Status.active.value)
    visibility = Column(String(20), nullable=False, default=Visibility.private.value)
    cover_media_id = Column(String(200))
    checksum = Column(String(64))  # sha256 of the source document
    source_of_truth_kind = Column(String(20))
    source_of_truth_pointer = Column(Text)
    owner_role = Column(String(100))
    raw_metadata = Column(JSON)  # full validated document
    created_at = Column(String(40), nullable=False)
    updated_at = Column(String(40), nullable=False)

    __table_args__ = (
        CheckConstraint(_in_clause("type", EntityType), name="ck_entities_type"),
        CheckConstraint(_in_clause("status", Status), name="ck_entities_status"),
        CheckConstraint(_in_clause("visibility", Visibility), name="ck_entities_visibility"),
        Index("ix_entities_type", "type"),
        Index("ix_entities_status", "status"),
        Index("ix_entities_visibility", "visibility"),
        Index("ix_entities_created_at", "created_at"),
    )


def _entity_fk():
    return Column(
        String(200),
        ForeignKey("entities.id", ondelete="CASCADE"),
        primary_key=True,
    )


# =============================================================================
# Extension tables (one per entity type, keyed by entity id)
# =============================================================================

class Project(Base):
    __tablename__ = "projects"

    entity_id = _entity_fk()
    project_kind = Column(String(100))
    research_area = Column(String(255))
    problem_statement_en = Column(Text)
    problem_statement_zh = Column(Text)
    contributions_en = Column(Text)
    contributions_zh = Column(Text)
    start_date = Column(String(40))
    end_date = Column(String(40))
    advisor_id = Column(String(200))
    institution_id = Column(String(200))
    headline_en = Column(Text)
    headline_zh = Column(Text)
    impact_story_en = Column(Text)
    impact_story_zh = Column(Text)


class Publication(Base):
    __tablename__ = "publications"

    entity_id = _entity_fk()
    publication_type = Column(String(100))
    venue_en = Column(Text)
    venue_zh = Column(Text)
    pub_date = Column(String(40))
    abstract_en = Column(Text)
    abstract_zh = Column(Text)
    doi = Column(String(255))
    arxiv = Column(String(100))
    bibtex = Column(Text)
    peer_review_status = Column(String(100))


class Experiment(Base):
    __tablename__ = "experiments"

    entity_id = _entity_fk()
    experiment_type = Column(String(100))
    hypothesis_en = Column(Text)
    hypothesis_zh = Column(Text)
    protocol_en = Column(Text)
    protocol_zh = Column(Text)
    reproducibility = Column(JSON)


class Dataset(Base):
    __tablename__ = "datasets"

    entity_id = _entity_fk()
    dataset_kind = Column(String(100))
    description_en = Column(Text)
    description_zh = Column(Text)
    schema_def = Column(JSON)
    license = Column(String(100))
    provenance = Column(JSON)
    storage_location = Column(Text)
    storage_format = Column(String(100))
    storage_size = Column(Integer)
    storage_checksum = Column(String(128))


class MLModel(Base):
    __tablename__ = "models"

    entity_id = _entity_fk()
    model_kind = Column(String(100))
    task = Column(String(255))
    architecture_en = Column(Text)
    architecture_zh = Column(Text)
    model_artifacts = Column(JSON)


class CodeRepo(Base):
    __tablename__ = "repos"

    entity_id = _entity_fk()
    repo_kind = Column(String(100))
    remote_url = Column(Text)
    local_path = Column(Text)
    default_branch = Column(String(100))
    license = Column(String(100))


class TechnicalNote(Base):
    __tablename__ = "notes"

    entity_id = _entity_fk()
    note_type = Column(String(100))
    body_mdx_id = Column(String(200))
    canonicality = Column(String(100))


class LitReview(Base):
    __tablename__ = "lit_reviews"

    entity_id = _entity_fk()
    scope_en = Column(Text)
    scope_zh = Column(Text)
    synthesis_en = Column(Text)
    synthesis_zh = Column(Text)
    takeaways_en = Column(Text)
    takeaways_zh = Column(Text)


class MeetingLog(Base):
    __tablename__ = "meetings"

    entity_id = _entity_fk()
    date_time = Column(String(40))
    agenda_en = Column(Text)
    agenda_zh = Column(Text)
    notes_en = Column(Text)
    notes_zh = Column(Text)
    action_items = Column(JSON)


class IdeaEntry(Base):
    __tablename__ = "ideas"

    entity_id = _entity_fk()
    idea_kind = Column(String(100))
    problem_en = Column(Text)
    problem_zh = Column(Text)
    proposed_approach_en = Column(Text)
    proposed_approach_zh = Column(Text)
    expected_value = Column(JSON)
    idea_status = Column(String(100))


class Skill(Base):
    __tablename__ = "skills"

    entity_id = _entity_fk()
    category = Column(String(100))
    proficiency = Column(String(100))


class Method(Base):
    __tablename__ = "methods"

    entity_id = _entity_fk()
    domain = Column(String(255))
    description_en = Column(Text)
    description_zh = Column(Text)


class MaterialSystem(Base):
    __tablename__ = "material_systems"

    entity_id = _entity_fk()
    composition = Column(Text)
    structure_type = Column(String(255))


class Metric(Base):
    __tablename__ = "metrics"

    entity_id = _entity_fk()
    definition_en = Column(Text)
    definition_zh = Column(Text)
    unit = Column(String(100))
    higher_is_better = Column(Boolean)


class Collaborator(Base):
    __tablename__ = "collaborators"

    entity_id = _entity_fk()
    name = Column(String(255))
    role = Column(String(255))
    affiliation = Column(String(255))
    website = Column(Text)
    orcid = Column(String(100))


class Institution(Base):
    __tablename__ = "institutions"

    entity_id = _entity_fk()
    name = Column(String(255))
    location = Column(String(255))
    department = Column(String(255))
    website = Column(Text)


class MediaItem(Base):
    __tablename__ = "media_items"

    entity_id = _entity_fk()
    media_type = Column(String(100))
    source_path = Column(Text)
    checksum = Column(String(128))
    size_bytes = Column(Integer)
    preview_path = Column(Text)
    provenance_entity_id = Column(String(200))


EXTENSION_MODELS = {
    EntityType.project.value: Project,
    EntityType.publication.value: Publication,
    EntityType.experiment.value: Experiment,
    EntityType.dataset.value: Dataset,
    EntityType.model.value: MLModel,
    EntityType.repo.value: CodeRepo,
    EntityType.note.value: TechnicalNote,
    EntityType.lit_review.value: LitReview,
    EntityType.meeting.value: MeetingLog,
    EntityType.idea.value: IdeaEntry,
    EntityType.skill.value: Skill,
    EntityType.method.value: Method,
    EntityType.material_system.value: MaterialSystem,
    EntityType.metric.value: Metric,
    EntityType.collaborator.value: Collaborator,
    EntityType.institution.value: Institution,
    EntityType.media.value: MediaItem,
}


# =============================================================================
# Edges (typed, directed; endpoints are not foreign keys)
# =============================================================================

class Edge(Base):
    __tablename__ = "edges"

    id = Column(String(200), primary_key=True)
    from_id = Column(String(200), nullable=False)
    to_id = Column(String(200), nullable=False)
    edge_type = Column(String(50), nullable=False)
    label_en = Column(Text)
    label_zh = Column(Text)
    context_snippet = Column(Text)
    weight = Column(Float, nullable=False, default=1.0, server_default="1.0")
    created_at = Column(String(40), nullable=False)

    __table_args__ = (
        CheckConstraint(_in_clause("edge_type", EdgeType), name="ck_edges_edge_type"),
        Index("ix_edges_from_id", "from_id"),
        Index("ix_edges_to_id", "to_id"),
        Index("ix_edges_edge_type", "edge_type"),
    )


# =============================================================================
# Tags
# =============================================================================

class Tag(Base):
    __tablename__ = "tags"

    id = Column(String(200), primary_key=True)
    name_en = Column(String(255), nullable=False)
    name_zh = Column(String(255))
    category = Column(String(50), nullable=False, default="custom", server_default="custom")
    is_controlled = Column(Boolean, nullable=False, default=False, server_default="0")
    parent_id = Column(String(200), ForeignKey("tags.id", ondelete="SET NULL"))
    synonyms = Column(JSON)


class EntityTag(Base):
    __tablename__ = "entity_tags"

    entity_id = Column(
        String(200),
        ForeignKey("entities.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id = Column(
        String(200),
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    )

    __table_args__ = (
        Index("ix_entity_tags_tag_id", "tag_id"),
    )


# =============================================================================
# Media attachments (survive entity deletion with entity_id cleared)
# =============================================================================

class Media(Base):
    __tablename__ = "media"

    id = Column(String(200), primary_key=True)
    entity_id = Column(String(200), ForeignKey("entities.id", ondelete="SET NULL"))
    media_type = Column(String(100))
    source_path = Column(Text, nullable=False)
    checksum = Column(String(128))
    size_bytes = Column(Integer)
    preview_path = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_media_entity_id", "entity_id"),
    )


# =============================================================================
# Integrity issues (cleared and recomputed on every full ingestion pass)
# =============================================================================

class IntegrityIssue(Base):
    __tablename__ = "integrity_issues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(String(200))  # entity or edge id the issue names
    issue_type = Column(String(50), nullable=False)
    message = Column(Text, nullable=False)
    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime)

    __table_args__ = (
        Index("ix_integrity_issues_entity_id", "entity_id"),
        Index("ix_integrity_issues_issue_type", "issue_type"),
    )


# =============================================================================
# Curated views (shared read-only selections)
# =============================================================================

class CuratedView(Base):
    __tablename__ = "curated_views"

    id = Column(String(200), primary_key=True)
    name_en = Column(String(255), nullable=False)
    name_zh = Column(String(255))
    description = Column(Text)
    filter_config = Column(JSON)  # {"types": [...], "tags": [...], "statuses": [...]}
    entity_allowlist = Column(JSON)  # explicit entity ids
    access_token = Column(String(128))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_curated_views_access_token", "access_token", unique=True),
    )


# =============================================================================
# Audit Events (metadata-only)
# =============================================================================

class AuditEvent(Base):
    __tablename__ = "audit_events"

    event_id = Column(String(36), primary_key=True, default=_uuid_default)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1, nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    target_type = Column(String(50), nullable=False)
    target_ids = Column(JSON, nullable=False)
    count_affected = Column(Integer)
    reason = Column(Text)
    metadata_ = Column("metadata", JSON)

    __table_args__ = (
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type", "event_type"),
    )


# =============================================================================
# Full-text index (FTS5 virtual table, kept in lockstep with entities)
# =============================================================================

SEARCH_INDEX_COLUMNS = (
    "title_en",
    "title_zh",
    "summary_en",
    "summary_zh",
    "body_en",
    "body_zh",
    "tags_text",
)

SEARCH_INDEX_DDL = (
    "CREATE VIRTUAL TABLE IF NOT EXISTS search_index USING fts5("
    "id UNINDEXED, " + ", ".join(SEARCH_INDEX_COLUMNS) + ")"
)

event.listen(Entity.__table__, "after_create", DDL(SEARCH_INDEX_DDL))
event.listen(Entity.__table__, "before_drop", DDL("DROP TABLE IF EXISTS search_index"))
