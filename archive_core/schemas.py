"""
Pydantic document schemas for the 17 entity types and edges.

Each entity document is the shared base fields plus a type-specific payload;
``ENTITY_SCHEMAS`` picks the model from the document's ``type``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from archive_core.models import EdgeType, EntityType, SourceKind, Status, Visibility

Number = Union[int, float]


class DocumentModel(BaseModel):
    # Unknown keys are dropped from the normalized value (raw_metadata keeps the original).
    model_config = ConfigDict(extra="ignore", populate_by_name=True, protected_namespaces=())


# =============================================================================
# Shared blocks
# =============================================================================

class BilingualText(DocumentModel):
    en: str
    zh_hans: str = Field(alias="zh-Hans")


class LocaleCompleteness(DocumentModel):
    en: Number
    zh_hans: Number = Field(alias="zh-Hans")


class Authorship(DocumentModel):
    owner_role: str
    contributors: List[str]


class SourceOfTruth(DocumentModel):
    kind: SourceKind
    pointer: str


class ResultBlock(DocumentModel):
    metric: str
    value: Union[Number, str]
    unit: Optional[str] = None
    context: Optional[BilingualText] = None


class RunRecord(DocumentModel):
    run_id: str
    date: str
    parameters: Dict[str, Any]
    outputs: Dict[str, Any]
    notes: Optional[BilingualText] = None


class ReproducibilityInfo(DocumentModel):
    level: Literal["exact", "statistical", "qualitative", "not_tested"]
    environment: Optional[str] = None
    seed: Optional[Number] = None
    notes: Optional[BilingualText] = None


class EvalRecord(DocumentModel):
    dataset_id: str
    metrics: Dict[str, Union[Number, str]]
    date: str
    notes: Optional[BilingualText] = None


class ActionItem(DocumentModel):
    description: BilingualText
    assignee: Optional[str] = None
    due_date: Optional[str] = None
    done: StrictBool


class Timeline(DocumentModel):
    start_date: str
    end_date: Optional[str] = None


class Artifacts(DocumentModel):
    repos: List[str]
    datasets: List[str]
    experiments: List[str]
    publications: List[str]
    notes: List[str]


class Identifiers(DocumentModel):
    doi: Optional[str] = None
    arxiv: Optional[str] = None
    url: Optional[str] = None


class Provenance(DocumentModel):
    source: str
    transformations: List[str]


class Storage(DocumentModel):
    location: str
    format: str
    size_bytes: Number
    checksum: str


class ModelArtifacts(DocumentModel):
    weights_location: str
    checksum: str
    version: str


class ExpectedValue(DocumentModel):
    impact: Number
    novelty: Number
    feasibility: Number
    learning_value: Number


class ContactLinks(DocumentModel):
    website: Optional[str] = None
    orcid: Optional[str] = None


# =============================================================================
# Edge
# =============================================================================

class EdgeDocument(DocumentModel):
    id: str
    from_id: str
    to_id: str
    edge_type: EdgeType
    created_at: str
    label: Optional[BilingualText] = None
    context_snippet: Optional[str] = None
    weight: Optional[Number] = None


# =============================================================================
# Entities
# =============================================================================

class BaseEntity(DocumentModel):
    id: str
    type: EntityType
    title: BilingualText
    summary: BilingualText
    created_at: str
    updated_at: str
    status: Status
    visibility: Visibility
    tags: List[str]
    links: List[str]
    authorship: Authorship
    source_of_truth: SourceOfTruth
    slug: Optional[str] = None
    cover_media_id: Optional[str] = None
    attachments: Optional[List[str]] = None
    locale_completeness: Optional[LocaleCompleteness] = None
    checksum: Optional[str] = None
    citations: Optional[List[str]] = None
    confidentiality_note: Optional[BilingualText] = None
    review_notes: Optional[BilingualText] = None


class ResearchProject(BaseEntity):
    type: Literal["project"]
    project_kind: str
    research_area: str
    problem_statement: BilingualText
    contributions: BilingualText
    methods: List[str]
    material_systems: List[str]
    key_results: List[ResultBlock]
    timeline: Timeline
    artifacts: Artifacts
    advisor_id: Optional[str] = None
    institution_id: Optional[str] = None
    headline: Optional[BilingualText] = None
    impact_story: Optional[BilingualText] = None
    highlights: Optional[BilingualText] = None
    public_readme_mdx_id: Optional[str] = None


class PublicationDocument(BaseEntity):
    type: Literal["publication"]
    publication_type: str
    venue: BilingualText
    date: str
    authors: List[str]
    abstract: BilingualText
    identifiers: Identifiers
    associated_projects: List[str]
    bibtex: Optional[str] = None
    peer_review_status: Optional[str] = None


class ExperimentDocument(BaseEntity):
    type: Literal["experiment"]
    experiment_type: str
    hypothesis: BilingualText
    protocol: BilingualText
    inputs: List[str]
    outputs: List[str]
    run_registry: List[RunRecord]
    results: List[ResultBlock]
    reproducibility: ReproducibilityInfo


class DatasetDocument(BaseEntity):
    type: Literal["dataset"]
    dataset_kind: str
    description: BilingualText
    schema_def: Any = None
    license: str
    provenance: Provenance
    storage: Storage


class MLModelDocument(BaseEntity):
    type: Literal["model"]
    model_kind: str
    task: str
    architecture: BilingualText
    training_data: List[str]
    evaluation: List[EvalRecord]
    model_artifacts: ModelArtifacts


class CodeRepoDocument(BaseEntity):
    type: Literal["repo"]
    repo_kind: str
    remote_url: Optional[str] = None
    local_path: str
    default_branch: str
    license: str
    related_entities: List[str]


class TechnicalNoteDocument(BaseEntity):
    type: Literal["note"]
    note_type: str
    body_mdx_id: str
    related_entities: List[str]
    canonicality: Optional[str] = None


class LitReviewDocument(BaseEntity):
    type: Literal["lit_review"]
    scope: BilingualText
    papers: List[str]
    synthesis: BilingualText
    takeaways: BilingualText


class MeetingLogDocument(BaseEntity):
    type: Literal["meeting"]
    date_time: str
    attendees: List[str]
    agenda: BilingualText
    notes_content: BilingualText
    action_items: List[ActionItem]


class IdeaEntryDocument(BaseEntity):
    type: Literal["idea"]
    idea_kind: str
    problem: BilingualText
    proposed_approach: BilingualText
    expected_value: ExpectedValue
    dependencies: List[str]
    idea_status: str


class SkillDocument(BaseEntity):
    type: Literal["skill"]
    name: BilingualText
    category: str
    proficiency: str
    evidence_links: List[str]


class MethodDocument(BaseEntity):
    type: Literal["method"]
    name: BilingualText
    domain: str
    description: BilingualText
    canonical_refs: List[str]


class MaterialSystemDocument(BaseEntity):
    type: Literal["material_system"]
    name: BilingualText
    composition: str
    structure_type: str
    domain_tags: List[str]


class MetricDocument(BaseEntity):
    type: Literal["metric"]
    name: BilingualText
    definition: BilingualText
    unit: str
    higher_is_better: StrictBool
    references: List[str]


class CollaboratorDocument(BaseEntity):
    type: Literal["collaborator"]
    name: str
    role: str
    affiliation: str
    contact_links: Optional[ContactLinks] = None


class InstitutionDocument(BaseEntity):
    type: Literal["institution"]
    name: str
    location: str
    department: Optional[str] = None
    website: Optional[str] = None


class MediaItemDocument(BaseEntity):
    type: Literal["media"]
    media_type: str
    source_path: str
    checksum: str
    size_bytes: Number
    preview_path: Optional[str] = None
    provenance_entity_id: Optional[str] = None


ENTITY_SCHEMAS = {
    EntityType.project.value: ResearchProject,
    EntityType.publication.value: PublicationDocument,
    EntityType.experiment.value: ExperimentDocument,
    EntityType.dataset.value: DatasetDocument,
    EntityType.model.value: MLModelDocument,
    EntityType.repo.value: CodeRepoDocument,
    EntityType.note.value: TechnicalNoteDocument,
    EntityType.lit_review.value: LitReviewDocument,
    EntityType.meeting.value: MeetingLogDocument,
    EntityType.idea.value: IdeaEntryDocument,
    EntityType.skill.value: SkillDocument,
    EntityType.method.value: MethodDocument,
    EntityType.material_system.value: MaterialSystemDocument,
    EntityType.metric.value: MetricDocument,
    EntityType.collaborator.value: CollaboratorDocument,
    EntityType.institution.value: InstitutionDocument,
    EntityType.media.value: MediaItemDocument,
}
