"""Create the archive schema: entities, extension tables, edges, tags, media, integrity issues, curated views, search index.

Revision ID: 0001_archive_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_archive_schema"
down_revision = None
branch_labels = None
depends_on = None

ENTITY_TYPES = (
    "project", "publication", "experiment", "dataset", "model", "repo", "note",
    "lit_review", "meeting", "idea", "skill", "method", "material_system",
    "metric", "collaborator", "institution", "media",
)
STATUSES = ("active", "paused", "completed", "archived")
VISIBILITIES = ("private", "unlisted", "public")
EDGE_TYPES = (
    "project_contains", "produced", "evaluated_on", "cites", "derived_from",
    "implements", "collaborates_with", "related_to", "supersedes",
)

SEARCH_INDEX_DDL = (
    "CREATE VIRTUAL TABLE IF NOT EXISTS search_index USING fts5("
    "id UNINDEXED, title_en, title_zh, summary_en, summary_zh, body_en, body_zh, tags_text)"
)

EXTENSION_TABLES = (
    "projects", "publications", "experiments", "datasets", "models", "repos",
    "notes", "lit_reviews", "meetings", "ideas", "skills", "methods",
    "material_systems", "metrics", "collaborators", "institutions", "media_items",
)


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(value) for value in values)})"


def _entity_fk() -> sa.Column:
    return sa.Column(
        "entity_id",
        sa.String(length=200),
        sa.ForeignKey("entities.id", ondelete="CASCADE"),
        primary_key=True,
    )


def _bilingual(name: str) -> list:
    return [sa.Column(f"{name}_en", sa.Text()), sa.Column(f"{name}_zh", sa.Text())]


def upgrade() -> None:
    op.create_table(
        "entities",
        sa.Column("id", sa.String(length=200), primary_key=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title_en", sa.Text(), nullable=False, server_default=""),
        sa.Column("title_zh", sa.Text(), nullable=False, server_default=""),
        sa.Column("summary_en", sa.Text(), nullable=False, server_default=""),
        sa.Column("summary_zh", sa.Text(), nullable=False, server_default=""),
        sa.Column("body_en", sa.Text(), nullable=False, server_default=""),
        sa.Column("body_zh", sa.Text(), nullable=False, server_default=""),
        sa.Column("slug", sa.String(length=255)),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("visibility", sa.String(length=20), nullable=False, server_default="private"),
        sa.Column("cover_media_id", sa.String(length=200)),
        sa.Column("checksum", sa.String(length=64)),
        sa.Column("source_of_truth_kind", sa.String(length=20)),
        sa.Column("source_of_truth_pointer", sa.Text()),
        sa.Column("owner_role", sa.String(length=100)),
        sa.Column("raw_metadata", sa.JSON()),
        sa.Column("created_at", sa.String(length=40), nullable=False),
        sa.Column("updated_at", sa.String(length=40), nullable=False),
        sa.CheckConstraint(_in("type", ENTITY_TYPES), name="ck_entities_type"),
        sa.CheckConstraint(_in("status", STATUSES), name="ck_entities_status"),
        sa.CheckConstraint(_in("visibility", VISIBILITIES), name="ck_entities_visibility"),
    )
    op.create_index("ix_entities_type", "entities", ["type"])
    op.create_index("ix_entities_status", "entities", ["status"])
    op.create_index("ix_entities_visibility", "entities", ["visibility"])
    op.create_index("ix_entities_created_at", "entities", ["created_at"])

    op.create_table(
        "projects",
        _entity_fk(),
        sa.Column("project_kind", sa.String(length=100)),
        sa.Column("research_area", sa.String(length=255)),
        *_bilingual("problem_statement"),
        *_bilingual("contributions"),
        sa.Column("start_date", sa.String(length=40)),
        sa.Column("end_date", sa.String(length=40)),
        sa.Column("advisor_id", sa.String(length=200)),
        sa.Column("institution_id", sa.String(length=200)),
        *_bilingual("headline"),
        *_bilingual("impact_story"),
    )
    op.create_table(
        "publications",
        _entity_fk(),
        sa.Column("publication_type", sa.String(length=100)),
        *_bilingual("venue"),
        sa.Column("pub_date", sa.String(length=40)),
        *_bilingual("abstract"),
        sa.Column("doi", sa.String(length=255)),
        sa.Column("arxiv", sa.String(length=100)),
        sa.Column("bibtex", sa.Text()),
        sa.Column("peer_review_status", sa.String(length=100)),
    )
    op.create_table(
        "experiments",
        _entity_fk(),
        sa.Column("experiment_type", sa.String(length=100)),
        *_bilingual("hypothesis"),
        *_bilingual("protocol"),
        sa.Column("reproducibility", sa.JSON()),
    )
    op.create_table(
        "datasets",
        _entity_fk(),
        sa.Column("dataset_kind", sa.String(length=100)),
        *_bilingual("description"),
        sa.Column("schema_def", sa.JSON()),
        sa.Column("license", sa.String(length=100)),
        sa.Column("provenance", sa.JSON()),
        sa.Column("storage_location", sa.Text()),
        sa.Column("storage_format", sa.String(length=100)),
        sa.Column("storage_size", sa.Integer()),
        sa.Column("storage_checksum", sa.String(length=128)),
    )
    op.create_table(
        "models",
        _entity_fk(),
        sa.Column("model_kind", sa.String(length=100)),
        sa.Column("task", sa.String(length=255)),
        *_bilingual("architecture"),
        sa.Column("model_artifacts", sa.JSON()),
    )
    op.create_table(
        "repos",
        _entity_fk(),
        sa.Column("repo_kind", sa.String(length=100)),
        sa.Column("remote_url", sa.Text()),
        sa.Column("local_path", sa.Text()),
        sa.Column("default_branch", sa.String(length=100)),
        sa.Column("license", sa.String(length=100)),
    )
    op.create_table(
        "notes",
        _entity_fk(),
        sa.Column("note_type", sa.String(length=100)),
        sa.Column("body_mdx_id", sa.String(length=200)),
        sa.Column("canonicality", sa.String(length=100)),
    )
    op.create_table(
        "lit_reviews",
        _entity_fk(),
        *_bilingual("scope"),
        *_bilingual("synthesis"),
        *_bilingual("takeaways"),
    )
    op.create_table(
        "meetings",
        _entity_fk(),
        sa.Column("date_time", sa.String(length=40)),
        *_bilingual("agenda"),
        *_bilingual("notes"),
        sa.Column("action_items", sa.JSON()),
    )
    op.create_table(
        "ideas",
        _entity_fk(),
        sa.Column("idea_kind", sa.String(length=100)),
        *_bilingual("problem"),
        *_bilingual("proposed_approach"),
        sa.Column("expected_value", sa.JSON()),
        sa.Column("idea_status", sa.String(length=100)),
    )
    op.create_table(
        "skills",
        _entity_fk(),
        sa.Column("category", sa.String(length=100)),
        sa.Column("proficiency", sa.String(length=100)),
    )
    op.create_table(
        "methods",
        _entity_fk(),
        sa.Column("domain", sa.String(length=255)),
        *_bilingual("description"),
    )
    op.create_table(
        "material_systems",
        _entity_fk(),
        sa.Column("composition", sa.Text()),
        sa.Column("structure_type", sa.String(length=255)),
    )
    op.create_table(
        "metrics",
        _entity_fk(),
        *_bilingual("definition"),
        sa.Column("unit", sa.String(length=100)),
        sa.Column("higher_is_better", sa.Boolean()),
    )
    op.create_table(
        "collaborators",
        _entity_fk(),
        sa.Column("name", sa.String(length=255)),
        sa.Column("role", sa.String(length=255)),
        sa.Column("affiliation", sa.String(length=255)),
        sa.Column("website", sa.Text()),
        sa.Column("orcid", sa.String(length=100)),
    )
    op.create_table(
        "institutions",
        _entity_fk(),
        sa.Column("name", sa.String(length=255)),
        sa.Column("location", sa.String(length=255)),
        sa.Column("department", sa.String(length=255)),
        sa.Column("website", sa.Text()),
    )
    op.create_table(
        "media_items",
        _entity_fk(),
        sa.Column("media_type", sa.String(length=100)),
        sa.Column("source_path", sa.Text()),
        sa.Column("checksum", sa.String(length=128)),
        sa.Column("size_bytes", sa.Integer()),
        sa.Column("preview_path", sa.Text()),
        sa.Column("provenance_entity_id", sa.String(length=200)),
    )

    op.create_table(
        "edges",
        sa.Column("id", sa.String(length=200), primary_key=True),
        sa.Column("from_id", sa.String(length=200), nullable=False),
        sa.Column("to_id", sa.String(length=200), nullable=False),
        sa.Column("edge_type", sa.String(length=50), nullable=False),
        *_bilingual("label"),
        sa.Column("context_snippet", sa.Text()),
        sa.Column("weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("created_at", sa.String(length=40), nullable=False),
        sa.CheckConstraint(_in("edge_type", EDGE_TYPES), name="ck_edges_edge_type"),
    )
    op.create_index("ix_edges_from_id", "edges", ["from_id"])
    op.create_index("ix_edges_to_id", "edges", ["to_id"])
    op.create_index("ix_edges_edge_type", "edges", ["edge_type"])

    op.create_table(
        "tags",
        sa.Column("id", sa.String(length=200), primary_key=True),
        sa.Column("name_en", sa.String(length=255), nullable=False),
        sa.Column("name_zh", sa.String(length=255)),
        sa.Column("category", sa.String(length=50), nullable=False, server_default="custom"),
        sa.Column("is_controlled", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column(
            "parent_id",
            sa.String(length=200),
            sa.ForeignKey("tags.id", ondelete="SET NULL"),
        ),
        sa.Column("synonyms", sa.JSON()),
    )
    op.create_table(
        "entity_tags",
        sa.Column(
            "entity_id",
            sa.String(length=200),
            sa.ForeignKey("entities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id",
            sa.String(length=200),
            sa.ForeignKey("tags.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index("ix_entity_tags_tag_id", "entity_tags", ["tag_id"])

    op.create_table(
        "media",
        sa.Column("id", sa.String(length=200), primary_key=True),
        sa.Column(
            "entity_id",
            sa.String(length=200),
            sa.ForeignKey("entities.id", ondelete="SET NULL"),
        ),
        sa.Column("media_type", sa.String(length=100)),
        sa.Column("source_path", sa.Text(), nullable=False),
        sa.Column("checksum", sa.String(length=128)),
        sa.Column("size_bytes", sa.Integer()),
        sa.Column("preview_path", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_media_entity_id", "media", ["entity_id"])

    op.create_table(
        "integrity_issues",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_id", sa.String(length=200)),
        sa.Column("issue_type", sa.String(length=50), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("detected_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime()),
    )
    op.create_index("ix_integrity_issues_entity_id", "integrity_issues", ["entity_id"])
    op.create_index("ix_integrity_issues_issue_type", "integrity_issues", ["issue_type"])

    op.create_table(
        "curated_views",
        sa.Column("id", sa.String(length=200), primary_key=True),
        sa.Column("name_en", sa.String(length=255), nullable=False),
        sa.Column("name_zh", sa.String(length=255)),
        sa.Column("description", sa.Text()),
        sa.Column("filter_config", sa.JSON()),
        sa.Column("entity_allowlist", sa.JSON()),
        sa.Column("access_token", sa.String(length=128)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_curated_views_access_token",
        "curated_views",
        ["access_token"],
        unique=True,
    )

    op.execute(SEARCH_INDEX_DDL)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS search_index")
    op.drop_index("ix_curated_views_access_token", table_name="curated_views")
    op.drop_table("curated_views")
    op.drop_index("ix_integrity_issues_issue_type", table_name="integrity_issues")
    op.drop_index("ix_integrity_issues_entity_id", table_name="integrity_issues")
    op.drop_table("integrity_issues")
    op.drop_index("ix_media_entity_id", table_name="media")
    op.drop_table("media")
    op.drop_index("ix_entity_tags_tag_id", table_name="entity_tags")
    op.drop_table("entity_tags")
    op.drop_table("tags")
    op.drop_index("ix_edges_edge_type", table_name="edges")
    op.drop_index("ix_edges_to_id", table_name="edges")
    op.drop_index("ix_edges_from_id", table_name="edges")
    op.drop_table("edges")
    for table_name in reversed(EXTENSION_TABLES):
        op.drop_table(table_name)
    op.drop_index("ix_entities_created_at", table_name="entities")
    op.drop_index("ix_entities_visibility", table_name="entities")
    op.drop_index("ix_entities_status", table_name="entities")
    op.drop_index("ix_entities_type", table_name="entities")
    op.drop_table("entities")
