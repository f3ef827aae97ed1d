"""initial_progress_engine

Creates the progress engine tables:
  - projects, test_packages, systems, drawings
  - progress_templates     per component type and version
  - components             milestone map + cached percent complete
  - milestone_events       append-only milestone audit trail
  - welders, field_welds, field_weld_events
  - progress_rollups       invalidate-or-recompute cache per parent

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-19 09:12:40.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e4a9b2d30'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Project structure ─────────────────────────────────────────────────
    if "projects" not in existing:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code"),
        )

    if "test_packages" not in existing:
        op.create_table(
            "test_packages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("target_date", sa.Date(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_test_packages_project_id", "test_packages", ["project_id"])

    if "systems" not in existing:
        op.create_table(
            "systems",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "name", name="uq_systems_project_name"),
        )
        op.create_index("ix_systems_project_id", "systems", ["project_id"])

    if "drawings" not in existing:
        op.create_table(
            "drawings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("drawing_no_raw", sa.String(length=100), nullable=False),
            sa.Column("drawing_no_norm", sa.String(length=100), nullable=False,
                      comment="UPPER, trimmed, whitespace-collapsed"),
            sa.Column("title", sa.String(length=255), nullable=True),
            sa.Column("rev", sa.String(length=20), nullable=True),
            sa.Column("test_package_id", sa.Integer(), nullable=True),
            sa.Column("system_id", sa.Integer(), nullable=True),
            sa.Column("is_retired", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["test_package_id"], ["test_packages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["system_id"], ["systems.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "drawing_no_norm", name="uq_drawings_project_norm"),
        )
        op.create_index("ix_drawings_project_id", "drawings", ["project_id"])

    # ── Templates & components ────────────────────────────────────────────
    if "progress_templates" not in existing:
        op.create_table(
            "progress_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("component_type", sa.String(length=30), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("workflow_type", sa.String(length=20), nullable=False,
                      comment="discrete | partial | hybrid"),
            sa.Column("milestones_config", sa.JSON(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("component_type", "version", name="uq_templates_type_version"),
        )
        op.create_index("ix_progress_templates_component_type", "progress_templates", ["component_type"])

    if "components" not in existing:
        op.create_table(
            "components",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("drawing_id", sa.Integer(), nullable=True),
            sa.Column("test_package_id", sa.Integer(), nullable=True),
            sa.Column("system_id", sa.Integer(), nullable=True),
            sa.Column("component_type", sa.String(length=30), nullable=False),
            sa.Column("progress_template_id", sa.Integer(), nullable=False),
            sa.Column("identity_key", sa.JSON(), nullable=False),
            sa.Column("attributes", sa.JSON(), nullable=True),
            sa.Column("current_milestones", sa.JSON(), nullable=False),
            sa.Column("percent_complete", sa.Numeric(5, 2), nullable=False, server_default="0"),
            sa.Column("is_retired", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("retire_reason", sa.Text(), nullable=True),
            *_timestamps(),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("last_updated_by", sa.String(length=150), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["drawing_id"], ["drawings.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["test_package_id"], ["test_packages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["system_id"], ["systems.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["progress_template_id"], ["progress_templates.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_components_project_id", "components", ["project_id"])
        op.create_index("ix_components_drawing_id", "components", ["drawing_id"])
        op.create_index("ix_components_test_package_id", "components", ["test_package_id"])
        op.create_index("ix_components_system_id", "components", ["system_id"])
        op.create_index("ix_components_progress_template_id", "components", ["progress_template_id"])
        op.create_index("ix_components_project_type", "components", ["project_id", "component_type"])
        op.create_index("ix_components_drawing_retired", "components", ["drawing_id", "is_retired"])

    if "milestone_events" not in existing:
        op.create_table(
            "milestone_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("component_id", sa.Integer(), nullable=False),
            sa.Column("milestone_name", sa.String(length=100), nullable=False),
            sa.Column("action", sa.String(length=20), nullable=False,
                      comment="complete | rollback | update"),
            sa.Column("value", sa.JSON(), nullable=True),
            sa.Column("previous_value", sa.JSON(), nullable=True),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["component_id"], ["components.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_milestone_events_component_id", "milestone_events", ["component_id"])
        op.create_index("idx_events_component_created", "milestone_events", ["component_id", "created_at"])
        op.create_index("idx_events_milestone", "milestone_events", ["milestone_name"])
        op.create_index("idx_events_actor", "milestone_events", ["actor"])

    # ── Field weld QC ─────────────────────────────────────────────────────
    if "welders" not in existing:
        op.create_table(
            "welders",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("stencil", sa.String(length=50), nullable=False),
            sa.Column("stencil_norm", sa.String(length=12), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="unverified"),
            sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("verified_by", sa.String(length=150), nullable=True),
            *_timestamps(),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "stencil_norm", name="uq_welders_project_stencil"),
        )
        op.create_index("ix_welders_project_id", "welders", ["project_id"])

    if "field_welds" not in existing:
        op.create_table(
            "field_welds",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("component_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("weld_type", sa.String(length=2), nullable=False),
            sa.Column("weld_size", sa.String(length=20), nullable=True),
            sa.Column("schedule", sa.String(length=20), nullable=True),
            sa.Column("base_metal", sa.String(length=50), nullable=True),
            sa.Column("spec", sa.String(length=50), nullable=True),
            sa.Column("welder_id", sa.Integer(), nullable=True),
            sa.Column("date_welded", sa.Date(), nullable=True),
            sa.Column("nde_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("nde_type", sa.String(length=5), nullable=True),
            sa.Column("nde_result", sa.String(length=10), nullable=True),
            sa.Column("nde_date", sa.Date(), nullable=True),
            sa.Column("nde_notes", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("original_weld_id", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.Column("created_by", sa.String(length=150), nullable=True),
            sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint(
                "original_weld_id IS NULL OR original_weld_id <> id",
                name="ck_field_welds_not_self_repair",
            ),
            sa.ForeignKeyConstraint(["component_id"], ["components.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["welder_id"], ["welders.id"]),
            sa.ForeignKeyConstraint(["original_weld_id"], ["field_welds.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("component_id"),
        )
        op.create_index("ix_field_welds_project_id", "field_welds", ["project_id"])
        op.create_index("ix_field_welds_welder_id", "field_welds", ["welder_id"])
        op.create_index("ix_field_welds_original", "field_welds", ["original_weld_id"])

    if "field_weld_events" not in existing:
        op.create_table(
            "field_weld_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("field_weld_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(length=20), nullable=False),
            sa.Column("welder_id", sa.Integer(), nullable=True),
            sa.Column("previous_welder_id", sa.Integer(), nullable=True),
            sa.Column("nde_type", sa.String(length=5), nullable=True),
            sa.Column("nde_result", sa.String(length=10), nullable=True),
            sa.Column("previous_nde_type", sa.String(length=5), nullable=True),
            sa.Column("previous_nde_result", sa.String(length=10), nullable=True),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["field_weld_id"], ["field_welds.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_field_weld_events_field_weld_id", "field_weld_events", ["field_weld_id"])

    # ── Rollup cache ──────────────────────────────────────────────────────
    if "progress_rollups" not in existing:
        op.create_table(
            "progress_rollups",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("parent_type", sa.String(length=20), nullable=False,
                      comment="drawing | test_package | system"),
            sa.Column("parent_id", sa.Integer(), nullable=False),
            sa.Column("total_components", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_components", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("avg_percent_complete", sa.Numeric(5, 2), nullable=True),
            sa.Column("is_stale", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("invalidation_seq", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("refreshed_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "completed_components <= total_components",
                name="ck_rollups_completed_le_total",
            ),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("parent_type", "parent_id", name="uq_rollups_parent"),
        )


def downgrade():
    for table in (
        "progress_rollups",
        "field_weld_events",
        "field_welds",
        "welders",
        "milestone_events",
        "components",
        "progress_templates",
        "drawings",
        "systems",
        "test_packages",
        "projects",
    ):
        op.drop_table(table)
