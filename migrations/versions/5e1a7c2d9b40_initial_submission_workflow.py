"""initial_submission_workflow

Creates the submission workflow schema:
  - categories, registration_windows  — reference data read by the workflow
  - submissions                       — aggregate root (version-counted)
  - team_members                      — roster, soft-deleted on revision
  - reviewer_assignments              — plotting; ≤1 active row per artifact
  - title_reviews, proposal_reviews   — append-only review history
  - code_sequences                    — per (category, year) code counter
  - audit_logs                        — append-only audit trail

Revision ID: 5e1a7c2d9b40
Revises:
Create Date: 2026-10-19 09:12:40.318204
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5e1a7c2d9b40'
down_revision = None
branch_labels = None
depends_on = None

_ACTIVE_ASSIGNMENT = sa.text("state IN ('assigned', 'reviewed')")


def _review_table(name):
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("submission_id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("reviewer_key", sa.String(length=32), nullable=False),
        sa.Column(
            "outcome", sa.String(length=20), nullable=False,
            comment="accepted | needs_revision | rejected",
        ),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(), nullable=False),
        sa.Column(
            "submitted_by", sa.String(length=64), nullable=False,
            comment="Identity that wrote the record; differs from reviewer_key on admin override.",
        ),
        sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["assignment_id"], ["reviewer_assignments.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{name}_submission_id", name, ["submission_id"])


def upgrade():
    # ── Reference data ────────────────────────────────────────────────────
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("short_code", sa.String(length=10), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("short_code"),
    )
    op.create_index("ix_categories_deleted_at", "categories", ["deleted_at"])

    op.create_table(
        "registration_windows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("opens_at", sa.DateTime(), nullable=False),
        sa.Column("closes_at", sa.DateTime(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_registration_windows_deleted_at", "registration_windows", ["deleted_at"])

    # ── Submission ────────────────────────────────────────────────────────
    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("lead_key", sa.String(length=32), nullable=False),
        sa.Column("form_answers", sa.JSON(), nullable=True),
        sa.Column(
            "title_status", sa.String(length=20), nullable=False,
            comment="pending | under_review | accepted | needs_revision | rejected",
        ),
        sa.Column("title_reviewer_key", sa.String(length=32), nullable=True),
        sa.Column("title_review_note", sa.Text(), nullable=True),
        sa.Column("title_reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("proposal_document_ref", sa.String(length=255), nullable=True),
        sa.Column(
            "proposal_status", sa.String(length=20), nullable=True,
            comment="NULL until the first upload, then as title_status",
        ),
        sa.Column("proposal_reviewer_key", sa.String(length=32), nullable=True),
        sa.Column("proposal_review_note", sa.Text(), nullable=True),
        sa.Column("proposal_reviewed_at", sa.DateTime(), nullable=True),
        sa.Column(
            "final_status", sa.String(length=20), nullable=False,
            comment="draft | submitted | passed | failed",
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("updated_by", sa.String(length=64), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_submissions_category_year", "submissions", ["category_id", "year"])
    op.create_index("ix_submissions_lead", "submissions", ["lead_key"])
    op.create_index("ix_submissions_deleted_at", "submissions", ["deleted_at"])

    op.create_table(
        "team_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("submission_id", sa.Integer(), nullable=False),
        sa.Column("member_key", sa.String(length=32), nullable=False),
        sa.Column("is_lead", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("display_order", sa.Integer(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_team_members_submission", "team_members", ["submission_id"])
    op.create_index("ix_team_members_deleted_at", "team_members", ["deleted_at"])

    # ── Plotting & reviews ────────────────────────────────────────────────
    op.create_table(
        "reviewer_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("submission_id", sa.Integer(), nullable=False),
        sa.Column("reviewer_key", sa.String(length=32), nullable=False),
        sa.Column("artifact_kind", sa.String(length=20), nullable=False, comment="title | proposal"),
        sa.Column(
            "state", sa.String(length=20), nullable=False,
            comment="assigned | reviewed | superseded | cancelled",
        ),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.Column("assigned_by", sa.String(length=64), nullable=False),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["submission_id"], ["submissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_reviewer_assignments_active",
        "reviewer_assignments",
        ["submission_id", "artifact_kind"],
        unique=True,
        sqlite_where=_ACTIVE_ASSIGNMENT,
        postgresql_where=_ACTIVE_ASSIGNMENT,
    )
    op.create_index("ix_reviewer_assignments_reviewer", "reviewer_assignments", ["reviewer_key"])

    _review_table("title_reviews")
    _review_table("proposal_reviews")

    # ── Code counter ──────────────────────────────────────────────────────
    op.create_table(
        "code_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("category_id", "year", name="uq_code_sequence_category_year"),
    )

    # ── Audit ─────────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("actor_role", sa.String(length=20), nullable=True),
        sa.Column("diff_json", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_actor", "audit_logs", ["actor"])
    op.create_index("idx_audit_action", "audit_logs", ["action"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("code_sequences")
    op.drop_table("proposal_reviews")
    op.drop_table("title_reviews")
    op.drop_index("ix_reviewer_assignments_reviewer", table_name="reviewer_assignments")
    op.drop_index("uq_reviewer_assignments_active", table_name="reviewer_assignments")
    op.drop_table("reviewer_assignments")
    op.drop_table("team_members")
    op.drop_table("submissions")
    op.drop_table("registration_windows")
    op.drop_table("categories")
