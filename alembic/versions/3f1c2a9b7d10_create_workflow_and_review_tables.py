"""create workflow and review tables

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-09-28 14:12:05.418230
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "3f1c2a9b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "workflows",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_workflows_id"), "workflows", ["id"], unique=False)
    op.create_index(op.f("ix_workflows_organization_id"), "workflows", ["organization_id"], unique=False)

    op.create_table(
        "workflow_stages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "workflow_id",
            sa.Integer(),
            sa.ForeignKey("workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage_order", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=False),
        sa.UniqueConstraint("workflow_id", "stage_order", name="uq_workflow_stage_order"),
        sa.CheckConstraint("stage_order >= 1", name="ck_workflow_stage_order_positive"),
    )
    op.create_index(op.f("ix_workflow_stages_id"), "workflow_stages", ["id"], unique=False)
    op.create_index(op.f("ix_workflow_stages_workflow_id"), "workflow_stages", ["workflow_id"], unique=False)

    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column(
            "workflow_id",
            sa.Integer(),
            sa.ForeignKey("workflows.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "status IN ('active', 'completed', 'archived')",
            name="ck_projects_status",
        ),
    )
    op.create_index(op.f("ix_projects_id"), "projects", ["id"], unique=False)
    op.create_index(op.f("ix_projects_organization_id"), "projects", ["organization_id"], unique=False)
    op.create_index(op.f("ix_projects_workflow_id"), "projects", ["workflow_id"], unique=False)

    op.create_table(
        "project_stage_reviewers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "project_id",
            sa.Integer(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage_order", sa.Integer(), nullable=False),
        sa.Column("reviewer_id", sa.String(), nullable=False),
        sa.Column("reviewer_name", sa.String(), nullable=True),
        sa.Column("reviewer_email", sa.String(), nullable=True),
        sa.Column("added_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("project_id", "stage_order", "reviewer_id", name="uq_project_stage_reviewer"),
    )
    op.create_index(op.f("ix_project_stage_reviewers_id"), "project_stage_reviewers", ["id"], unique=False)
    op.create_index(
        op.f("ix_project_stage_reviewers_project_id"), "project_stage_reviewers", ["project_id"], unique=False
    )
    op.create_index(
        op.f("ix_project_stage_reviewers_reviewer_id"), "project_stage_reviewers", ["reviewer_id"], unique=False
    )

    op.create_table(
        "mockups",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column(
            "project_id",
            sa.Integer(),
            sa.ForeignKey("projects.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("created_by_name", sa.String(), nullable=True),
        sa.Column("review_status", sa.String(), nullable=False),
        sa.Column("current_stage_order", sa.Integer(), nullable=True),
        sa.Column("review_round", sa.Integer(), nullable=False),
        sa.Column("final_approved_by", sa.String(), nullable=True),
        sa.Column("final_approved_by_name", sa.String(), nullable=True),
        sa.Column("final_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_approval_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "review_status IN ('not_started', 'in_review', 'pending_final_approval', 'approved')",
            name="ck_mockups_review_status",
        ),
        sa.CheckConstraint("review_round >= 1", name="ck_mockups_review_round_positive"),
    )
    op.create_index(op.f("ix_mockups_id"), "mockups", ["id"], unique=False)
    op.create_index(op.f("ix_mockups_organization_id"), "mockups", ["organization_id"], unique=False)
    op.create_index(op.f("ix_mockups_project_id"), "mockups", ["project_id"], unique=False)

    op.create_table(
        "mockup_stage_progress",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "mockup_id",
            sa.Integer(),
            sa.ForeignKey("mockups.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("review_round", sa.Integer(), nullable=False),
        sa.Column("stage_order", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("approvals_required", sa.Integer(), nullable=False),
        sa.Column("approvals_received", sa.Integer(), nullable=False),
        sa.Column("reviewed_by", sa.String(), nullable=True),
        sa.Column("reviewed_by_name", sa.String(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("mockup_id", "review_round", "stage_order", name="uq_stage_progress_round_stage"),
        sa.CheckConstraint(
            "status IN ('pending', 'in_review', 'approved', 'changes_requested')",
            name="ck_stage_progress_status",
        ),
        sa.CheckConstraint("approvals_required >= 0", name="ck_stage_progress_required_nonnegative"),
        sa.CheckConstraint("approvals_received >= 0", name="ck_stage_progress_received_nonnegative"),
    )
    op.create_index(op.f("ix_mockup_stage_progress_id"), "mockup_stage_progress", ["id"], unique=False)
    op.create_index(
        op.f("ix_mockup_stage_progress_mockup_id"), "mockup_stage_progress", ["mockup_id"], unique=False
    )
    op.create_index(
        op.f("ix_mockup_stage_progress_project_id"), "mockup_stage_progress", ["project_id"], unique=False
    )
    op.create_index(
        "uq_stage_progress_one_in_review",
        "mockup_stage_progress",
        ["mockup_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_review'"),
    )

    op.create_table(
        "mockup_stage_approvals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "mockup_id",
            sa.Integer(),
            sa.ForeignKey("mockups.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("review_round", sa.Integer(), nullable=False),
        sa.Column("stage_order", sa.Integer(), nullable=False),
        sa.Column("reviewer_id", sa.String(), nullable=False),
        sa.Column("reviewer_name", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint(
            "mockup_id",
            "review_round",
            "stage_order",
            "reviewer_id",
            name="uq_stage_approval_one_decision",
        ),
        sa.CheckConstraint("action IN ('approve', 'request_changes')", name="ck_stage_approval_action"),
    )
    op.create_index(
        op.f("ix_mockup_stage_approvals_mockup_id"), "mockup_stage_approvals", ["mockup_id"], unique=False
    )
    op.create_index(
        op.f("ix_mockup_stage_approvals_project_id"), "mockup_stage_approvals", ["project_id"], unique=False
    )
    op.create_index(
        op.f("ix_mockup_stage_approvals_reviewer_id"), "mockup_stage_approvals", ["reviewer_id"], unique=False
    )
    op.create_index(
        "ix_stage_approval_mockup_round_stage",
        "mockup_stage_approvals",
        ["mockup_id", "review_round", "stage_order"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("mockup_stage_approvals")
    op.drop_index("uq_stage_progress_one_in_review", table_name="mockup_stage_progress")
    op.drop_table("mockup_stage_progress")
    op.drop_table("mockups")
    op.drop_table("project_stage_reviewers")
    op.drop_table("projects")
    op.drop_table("workflow_stages")
    op.drop_table("workflows")
