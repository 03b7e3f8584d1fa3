"""add review jobs table

Revision ID: 3b7e91c04d2a
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e91c04d2a"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "review_jobs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "installation_id",
            sa.BigInteger,
            nullable=False,
            comment="Code-host installation id (tenant key)",
        ),
        # Work descriptor
        sa.Column("owner", sa.Text, nullable=False),
        sa.Column("repo", sa.Text, nullable=False),
        sa.Column("repo_full_name", sa.Text, nullable=False),
        sa.Column("pr_number", sa.Integer, nullable=False),
        sa.Column("pr_title", sa.Text, nullable=False, server_default=""),
        sa.Column("commit_sha", sa.Text, nullable=False),
        sa.Column("base_branch", sa.Text, nullable=False),
        # Job state
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|active|completed|failed",
        ),
        sa.Column(
            "attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Failed execution attempts",
        ),
        sa.Column(
            "max_attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="3",
            comment="Attempt ceiling",
        ),
        sa.Column("error_message", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "check_run_id", sa.BigInteger, nullable=True, comment="External status handle"
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "started_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Set on claim",
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'failed')",
            name="review_jobs_status_check",
        ),
        sa.CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="review_jobs_attempts_check",
        ),
    )

    # Claim order
    op.create_index(
        "ix_review_jobs_status_created_at", "review_jobs", ["status", "created_at"]
    )
    op.create_index(
        "ix_review_jobs_unit",
        "review_jobs",
        ["installation_id", "repo_full_name", "pr_number", "commit_sha"],
    )

    # At most one pending or active job per pull request revision
    op.create_index(
        "ix_review_jobs_unit_outstanding",
        "review_jobs",
        ["installation_id", "repo_full_name", "pr_number", "commit_sha"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'active')"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_review_jobs_unit_outstanding", table_name="review_jobs")
    op.drop_index("ix_review_jobs_unit", table_name="review_jobs")
    op.drop_index("ix_review_jobs_status_created_at", table_name="review_jobs")
    op.drop_table("review_jobs")
