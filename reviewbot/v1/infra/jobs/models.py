"""
Review job model backing the durable queue.
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    TIMESTAMP,
    BigInteger,
    CheckConstraint,
    Index,
    Integer,
    SmallInteger,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from reviewbot.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


OUTSTANDING_STATUSES = (JobStatus.PENDING.value, JobStatus.ACTIVE.value)

_OUTSTANDING_PREDICATE = text("status IN ('pending', 'active')")


class ReviewJob(Base):
    """
    One schedulable pull request review.

    The descriptor columns (owner through base_branch) are written once at
    enqueue time. Only status, attempts, error_message, check_run_id and the
    started/completed timestamps change afterwards.
    """

    __tablename__ = "review_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    installation_id: Mapped[int] = mapped_column(
        BigInteger, nullable=False, comment="Code-host installation id (tenant key)"
    )

    # Work descriptor
    owner: Mapped[str] = mapped_column(Text, nullable=False)
    repo: Mapped[str] = mapped_column(Text, nullable=False)
    repo_full_name: Mapped[str] = mapped_column(Text, nullable=False)
    pr_number: Mapped[int] = mapped_column(Integer, nullable=False)
    pr_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    commit_sha: Mapped[str] = mapped_column(Text, nullable=False)
    base_branch: Mapped[str] = mapped_column(Text, nullable=False)

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|active|completed|failed",
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Failed execution attempts"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempt ceiling"
    )
    error_message: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    # GitHub check run ids are 64-bit
    check_run_id: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True, comment="External status handle"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Set on claim"
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'active', 'completed', 'failed')",
            name="review_jobs_status_check",
        ),
        CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="review_jobs_attempts_check",
        ),
        Index("ix_review_jobs_status_created_at", "status", "created_at"),
        Index(
            "ix_review_jobs_unit",
            "installation_id",
            "repo_full_name",
            "pr_number",
            "commit_sha",
        ),
        # At most one outstanding job per unit of work
        Index(
            "ix_review_jobs_unit_outstanding",
            "installation_id",
            "repo_full_name",
            "pr_number",
            "commit_sha",
            unique=True,
            postgresql_where=_OUTSTANDING_PREDICATE,
            sqlite_where=_OUTSTANDING_PREDICATE,
        ),
    )

    def log_context(self) -> dict[str, object]:
        return {
            "job_id": self.id,
            "installation_id": self.installation_id,
            "repo": self.repo_full_name,
            "pr": self.pr_number,
        }
