"""
Job system Pydantic schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from reviewbot.v1.infra.jobs.models import JobStatus


class WorkDescriptor(BaseModel):
    """Everything needed to re-derive and re-run a review from scratch."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1, description="Repository owner")
    repo: str = Field(..., min_length=1, description="Repository name")
    repo_full_name: str = Field(..., min_length=1, description="owner/name")
    pr_number: int = Field(..., ge=1, description="Pull request number")
    pr_title: str = Field(default="", description="Pull request title")
    commit_sha: str = Field(..., min_length=1, description="Head commit reviewed")
    base_branch: str = Field(..., min_length=1, description="Target branch")


class ReviewStyle(str, Enum):
    """How a finished review is posted."""

    INLINE = "inline"
    SUMMARY = "summary"
    BOTH = "both"


class TenantConfig(BaseModel):
    """Per-installation review settings resolved at execution time."""

    installation_id: int
    enabled: bool = True
    api_key: str | None = Field(default=None, description="LLM provider API key")
    llm_provider: str = Field(default="openai")
    llm_model: str = Field(default="gpt-4o")
    review_style: ReviewStyle = Field(default=ReviewStyle.BOTH)
    max_files_per_review: int = Field(default=20, ge=1)
    ignore_paths: list[str] = Field(default_factory=list, description="Globs never reviewed")
    custom_instructions: str | None = None


class RepoConfig(BaseModel):
    """Overrides read from a repository's .reviewbot.yml; unset keys inherit."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool | None = None
    ignore_paths: list[str] | None = None
    max_files_per_review: int | None = Field(default=None, ge=1)
    review_style: ReviewStyle | None = None
    custom_instructions: str | None = None


Severity = Literal["critical", "warning", "suggestion", "nitpick"]


class ReviewFinding(BaseModel):
    """A single line-level review comment."""

    path: str
    line: int = Field(..., ge=1)
    body: str
    severity: Severity = "suggestion"


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ReviewRequest(BaseModel):
    """Input handed to a review generator."""

    diff: str
    pr_title: str
    custom_instructions: str | None = None


class ReviewResult(BaseModel):
    """Structured output of one review execution."""

    summary: str = ""
    findings: list[ReviewFinding] = Field(default_factory=list)
    usage: TokenUsage | None = None

    @property
    def finding_count(self) -> int:
        return len(self.findings)


class QueueStats(BaseModel):
    """Aggregate job counts by status."""

    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class SubmissionResult(BaseModel):
    """Outcome of a submission through the idempotency guard."""

    job_id: int
    status: JobStatus
    deduplicated: bool = Field(
        default=False, description="Whether an existing job absorbed the submission"
    )
    reason: str | None = Field(
        default=None, description="outstanding | recently_completed | conflict"
    )


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing review jobs via API."""

    installation_id: int = Field(..., description="Installation (tenant) id")
    descriptor: WorkDescriptor


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    installation_id: int
    owner: str
    repo: str
    repo_full_name: str
    pr_number: int
    pr_title: str
    commit_sha: str
    base_branch: str
    status: JobStatus
    attempts: int
    max_attempts: int
    error_message: str | None = None
    check_run_id: int | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int
