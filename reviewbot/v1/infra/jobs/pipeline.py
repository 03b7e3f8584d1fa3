"""
Default review execution: apply the repository config, select the changed
files, generate the review chunk by chunk and post it.

Each external step is wrapped in the inner retry. A failure that survives
the inner retry propagates to the job handler, which turns it into an
outer (queue-level) retry or a permanent failure.
"""

from typing import Protocol

from reviewbot.config.logging import get_logger
from reviewbot.v1.core.exceptions import NonRetryableError, TenantConfigurationError
from reviewbot.v1.core.registries import ReviewGeneratorRegistry, generator_registry
from reviewbot.v1.gen.diffs import chunk_diffs, filter_files, parse_diff
from reviewbot.v1.infra.github import GitHubClient
from reviewbot.v1.infra.jobs.backoff import (
    RetryPolicy,
    is_retryable_error,
    is_retryable_unsent_error,
    with_retry,
)
from reviewbot.v1.infra.jobs.schemas import (
    ReviewFinding,
    ReviewRequest,
    ReviewResult,
    ReviewStyle,
    TenantConfig,
    TokenUsage,
    WorkDescriptor,
)
from reviewbot.v1.infra.repo_config import REPO_CONFIG_PATH, merge_config, parse_repo_config

logger = get_logger(__name__)

NO_CHANGES_SUMMARY = "No reviewable files."
SKIPPED_SUMMARY = "Skipped (disabled via repo config)"

SEVERITY_MARKERS = {
    "critical": "🔴",
    "warning": "🟡",
    "suggestion": "🔵",
    "nitpick": "⚪",
}


class ReviewExecutor(Protocol):
    """Work function run for each claimed job."""

    async def execute(
        self, descriptor: WorkDescriptor, config: TenantConfig
    ) -> ReviewResult:
        ...


def format_summary(summary: str, finding_count: int) -> str:
    body = f"## ReviewBot Summary\n\n{summary}\n\n"
    if finding_count > 0:
        body += f"---\n*{finding_count} inline comment(s) posted.*"
    else:
        body += "---\n*No issues found. Looks good!*"
    return body


def format_finding(finding: ReviewFinding) -> str:
    marker = SEVERITY_MARKERS.get(finding.severity, "")
    return f"{marker} **{finding.severity.upper()}**\n\n{finding.body}".strip()


def combine_results(total: ReviewResult, partial: ReviewResult) -> ReviewResult:
    """Append one chunk's review to the running total."""
    summary = total.summary
    if partial.summary:
        summary = f"{summary}\n\n{partial.summary}" if summary else partial.summary

    usage = total.usage or TokenUsage()
    if partial.usage is not None:
        usage = TokenUsage(
            prompt_tokens=usage.prompt_tokens + partial.usage.prompt_tokens,
            completion_tokens=usage.completion_tokens + partial.usage.completion_tokens,
        )

    return ReviewResult(
        summary=summary, findings=[*total.findings, *partial.findings], usage=usage
    )


class ReviewPipeline:
    """ReviewExecutor that talks to GitHub and a registered review generator."""

    def __init__(
        self,
        github: GitHubClient,
        retry_policy: RetryPolicy | None = None,
        generators: ReviewGeneratorRegistry = generator_registry,
    ):
        self.github = github
        self.retry_policy = retry_policy or RetryPolicy()
        self.generators = generators

    async def execute(
        self, descriptor: WorkDescriptor, config: TenantConfig
    ) -> ReviewResult:
        if not config.api_key:
            raise TenantConfigurationError(
                "No API key configured", installation_id=config.installation_id
            )

        try:
            generator = self.generators.get(config.llm_provider)
        except KeyError as e:
            raise NonRetryableError(
                f"Unknown LLM provider: {config.llm_provider}"
            ) from e

        content = await self._call(
            "fetch_repo_config",
            lambda: self.github.fetch_file_content(
                config.installation_id,
                descriptor.owner,
                descriptor.repo,
                REPO_CONFIG_PATH,
                descriptor.base_branch,
            ),
        )
        config = merge_config(config, parse_repo_config(content))

        if not config.enabled:
            logger.info("Review skipped by repository config", repo=descriptor.repo_full_name)
            return ReviewResult(summary=SKIPPED_SUMMARY)

        diff = await self._call(
            "fetch_diff",
            lambda: self.github.fetch_pull_request_diff(
                config.installation_id,
                descriptor.owner,
                descriptor.repo,
                descriptor.pr_number,
            ),
        )

        files = filter_files(
            parse_diff(diff), config.ignore_paths, config.max_files_per_review
        )
        if not files:
            return ReviewResult(summary=NO_CHANGES_SUMMARY)

        result = ReviewResult(usage=TokenUsage())
        for chunk in chunk_diffs(files):
            request = ReviewRequest(
                diff=chunk,
                pr_title=descriptor.pr_title,
                custom_instructions=config.custom_instructions,
            )
            partial = await self._call(
                "generate_review",
                lambda: generator.review(request, config.api_key, config.llm_model),
            )
            result = combine_results(result, partial)

        # A 5xx or read timeout may follow an accepted POST, so only
        # failures that never reached GitHub are retried in place.
        await self._call(
            "post_review",
            lambda: self._post(descriptor, config, result),
            should_retry=is_retryable_unsent_error,
        )

        logger.info(
            "Review posted",
            repo=descriptor.repo_full_name,
            pr=descriptor.pr_number,
            files=len(files),
            findings=result.finding_count,
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
        )
        return result

    async def _post(
        self, descriptor: WorkDescriptor, config: TenantConfig, result: ReviewResult
    ) -> int:
        comments = []
        if config.review_style != ReviewStyle.SUMMARY:
            comments = [
                {"path": f.path, "line": f.line, "body": format_finding(f)}
                for f in result.findings
            ]

        body = ""
        if config.review_style != ReviewStyle.INLINE:
            body = format_summary(result.summary, result.finding_count)

        return await self.github.create_review(
            config.installation_id,
            descriptor.owner,
            descriptor.repo,
            descriptor.pr_number,
            descriptor.commit_sha,
            body,
            comments,
        )

    async def _call(self, operation: str, fn, should_retry=is_retryable_error):
        return await with_retry(
            fn,
            policy=self.retry_policy,
            should_retry=should_retry,
            operation=operation,
        )
