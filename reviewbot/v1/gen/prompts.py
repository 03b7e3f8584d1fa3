"""
Prompt construction and response parsing shared by every review generator.

Generators ask the model for a fixed Markdown layout:

    ## Summary
    <overall assessment>

    ## Comments
    ### [SEVERITY] path/to/file.py:LINE
    <comment body>
"""

import re

from reviewbot.v1.infra.jobs.schemas import ReviewFinding

SYSTEM_PROMPT = """You are a senior code reviewer. Review the following pull request diff and provide actionable feedback.

Your response MUST follow this exact format:

## Summary
<A brief overall assessment of the PR in 2-3 sentences>

## Comments
<For each issue found, use this exact format:>

### [SEVERITY] path/to/file.py:LINE_NUMBER
<Your review comment explaining the issue and suggesting a fix>

Where SEVERITY is one of: CRITICAL, WARNING, SUGGESTION, NITPICK

Rules:
- Focus on bugs, security issues, performance problems, and code quality
- LINE_NUMBER must be a line number from the diff (lines starting with +)
- Be specific and actionable: explain what is wrong and how to fix it
- If the code looks good, just provide a positive summary with no comments
- Do not comment on formatting or style unless it significantly impacts readability
- Keep comments concise"""

COMMENT_PATTERN = re.compile(
    r"###\s*\[(CRITICAL|WARNING|SUGGESTION|NITPICK)\]\s*([^\n]+?):(\d+)[ \t]*\n(.*?)(?=###\s*\[|\Z)",
    re.IGNORECASE | re.DOTALL,
)
SUMMARY_PATTERN = re.compile(
    r"##\s*Summary\s*\n(.*?)(?=##\s*Comments|\Z)", re.IGNORECASE | re.DOTALL
)


def build_user_prompt(
    pr_title: str, diff: str, custom_instructions: str | None = None
) -> str:
    prompt = f"# Pull Request: {pr_title}\n\n"
    if custom_instructions:
        prompt += f"## Additional Instructions\n{custom_instructions}\n\n"
    prompt += f"## Diff\n```diff\n{diff}\n```"
    return prompt


def parse_review_response(raw: str) -> tuple[str, list[ReviewFinding]]:
    """
    Split a model response into its summary and findings.

    Without a summary heading the first line stands in for the summary.
    Comments missing a path, a positive line number or a body are dropped.
    """
    match = SUMMARY_PATTERN.search(raw)
    summary = match.group(1).strip() if match else raw.split("\n")[0]

    findings = []
    for severity, path, line, body in COMMENT_PATTERN.findall(raw):
        path, body = path.strip(), body.strip()
        if path and int(line) > 0 and body:
            findings.append(
                ReviewFinding(
                    path=path, line=int(line), body=body, severity=severity.lower()
                )
            )

    return summary, findings
