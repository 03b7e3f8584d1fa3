import httpx
import pytest

from reviewbot.v1.gen.diffs import FileDiff, chunk_diffs, filter_files, parse_diff
from reviewbot.v1.infra.github import GitHubClient, static_token_provider
from reviewbot.v1.infra.jobs.schemas import RepoConfig, ReviewStyle
from reviewbot.v1.infra.repo_config import merge_config, parse_repo_config


def test_parse_repo_config_reads_camel_case_keys():
    config = parse_repo_config(
        "enabled: true\n"
        "ignorePaths: ['*.lock']\n"
        "maxFilesPerReview: 5\n"
        "reviewStyle: inline\n"
    )

    assert config == RepoConfig(
        enabled=True,
        ignore_paths=["*.lock"],
        max_files_per_review=5,
        review_style=ReviewStyle.INLINE,
    )


@pytest.mark.parametrize(
    "content",
    [None, "", "just a string", "reviewStyle: shouty\n", "maxFilesPerReview: 0\n"],
)
def test_unusable_repo_config_is_absent(content):
    assert parse_repo_config(content) is None


def test_merge_config_prefers_repository_values(tenant_config):
    tenant_config = tenant_config.model_copy(
        update={"ignore_paths": ["vendor/*"], "custom_instructions": "Be brief."}
    )

    merged = merge_config(
        tenant_config, RepoConfig(max_files_per_review=3, review_style=ReviewStyle.SUMMARY)
    )

    assert merged.max_files_per_review == 3
    assert merged.review_style == ReviewStyle.SUMMARY
    assert merged.ignore_paths == ["vendor/*"]
    assert merged.custom_instructions == "Be brief."
    assert merged.api_key == tenant_config.api_key
    assert merge_config(tenant_config, None) is tenant_config


def test_parse_diff_skips_binary_and_hunkless_files():
    raw = (
        "diff --git a/app.py b/app.py\n"
        "--- a/app.py\n+++ b/app.py\n"
        "@@ -1 +1,2 @@\n x\n+y\n"
        "diff --git a/logo.png b/logo.png\n"
        "Binary files a/logo.png and b/logo.png differ\n"
        "diff --git a/old.txt b/new.txt\n"
        "similarity index 100%\nrename from old.txt\nrename to new.txt\n"
    )

    (only,) = parse_diff(raw)

    assert only.path == "app.py"
    assert only.hunks == "@@ -1 +1,2 @@\n x\n+y\n"


def test_filter_files_applies_ignores_before_ceiling():
    files = [FileDiff(path, "@@") for path in ("a.lock", "src/a.py", "src/b.py", "c.py")]

    kept = filter_files(files, ["*.lock"], max_files=2)

    assert [f.path for f in kept] == ["src/a.py", "src/b.py"]


def test_chunk_diffs_respects_size_limit():
    files = [FileDiff(f"f{n}.py", "@@ " + "x" * 40) for n in range(3)]

    chunks = chunk_diffs(files, max_chars=100)

    assert len(chunks) == 3
    assert chunks[0].startswith("### f0.py\n@@ ")
    assert chunk_diffs([]) == []


@pytest.mark.asyncio
async def test_fetch_file_content():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/repos/acme/widgets/contents/.reviewbot.yml":
            return httpx.Response(200, text="enabled: false\n")
        return httpx.Response(404)

    async with GitHubClient(
        static_token_provider("ghs_test"), transport=httpx.MockTransport(handler)
    ) as github:
        content = await github.fetch_file_content(
            101, "acme", "widgets", ".reviewbot.yml", "release/2.0"
        )
        missing = await github.fetch_file_content(
            101, "acme", "widgets", "missing.yml", "main"
        )

    assert content == "enabled: false\n"
    assert missing is None
    assert seen[0].url.params["ref"] == "release/2.0"
    assert seen[0].headers["Accept"] == "application/vnd.github.raw+json"
