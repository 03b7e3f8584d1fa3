"""
Per-repository review settings from a `.reviewbot.yml` on the base branch.

Example:

    enabled: true
    ignorePaths: ["docs/*", "*.lock"]
    maxFilesPerReview: 10
    reviewStyle: summary
    customInstructions: Prefer small functions.
"""

import yaml

from reviewbot.config.logging import get_logger
from reviewbot.v1.infra.jobs.schemas import RepoConfig, TenantConfig

logger = get_logger(__name__)

REPO_CONFIG_PATH = ".reviewbot.yml"


def parse_repo_config(content: str | None) -> RepoConfig | None:
    """Parse the file's text; unreadable or malformed files count as absent."""
    if not content:
        return None

    try:
        data = yaml.safe_load(content)
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        return RepoConfig.model_validate(data)
    except (yaml.YAMLError, ValueError) as e:
        logger.warning("Ignoring invalid repository config", path=REPO_CONFIG_PATH, error=str(e))
        return None


def merge_config(config: TenantConfig, repo_config: RepoConfig | None) -> TenantConfig:
    """Repository values win over installation values key by key."""
    if repo_config is None:
        return config
    return config.model_copy(update=repo_config.model_dump(exclude_none=True))
