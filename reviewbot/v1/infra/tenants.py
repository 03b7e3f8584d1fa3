"""
Tenant (installation) configuration lookup used at job execution time.
"""

from pathlib import Path
from typing import Protocol

import yaml

from reviewbot.v1.infra.jobs.schemas import TenantConfig


class TenantConfigProvider(Protocol):
    async def lookup(self, installation_id: int) -> TenantConfig | None:
        """Return the installation's settings, or None when it is unknown."""
        ...


class StaticTenantConfigProvider:
    """In-memory provider, for local runs and tests."""

    def __init__(self, configs: list[TenantConfig] | None = None):
        self._configs: dict[int, TenantConfig] = {}
        for config in configs or []:
            self.put(config)

    def put(self, config: TenantConfig) -> None:
        self._configs[config.installation_id] = config

    async def lookup(self, installation_id: int) -> TenantConfig | None:
        return self._configs.get(installation_id)


def load_tenant_configs(path: str | Path) -> list[TenantConfig]:
    """
    Read installation settings from a YAML file.

    Expected layout:

        installations:
          - installation_id: 42
            api_key: sk-...
            llm_provider: openai
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return [TenantConfig.model_validate(item) for item in data.get("installations", [])]
