"""
Minimal async client for the GitHub REST endpoints the review pipeline uses.
"""

from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx

from reviewbot.config.settings import Settings

TokenProvider = Callable[[int], Awaitable[str]]


def static_token_provider(token: str) -> TokenProvider:
    """Use one token for every installation."""

    async def _provide(installation_id: int) -> str:
        return token

    return _provide


class GitHubClient:
    """HTTP client for the GitHub API, authenticated per installation."""

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token_provider = token_provider
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "reviewbot",
            },
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, token_provider: TokenProvider | None = None
    ) -> "GitHubClient":
        if token_provider is None:
            if not settings.github_token:
                raise ValueError("GITHUB_TOKEN is required without a token provider")
            token_provider = static_token_provider(settings.github_token)
        return cls(
            token_provider,
            base_url=settings.github_api_url,
            timeout=settings.http_timeout_s,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(
        self,
        method: str,
        installation_id: int,
        path: str,
        json: dict[str, Any] | None = None,
        accept: str | None = None,
    ) -> httpx.Response:
        token = await self.token_provider(installation_id)
        headers = {"Authorization": f"Bearer {token}"}
        if accept:
            headers["Accept"] = accept

        response = await self.client.request(method, path, json=json, headers=headers)
        response.raise_for_status()
        return response

    async def fetch_pull_request_diff(
        self, installation_id: int, owner: str, repo: str, pr_number: int
    ) -> str:
        """Raw unified diff of a pull request."""
        response = await self._request(
            "GET",
            installation_id,
            f"/repos/{owner}/{repo}/pulls/{pr_number}",
            accept="application/vnd.github.diff",
        )
        return response.text

    async def fetch_file_content(
        self, installation_id: int, owner: str, repo: str, path: str, ref: str
    ) -> str | None:
        """Text of a file at a ref, or None when it does not exist."""
        try:
            response = await self._request(
                "GET",
                installation_id,
                f"/repos/{owner}/{repo}/contents/{path}?ref={quote(ref, safe='')}",
                accept="application/vnd.github.raw+json",
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        return response.text

    async def create_review(
        self,
        installation_id: int,
        owner: str,
        repo: str,
        pr_number: int,
        commit_sha: str,
        body: str,
        comments: list[dict[str, Any]],
    ) -> int:
        """Post a pull request review with optional inline comments."""
        payload: dict[str, Any] = {
            "commit_id": commit_sha,
            "event": "COMMENT",
            "comments": comments,
        }
        if body:
            payload["body"] = body

        response = await self._request(
            "POST",
            installation_id,
            f"/repos/{owner}/{repo}/pulls/{pr_number}/reviews",
            json=payload,
        )
        return response.json()["id"]

    async def create_check_run(
        self,
        installation_id: int,
        owner: str,
        repo: str,
        payload: dict[str, Any],
    ) -> int:
        response = await self._request(
            "POST", installation_id, f"/repos/{owner}/{repo}/check-runs", json=payload
        )
        return response.json()["id"]

    async def update_check_run(
        self,
        installation_id: int,
        owner: str,
        repo: str,
        check_run_id: int,
        payload: dict[str, Any],
    ) -> None:
        await self._request(
            "PATCH",
            installation_id,
            f"/repos/{owner}/{repo}/check-runs/{check_run_id}",
            json=payload,
        )
