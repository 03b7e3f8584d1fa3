"""
Language-model review generators.

Every generator sends the shared system prompt plus the rendered diff and
parses the Markdown reply with parse_review_response. Provider errors
propagate unchanged; retrying them is the pipeline's job, so client-side
retries are off.
"""

from typing import Any

import httpx
from openai import AsyncOpenAI

from reviewbot.v1.gen.prompts import SYSTEM_PROMPT, build_user_prompt, parse_review_response
from reviewbot.v1.infra.jobs.schemas import ReviewRequest, ReviewResult, TokenUsage


class HTTPReviewGenerator:
    """Base class: one POST per review, response text parsed into findings."""

    base_url: str = ""
    temperature: float = 0.1

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or self.base_url).rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def review(
        self, request: ReviewRequest, api_key: str, model: str
    ) -> ReviewResult:
        prompt = build_user_prompt(
            request.pr_title, request.diff, request.custom_instructions
        )
        url, headers, payload = self.build_request(prompt, api_key, model)

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()

        summary, findings = parse_review_response(self.extract_text(data))
        return ReviewResult(summary=summary, findings=findings, usage=self.extract_usage(data))

    def build_request(
        self, prompt: str, api_key: str, model: str
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        raise NotImplementedError

    def extract_text(self, data: dict[str, Any]) -> str:
        raise NotImplementedError

    def extract_usage(self, data: dict[str, Any]) -> TokenUsage | None:
        return None


class OpenAIReviewGenerator:
    """Chat Completions through the openai SDK, one client per review."""

    temperature: float = 0.1

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def review(
        self, request: ReviewRequest, api_key: str, model: str
    ) -> ReviewResult:
        prompt = build_user_prompt(
            request.pr_title, request.diff, request.custom_instructions
        )

        async with AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            max_retries=0,
            http_client=httpx.AsyncClient(timeout=self.timeout, transport=self.transport),
        ) as client:
            response = await client.chat.completions.create(
                model=model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )

        content = response.choices[0].message.content if response.choices else None
        summary, findings = parse_review_response(content or "")

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            )
        return ReviewResult(summary=summary, findings=findings, usage=usage)


class AnthropicReviewGenerator(HTTPReviewGenerator):
    """Messages API."""

    base_url = "https://api.anthropic.com/v1"
    max_tokens = 4096

    def build_request(self, prompt, api_key, model):
        return (
            f"{self.base_url}/messages",
            {"x-api-key": api_key, "anthropic-version": "2023-06-01"},
            {
                "model": model,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "system": SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

    def extract_text(self, data):
        content = data.get("content") or []
        if content and content[0].get("type") == "text":
            return content[0].get("text", "")
        return ""

    def extract_usage(self, data):
        usage = data.get("usage") or {}
        return TokenUsage(
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
        )


class GeminiReviewGenerator(HTTPReviewGenerator):
    """Generative Language API (generateContent)."""

    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def build_request(self, prompt, api_key, model):
        return (
            f"{self.base_url}/models/{model}:generateContent",
            {"x-goog-api-key": api_key},
            {
                "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"temperature": self.temperature},
            },
        )

    def extract_text(self, data):
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def extract_usage(self, data):
        usage = data.get("usageMetadata")
        if not usage:
            return None
        return TokenUsage(
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
        )
