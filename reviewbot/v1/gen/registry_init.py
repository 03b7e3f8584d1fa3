"""Initialize review generators in the ReviewGeneratorRegistry."""

from reviewbot.v1.core.registries import generator_registry
from reviewbot.v1.gen.providers import (
    AnthropicReviewGenerator,
    GeminiReviewGenerator,
    OpenAIReviewGenerator,
)


def init_generator_registry(timeout: float = 120.0):
    """Register all review generators with the ReviewGeneratorRegistry."""
    if generator_registry.is_frozen():
        return

    generator_registry.register("openai", OpenAIReviewGenerator(timeout=timeout))
    generator_registry.register("anthropic", AnthropicReviewGenerator(timeout=timeout))
    generator_registry.register("gemini", GeminiReviewGenerator(timeout=timeout))
