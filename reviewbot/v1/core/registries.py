from typing import Generic, Protocol, TypeVar

from reviewbot.v1.infra.jobs.schemas import ReviewRequest, ReviewResult

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def unregister(self, name: str) -> None:
        """Remove an implementation; unknown names are ignored."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot unregister '{name}' from {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations.pop(name, None)

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Review Generator Registry - language-model providers
class ReviewGenerator(Protocol):
    """Protocol for language-model providers that review a diff."""

    async def review(
        self, request: ReviewRequest, api_key: str, model: str
    ) -> ReviewResult:
        """
        Review a diff and return the summary plus line-level findings.

        Implementations raise on transport or provider errors; the caller
        decides whether the error is worth another call.
        """
        ...


class ReviewGeneratorRegistry(Registry[ReviewGenerator]):
    """Registry for review generators (openai, anthropic, gemini)."""

    def __init__(self):
        super().__init__("ReviewGenerator")


# Global registry instances (singletons)
generator_registry = ReviewGeneratorRegistry()
