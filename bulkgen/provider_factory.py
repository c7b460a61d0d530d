from typing import Callable, Protocol

from .fal import SeedanceProvider
from .kie import RunwayProvider
from .pipeline.errors import UnsupportedProviderError
from .pipeline.models import DEFAULT_ANIMATION_PROVIDER, AnimationOptions, AnimationResult


class AnimationProvider(Protocol):
    name: str

    async def generate(self, image_url: str, prompt: str, options: AnimationOptions) -> AnimationResult:
        ...


class ProviderFactory:
    """Registry of animation providers keyed by provider id."""

    def __init__(self):
        self._factories: dict[str, Callable[[], AnimationProvider]] = {}
        self._instances: dict[str, AnimationProvider] = {}

    def register(self, name: str, factory: Callable[[], AnimationProvider]):
        self._factories[name] = factory
        self._instances.pop(name, None)

    def get_provider(self, name: str | None) -> AnimationProvider:
        name = name or DEFAULT_ANIMATION_PROVIDER
        if name not in self._factories:
            raise UnsupportedProviderError(
                f"Unsupported animation provider: {name}. Valid: {self.available()}"
            )
        if name not in self._instances:
            self._instances[name] = self._factories[name]()
        return self._instances[name]

    def available(self) -> list[str]:
        return sorted(self._factories)

    @staticmethod
    def default() -> "ProviderFactory":
        factory = ProviderFactory()
        factory.register("bytedance", SeedanceProvider)   # fast, cost-efficient
        factory.register("runway", RunwayProvider)        # cinematic
        return factory
