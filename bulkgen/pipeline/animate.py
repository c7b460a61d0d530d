"""
Animation Adapter — dispatches an accepted still to a video provider.

Providers come from the ProviderFactory registry:
  - bytedance: Seedance lite via fal.ai (fast, cost-efficient, default)
  - runway:    Runway via Kie.ai (cinematic)

Images in our bucket are sent as presigned URLs; the finished clip is
copied back into storage.
"""

import os
import logging
from typing import Optional

from .. import metrics
from ..provider_factory import ProviderFactory
from .errors import GenerationError
from .fallback import call_with_timeout
from .models import AnimationOptions, AnimationResult
from .storage import BlobStorage, persist_remote_artifact, resolve_access_url

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ANIMATION_TIMEOUT = float(os.getenv("ANIMATION_TIMEOUT", "960"))


class AnimationAdapter:
    def __init__(
        self,
        providers: ProviderFactory,
        storage: Optional[BlobStorage] = None,
        timeout: float = ANIMATION_TIMEOUT,
        prefix: str = "videos",
    ):
        self.providers = providers
        self.storage = storage
        self.timeout = timeout
        self.prefix = prefix

    async def generate(
        self,
        image_url: str,
        prompt: str,
        provider: Optional[str],
        options: AnimationOptions,
    ) -> AnimationResult:
        """
        Animate `image_url` with the named provider.

        Raises:
            UnsupportedProviderError: provider id not registered.
            GenerationError:          provider returned no video.
        """
        backend = self.providers.get_provider(provider)

        if self.storage is not None:
            image_url = await resolve_access_url(self.storage, image_url)
            if options.end_image_url:
                options = options.model_copy(
                    update={"end_image_url": await resolve_access_url(self.storage, options.end_image_url)}
                )

        logger.info(f"Animating with {backend.name}: duration={options.duration}s prompt={prompt[:60]}...")
        result = await call_with_timeout(
            backend.generate(image_url, prompt, options), self.timeout, f"animation_{backend.name}",
        )
        if not result.video_url:
            raise GenerationError(f"{backend.name} returned no video")

        if self.storage is not None:
            stored_url = await persist_remote_artifact(self.storage, result.video_url, self.prefix)
            result = result.model_copy(update={"video_url": stored_url})

        metrics.inc_counter(f"animations.{backend.name}")
        return result
