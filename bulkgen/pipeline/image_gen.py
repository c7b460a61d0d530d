"""
Image Generation Adapter — one synthesis call plus a durable-storage copy.

No retry here; regeneration is the quality gate's job.
"""

import logging
from typing import Optional, Protocol

from .. import metrics
from .errors import GenerationError
from .storage import BlobStorage, persist_remote_artifact

logger = logging.getLogger(__name__)


class ImageSynthesizer(Protocol):
    async def generate(self, prompt: str, aspect_ratio: str) -> Optional[str]:
        ...


class ImageGenerationAdapter:
    def __init__(self, synthesizer: ImageSynthesizer, storage: BlobStorage, prefix: str = "images"):
        self.synthesizer = synthesizer
        self.storage = storage
        self.prefix = prefix

    async def generate(self, prompt: str, aspect_ratio: str) -> str:
        """
        Generate one still and return its storage URL.

        Raises:
            GenerationError: the synthesizer returned no artifact.
        """
        source_url = await self.synthesizer.generate(prompt, aspect_ratio)
        if not source_url:
            raise GenerationError("Image generation returned no image")

        url = await persist_remote_artifact(self.storage, source_url, self.prefix)
        metrics.inc_counter("images.generated")
        return url
