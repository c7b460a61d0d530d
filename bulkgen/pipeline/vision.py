"""
Vision Analyzer — quality judgment and free-form description of stills.

Images in our bucket are handed to the vision model through presigned URLs.
"""

import os
import logging
from typing import Optional, Protocol

from .fallback import call_with_timeout
from .models import QualityAnalysis
from .storage import BlobStorage, resolve_access_url

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

VISION_TIMEOUT = float(os.getenv("VISION_TIMEOUT", "60"))


class VisionClient(Protocol):
    async def analyze(self, image_url: str, reference_prompt: str) -> QualityAnalysis:
        ...

    async def describe(self, image_url: str, instructions: Optional[str] = None) -> str:
        ...


class VisionAnalyzer:
    def __init__(
        self,
        client: Optional[VisionClient],
        storage: Optional[BlobStorage] = None,
        timeout: float = VISION_TIMEOUT,
    ):
        self.client = client
        self.storage = storage
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return self.client is not None

    async def _access_url(self, image_url: str) -> str:
        if self.storage is None:
            return image_url
        return await resolve_access_url(self.storage, image_url)

    async def analyze(self, image_url: str, reference_prompt: str) -> QualityAnalysis:
        """Score the image against its prompt. Errors propagate to the gate."""
        if self.client is None:
            raise RuntimeError("Vision capability not configured")
        url = await self._access_url(image_url)
        return await call_with_timeout(
            self.client.analyze(url, reference_prompt), self.timeout, "vision_analyze",
        )

    async def describe(self, image_url: str, instructions: Optional[str] = None) -> str:
        """Scene description, or "" when vision is unavailable or fails."""
        if self.client is None:
            return ""
        try:
            url = await self._access_url(image_url)
            return await call_with_timeout(
                self.client.describe(url, instructions), self.timeout, "vision_describe",
            )
        except Exception as e:
            logger.warning(f"Vision description failed for {image_url[:80]}: {e}")
            return ""
