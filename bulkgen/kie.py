"""
Kie.ai integration: text-to-image (Nano Banana) and Runway image-to-video.

Both follow the Kie.ai task model: submit → taskId → poll record endpoint.
Every request retries 429 / 5xx with exponential backoff.
"""

import os
import random
import asyncio
import logging
from typing import Optional

import httpx

from .pipeline.models import AnimationOptions, AnimationResult

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

KIE_API_KEY = os.environ.get("KIE_API_KEY", "")
KIE_API_BASE = "https://api.kie.ai/api/v1"

# ── Retry configuration ──────────────────────────────────────────────────────
MAX_RETRIES = 5
BASE_DELAY = 2.0       # seconds — doubles each retry: 2, 4, 8, 16, 32
JITTER_MAX = 1.0        # random jitter 0–1s added to each delay
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

IMAGE_POLL_INTERVAL = 5     # seconds
IMAGE_MAX_POLLS = 60        # 5 minutes max
VIDEO_POLL_INTERVAL = 10
VIDEO_MAX_POLLS = 90        # 15 minutes max

IMAGE_MODEL = os.getenv("KIE_IMAGE_MODEL", "nano_banana_pro")
RUNWAY_QUALITY = os.getenv("RUNWAY_QUALITY", "1080p")

SUPPORTED_ASPECT_RATIOS = {"1:1", "16:9", "9:16", "4:5", "4:3", "3:4"}


async def _request_with_backoff(method: str, url: str, api_key: str = "", **kwargs) -> httpx.Response:
    """
    Make an HTTP request with exponential backoff on retryable errors (429, 5xx).

    Uses: base_delay * 2^attempt + random jitter
    Max retries: 5 → delays of ~2s, 4s, 8s, 16s, 32s
    """
    headers = kwargs.pop("headers", {})
    headers.setdefault("Authorization", f"Bearer {api_key or KIE_API_KEY}")

    for attempt in range(MAX_RETRIES + 1):
        try:
            async with httpx.AsyncClient(timeout=60) as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            if attempt >= MAX_RETRIES:
                raise
            delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)
            logger.warning(
                f"Kie.ai request error on attempt {attempt + 1}/{MAX_RETRIES + 1}: {e} "
                f"— retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code not in RETRYABLE_STATUS_CODES:
            response.raise_for_status()
            return response

        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            delay = int(retry_after)
        else:
            delay = BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)

        logger.warning(
            f"Kie.ai {response.status_code} on attempt {attempt + 1}/{MAX_RETRIES + 1} "
            f"— retrying in {delay:.1f}s (url={url})"
        )
        if attempt >= MAX_RETRIES:
            response.raise_for_status()
        await asyncio.sleep(delay)

    raise RuntimeError(f"Request to {url} failed after {MAX_RETRIES + 1} attempts")


def _extract_task_id(result: dict) -> Optional[str]:
    data = result.get("data") or {}
    task_id = None
    if isinstance(data, dict):
        task_id = data.get("taskId") or data.get("task_id") or data.get("id")
    return task_id or result.get("taskId") or result.get("task_id") or result.get("id")


def _first_url(poll_data: dict) -> Optional[str]:
    results = poll_data.get("results") or poll_data.get("images") or []
    if results and isinstance(results, list):
        first = results[0]
        if isinstance(first, dict):
            return first.get("url") or first.get("imageUrl")
        if isinstance(first, str):
            return first
    response = poll_data.get("response") or {}
    if isinstance(response, dict):
        urls = response.get("resultUrls") or response.get("resultImageUrl")
        if isinstance(urls, list) and urls:
            return urls[0]
        if isinstance(urls, str):
            return urls
    return poll_data.get("imageUrl") or poll_data.get("url")


# =========================================================================
# 1. Image synthesis — Nano Banana
# =========================================================================

class KieImageClient:
    """`generate(prompt, aspect_ratio) -> url | None` via Kie.ai Nano Banana."""

    def __init__(self, api_key: str = "", model: str = IMAGE_MODEL):
        self.api_key = api_key or KIE_API_KEY
        self.model = model

    async def generate(self, prompt: str, aspect_ratio: str = "1:1") -> Optional[str]:
        if not self.api_key:
            raise RuntimeError("KIE_API_KEY not set")
        if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
            aspect_ratio = "1:1"

        payload = {
            "prompt": prompt,
            "model": self.model,
            "mode": "TEXT_TO_IMAGE",
            "aspectRatio": aspect_ratio,
        }
        logger.info(f"Kie.ai image gen request: aspect={aspect_ratio}, prompt={prompt[:60]}...")
        resp = await _request_with_backoff(
            "POST", f"{KIE_API_BASE}/nano-banana/generate", api_key=self.api_key, json=payload,
        )
        result = resp.json()

        task_id = _extract_task_id(result)
        if not task_id:
            raise RuntimeError(f"No task_id from Kie.ai image gen response: {result}")
        logger.info(f"Kie.ai image task started: {task_id}")

        for _ in range(IMAGE_MAX_POLLS):
            await asyncio.sleep(IMAGE_POLL_INTERVAL)
            status_resp = await _request_with_backoff(
                "GET", f"{KIE_API_BASE}/nano-banana/record-info",
                api_key=self.api_key, params={"taskId": task_id},
            )
            poll_data = status_resp.json().get("data") or {}
            raw_status = poll_data.get("status", "")
            success_flag = poll_data.get("successFlag")

            if raw_status in ("SUCCESS", "success") or success_flag == 1:
                output_url = _first_url(poll_data)
                if output_url:
                    logger.info(f"Kie.ai image gen complete: {output_url[:80]}")
                else:
                    logger.warning(f"Kie.ai image task {task_id} succeeded without an output URL")
                return output_url

            if raw_status in ("GENERATE_FAILED", "CREATE_TASK_FAILED", "fail") or success_flag in (2, 3):
                error_msg = poll_data.get("error") or poll_data.get("errorMessage") or poll_data.get("msg") or "Unknown"
                raise RuntimeError(f"Kie.ai image gen failed: {error_msg}")

        raise TimeoutError(f"Kie.ai image gen timed out after {IMAGE_MAX_POLLS * IMAGE_POLL_INTERVAL}s")


# =========================================================================
# 2. Animation — Runway (cinematic) via Kie.ai
# =========================================================================

class RunwayProvider:
    """Runway image-to-video through Kie.ai. Slower, cinematic motion."""

    name = "runway"

    def __init__(self, api_key: str = "", quality: str = RUNWAY_QUALITY):
        self.api_key = api_key or KIE_API_KEY
        self.quality = quality

    async def generate(self, image_url: str, prompt: str, options: AnimationOptions) -> AnimationResult:
        if not self.api_key:
            raise RuntimeError("KIE_API_KEY not set")

        # Runway accepts 5 or 10 second clips; 1080p only for 5s
        duration = 10 if options.duration > 7 else 5
        quality = "720p" if duration == 10 else self.quality
        payload = {
            "prompt": prompt,
            "imageUrl": image_url,
            "duration": duration,
            "quality": quality,
            "waterMark": "",
        }
        resp = await _request_with_backoff(
            "POST", f"{KIE_API_BASE}/runway/generate", api_key=self.api_key, json=payload,
        )
        result = resp.json()
        task_id = _extract_task_id(result)
        if not task_id:
            raise RuntimeError(f"Runway submit failed — no task_id: {result}")
        logger.info(f"Runway animation submitted: task_id={task_id}")

        for attempt in range(VIDEO_MAX_POLLS):
            await asyncio.sleep(VIDEO_POLL_INTERVAL)
            status_resp = await _request_with_backoff(
                "GET", f"{KIE_API_BASE}/runway/record-detail",
                api_key=self.api_key, params={"taskId": task_id},
            )
            record = status_resp.json().get("data") or {}
            state = str(record.get("state") or record.get("status") or "").lower()
            logger.info(f"Runway poll #{attempt + 1}: state={state}")

            if state == "success":
                video_info = record.get("videoInfo") or {}
                video_url = video_info.get("videoUrl") or record.get("videoUrl")
                if not video_url:
                    raise RuntimeError(f"Runway completed but no video in response: {record}")
                return AnimationResult(
                    video_url=video_url,
                    provider=self.name,
                    metadata={"task_id": task_id, "duration": duration, "resolution": quality},
                )
            if state == "fail":
                raise RuntimeError(f"Runway animation failed: {record.get('failMsg') or 'Unknown'}")

        raise TimeoutError(f"Runway animation timed out after {VIDEO_MAX_POLLS * VIDEO_POLL_INTERVAL}s")
