"""
fal.ai queue integration — ByteDance Seedance lite image-to-video.

Fast and cost-efficient; the default animation provider.
"""

import os
import logging
import asyncio

import httpx

from .pipeline.models import AnimationOptions, AnimationResult

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

FAL_API_KEY = os.getenv("FAL_KEY", "")
SEEDANCE_MODEL = "fal-ai/bytedance/seedance/v1/lite/image-to-video"
FAL_QUEUE_BASE = "https://queue.fal.run"

POLL_INTERVAL = 5  # seconds
MAX_POLL_ATTEMPTS = 120  # 10 minutes max


def _fal_headers(api_key: str) -> dict:
    return {
        "Authorization": f"Key {api_key}",
        "Content-Type": "application/json",
    }


class SeedanceProvider:
    """ByteDance Seedance lite through the fal.ai queue API."""

    name = "bytedance"

    def __init__(self, api_key: str = "", model: str = SEEDANCE_MODEL):
        self.api_key = api_key or FAL_API_KEY
        self.model = model

    def build_payload(self, image_url: str, prompt: str, options: AnimationOptions) -> dict:
        # Seedance lite renders 5s or 10s clips
        duration = 10 if options.duration > 7 else 5
        payload = {
            "prompt": prompt,
            "image_url": image_url,
            "resolution": options.resolution if options.resolution in ("480p", "720p", "1080p") else "720p",
            "duration": str(duration),
            "camera_fixed": options.camera_fixed,
            "seed": options.seed if options.seed is not None else -1,
        }
        if options.end_image_url:
            payload["end_image_url"] = options.end_image_url
        return payload

    async def generate(self, image_url: str, prompt: str, options: AnimationOptions) -> AnimationResult:
        if not self.api_key:
            raise RuntimeError("FAL_KEY not set")

        payload = self.build_payload(image_url, prompt, options)
        headers = _fal_headers(self.api_key)

        async with httpx.AsyncClient(timeout=30) as client:
            submit_resp = await client.post(f"{FAL_QUEUE_BASE}/{self.model}", headers=headers, json=payload)
            submit_resp.raise_for_status()
            submit_data = submit_resp.json()

        request_id = submit_data.get("request_id")
        if not request_id:
            raise RuntimeError(f"Seedance submit failed — no request_id: {submit_data}")
        logger.info(f"Seedance animation submitted: request_id={request_id}")

        status_url = submit_data.get("status_url") or f"{FAL_QUEUE_BASE}/{self.model}/requests/{request_id}/status"
        result_url = submit_data.get("response_url") or f"{FAL_QUEUE_BASE}/{self.model}/requests/{request_id}"

        for attempt in range(MAX_POLL_ATTEMPTS):
            await asyncio.sleep(POLL_INTERVAL)

            async with httpx.AsyncClient(timeout=15) as client:
                status_resp = await client.get(status_url, headers=headers)
                status_resp.raise_for_status()
                status_data = status_resp.json()

            status = status_data.get("status", "")
            logger.info(f"Seedance poll #{attempt + 1}: status={status}")

            if status == "COMPLETED":
                async with httpx.AsyncClient(timeout=15) as client:
                    result_resp = await client.get(result_url, headers=headers)
                    result_resp.raise_for_status()
                    result_data = result_resp.json()

                video_url = (result_data.get("video") or {}).get("url")
                if not video_url:
                    raise RuntimeError(f"Seedance completed but no video in response: {result_data}")

                return AnimationResult(
                    video_url=video_url,
                    provider=self.name,
                    metadata={
                        "seed": result_data.get("seed"),
                        "duration": int(payload["duration"]),
                        "resolution": payload["resolution"],
                        "request_id": request_id,
                    },
                )

            if status in ("FAILED", "ERROR"):
                error = status_data.get("error", "Unknown Seedance error")
                raise RuntimeError(f"Seedance animation failed: {error}")

        raise TimeoutError(f"Seedance animation timed out after {MAX_POLL_ATTEMPTS * POLL_INTERVAL}s")
