"""
Downstream render dispatch.

When a batch finishes with every item completed, each item is handed to the
multi-format renderer. Requests are fire-and-forget: the batch never waits
on them and their outcome is only logged.
"""

import os
import asyncio
import logging

import httpx

from .. import metrics

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

RENDER_SERVICE_URL = os.getenv("RENDER_SERVICE_URL", "")
RENDER_TIMEOUT = 30


class RenderDispatcher:
    def __init__(self, service_url: str = RENDER_SERVICE_URL):
        self.service_url = service_url.rstrip("/")
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, item_id: str) -> asyncio.Task:
        """Schedule a render request for one item and return immediately."""
        task = asyncio.create_task(self._render(item_id))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        metrics.inc_counter("render.dispatched")
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            metrics.inc_counter("render.failed")
            logger.error(f"Render request failed: {error}")

    async def _render(self, item_id: str):
        if not self.service_url:
            logger.warning(f"[{item_id}] RENDER_SERVICE_URL not set; skipping render")
            return
        async with httpx.AsyncClient(timeout=RENDER_TIMEOUT) as client:
            resp = await client.post(f"{self.service_url}/render", json={"item_id": item_id, "formats": "all"})
            resp.raise_for_status()
        logger.info(f"[{item_id}] Render requested")

    @property
    def pending(self) -> int:
        return len(self._tasks)
