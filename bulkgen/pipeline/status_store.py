"""
Batch progress status store.

Injected into the orchestrator; entries expire after BATCH_STATUS_TTL
seconds so finished batches do not accumulate.

  - InMemoryStatusStore: lock-protected dict with a periodic sweep
  - RedisStatusStore:    JSON value per batch with a Redis TTL
"""

import os
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis

from .models import BatchProgress

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

BATCH_STATUS_TTL = int(os.getenv("BATCH_STATUS_TTL", "86400"))   # 24 hours
SWEEP_INTERVAL = int(os.getenv("STATUS_SWEEP_INTERVAL", "300"))
KEY_PREFIX = "bulk:progress:"


class StatusStore(ABC):
    @abstractmethod
    async def put(self, progress: BatchProgress) -> None: ...

    @abstractmethod
    async def get(self, batch_id: str) -> Optional[BatchProgress]: ...

    @abstractmethod
    async def sweep(self) -> int:
        """Drop expired entries; returns how many were removed."""


class InMemoryStatusStore(StatusStore):
    def __init__(self, ttl_seconds: int = BATCH_STATUS_TTL, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[BatchProgress, float]] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def _expired(self, stored_at: float) -> bool:
        return self._clock() - stored_at > self.ttl_seconds

    async def put(self, progress: BatchProgress) -> None:
        async with self._lock:
            self._entries[progress.batch_id] = (progress.model_copy(deep=True), self._clock())

    async def get(self, batch_id: str) -> Optional[BatchProgress]:
        async with self._lock:
            entry = self._entries.get(batch_id)
            if entry is None:
                return None
            progress, stored_at = entry
            if self._expired(stored_at):
                del self._entries[batch_id]
                return None
            return progress.model_copy(deep=True)

    async def sweep(self) -> int:
        async with self._lock:
            expired = [k for k, (_, stored_at) in self._entries.items() if self._expired(stored_at)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.info(f"Swept {len(expired)} expired batch status entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def start_sweeper(self, interval: float = SWEEP_INTERVAL):
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(interval))

    async def stop_sweeper(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def _sweep_loop(self, interval: float):
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Status sweep failed: {e}", exc_info=True)


class RedisStatusStore(StatusStore):
    """
    Redis owns expiry (SET … EX), so sweep() has nothing to do. The client is
    synchronous; calls run in a worker thread.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = BATCH_STATUS_TTL):
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def put(self, progress: BatchProgress) -> None:
        await asyncio.to_thread(
            self.client.set, f"{KEY_PREFIX}{progress.batch_id}", progress.model_dump_json(), ex=self.ttl_seconds,
        )

    async def get(self, batch_id: str) -> Optional[BatchProgress]:
        raw = await asyncio.to_thread(self.client.get, f"{KEY_PREFIX}{batch_id}")
        if raw is None:
            return None
        return BatchProgress.model_validate_json(raw)

    async def sweep(self) -> int:
        return 0


def create_status_store() -> StatusStore:
    """Redis when REDIS_URL is set and reachable, otherwise in-memory."""
    redis_url = os.getenv("REDIS_URL", "")
    if redis_url:
        try:
            client = redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=5)
            client.ping()
            logger.info("Batch status store: Redis")
            return RedisStatusStore(client)
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable ({e}); using in-memory status store")
    return InMemoryStatusStore()
