"""
BatchOrchestrator — runs every pending item of a batch.

Items are processed in fixed-size groups; a group is fully settled before
the next one starts, so at most `concurrency` items are ever in flight.
One item's failure never affects its siblings. Progress goes to the status
store (and an optional callback) through a single lock. When every item of
the batch ends up completed, each item is sent to the renderer
fire-and-forget.
"""

import os
import asyncio
import inspect
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .. import metrics
from .errors import PipelineCancelled
from .item_pipeline import ItemPipeline
from .models import Batch, BatchProgress, CurrentItem, WorkItem, WorkItemStatus
from .render import RenderDispatcher
from .repository import Repository
from .status_store import StatusStore

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", "3"))

ProgressCallback = Callable[[BatchProgress], Any]


class BatchOrchestrator:
    """
    Usage:
        orchestrator = BatchOrchestrator(repository, pipeline, status_store, renderer)
        progress = await orchestrator.run(batch_id)
    """

    def __init__(
        self,
        repository: Repository,
        pipeline: ItemPipeline,
        status_store: StatusStore,
        renderer: Optional[RenderDispatcher] = None,
        concurrency: int = BATCH_CONCURRENCY,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.repository = repository
        self.pipeline = pipeline
        self.status_store = status_store
        self.renderer = renderer
        self.concurrency = max(1, concurrency)
        self.on_progress = on_progress
        self._progress_lock = asyncio.Lock()

    async def _publish(self, progress: BatchProgress, **changes):
        """Apply `changes` and push a snapshot; the only writer of progress."""
        async with self._progress_lock:
            for key, value in changes.items():
                setattr(progress, key, value)
            progress.updated_at = datetime.now(timezone.utc)
            snapshot = progress.model_copy(deep=True)
            await self.status_store.put(snapshot)
            if self.on_progress is not None:
                result = self.on_progress(snapshot)
                if inspect.isawaitable(result):
                    await result

    async def _settle(self, progress: BatchProgress, status: WorkItemStatus):
        async with self._progress_lock:
            if status == WorkItemStatus.COMPLETED:
                progress.completed += 1
            else:
                progress.failed += 1
        await self._publish(progress)

    async def run(
        self,
        batch_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        concurrency: Optional[int] = None,
    ) -> BatchProgress:
        """
        Process all pending items of the batch.

        Re-running picks up only items still pending. Setting `cancel_event`
        stops new groups from starting; in-flight items stop at their next
        scene or gate attempt.
        """
        group_size = max(1, concurrency or self.concurrency)
        batch = await self.repository.get_batch(batch_id)
        items = await self.repository.list_items(batch_id)
        pending = [item for item in items if item.status == WorkItemStatus.PENDING]

        progress = BatchProgress(
            batch_id=batch_id,
            total=len(items),
            completed=sum(1 for i in items if i.status == WorkItemStatus.COMPLETED),
            failed=sum(1 for i in items if i.status == WorkItemStatus.FAILED),
        )
        await self._publish(progress)
        logger.info(f"[{batch_id}] Batch started: {len(pending)} pending of {len(items)} items, groups of {group_size}")

        for start in range(0, len(pending), group_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"[{batch_id}] Cancelled; {len(pending) - start} items left pending")
                break
            group = pending[start:start + group_size]
            await asyncio.gather(*(
                self._run_item(batch, item, start + offset, progress, cancel_event)
                for offset, item in enumerate(group)
            ))

        await self._finish(batch_id, progress)
        logger.info(
            f"[{batch_id}] Batch finished: {progress.completed} completed, "
            f"{progress.failed} failed of {progress.total}"
        )
        return progress.model_copy(deep=True)

    async def _run_item(
        self,
        batch: Batch,
        item: WorkItem,
        index: int,
        progress: BatchProgress,
        cancel_event: Optional[asyncio.Event],
    ):
        await self._publish(progress, current=CurrentItem(id=item.id, index=index, status=WorkItemStatus.PROCESSING))
        metrics.add_gauge("items_in_flight", 1)
        try:
            status = await self.pipeline.process(item, batch, cancel_event)
        except PipelineCancelled:
            status = await self._mark_failed(item, "Generation cancelled")
        except Exception as e:
            logger.error(f"[{item.id}] Item failed: {e}", exc_info=True)
            metrics.record_error("item", e.__class__.__name__, str(e), item.id)
            status = await self._mark_failed(item, str(e) or e.__class__.__name__)
        finally:
            metrics.add_gauge("items_in_flight", -1)

        metrics.inc_counter(f"items.{status.value}")
        await self._settle(progress, status)

    async def _mark_failed(self, item: WorkItem, message: str) -> WorkItemStatus:
        try:
            await self.repository.update_item(item.id, status=WorkItemStatus.FAILED, error=message)
        except Exception as e:
            logger.error(f"[{item.id}] Could not record failure: {e}", exc_info=True)
        return WorkItemStatus.FAILED

    async def _finish(self, batch_id: str, progress: BatchProgress):
        items = await self.repository.list_items(batch_id)
        await self._publish(progress, current=None, finished=True)

        if not items or any(i.status != WorkItemStatus.COMPLETED for i in items):
            return
        if self.renderer is None:
            return
        logger.info(f"[{batch_id}] All {len(items)} items completed; dispatching renders")
        for item in items:
            self.renderer.dispatch(item.id)
