"""Tests for batch orchestration: concurrency, isolation, progress, render dispatch."""

import asyncio

from bulkgen import metrics
from bulkgen.pipeline.errors import PipelineCancelled
from bulkgen.pipeline.models import Batch, BatchDefaults, WorkItem, WorkItemStatus
from bulkgen.pipeline.orchestrator import BatchOrchestrator
from bulkgen.pipeline.repository import MemoryRepository
from bulkgen.pipeline.status_store import InMemoryStatusStore

from fakes import FakeImageGenerator, make_pipeline


class TrackingPipeline:
    """Stand-in item pipeline that records concurrency and scripted outcomes."""

    def __init__(self, repo, fail_rows=(), crash_rows=(), delay=0.01):
        self.repo = repo
        self.fail_rows = set(fail_rows)
        self.crash_rows = set(crash_rows)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.processed: list[int] = []

    async def process(self, item, batch, cancel_event=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.processed.append(item.row_index)
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled("Generation cancelled")
            if item.row_index in self.crash_rows:
                raise RuntimeError(f"row {item.row_index} exploded")
            status = WorkItemStatus.FAILED if item.row_index in self.fail_rows else WorkItemStatus.COMPLETED
            await self.repo.update_item(item.id, status=status)
            return status
        finally:
            self.in_flight -= 1


class RecordingRenderer:
    def __init__(self):
        self.dispatched: list[str] = []

    def dispatch(self, item_id: str):
        self.dispatched.append(item_id)


async def _seed(repo, count: int, defaults=None) -> Batch:
    batch = await repo.save_batch(Batch(name="Acme", defaults=defaults or BatchDefaults()))
    await repo.create_items([
        WorkItem(batch_id=batch.id, row_index=i, text_content=f"Product {i}") for i in range(count)
    ])
    return batch


def _orchestrator(repo, pipeline, concurrency=3, on_progress=None):
    renderer = RecordingRenderer()
    store = InMemoryStatusStore()
    orch = BatchOrchestrator(repo, pipeline, store, renderer, concurrency=concurrency, on_progress=on_progress)
    return orch, store, renderer


class TestConcurrency:
    def test_never_more_than_limit_in_flight(self):
        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 8)
            pipeline = TrackingPipeline(repo)
            orch, _, _ = _orchestrator(repo, pipeline, concurrency=3)
            progress = await orch.run(batch.id)
            return pipeline, progress

        pipeline, progress = asyncio.run(scenario())
        assert pipeline.max_in_flight == 3
        assert sorted(pipeline.processed) == list(range(8))
        assert progress.completed == 8

    def test_run_level_concurrency_override(self):
        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 4)
            pipeline = TrackingPipeline(repo)
            orch, _, _ = _orchestrator(repo, pipeline, concurrency=3)
            await orch.run(batch.id, concurrency=1)
            return pipeline

        assert asyncio.run(scenario()).max_in_flight == 1


class TestIsolation:
    def test_failures_do_not_affect_siblings(self):
        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 5)
            pipeline = TrackingPipeline(repo, fail_rows={1}, crash_rows={3})
            orch, store, renderer = _orchestrator(repo, pipeline)
            progress = await orch.run(batch.id)
            return progress, await repo.list_items(batch.id), await store.get(batch.id), renderer

        progress, items, stored, renderer = asyncio.run(scenario())
        assert [i.status for i in items] == [
            WorkItemStatus.COMPLETED, WorkItemStatus.FAILED, WorkItemStatus.COMPLETED,
            WorkItemStatus.FAILED, WorkItemStatus.COMPLETED,
        ]
        assert items[3].error == "row 3 exploded"
        assert (progress.total, progress.completed, progress.failed) == (5, 3, 2)
        assert stored.finished and stored.current is None
        assert (stored.completed, stored.failed) == (3, 2)
        assert renderer.dispatched == []
        assert metrics.get_counter("items.failed") == 2

    def test_renders_dispatched_when_all_completed(self):
        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 3)
            orch, _, renderer = _orchestrator(repo, TrackingPipeline(repo))
            await orch.run(batch.id)
            return await repo.list_items(batch.id), renderer

        items, renderer = asyncio.run(scenario())
        assert sorted(renderer.dispatched) == sorted(i.id for i in items)

    def test_empty_batch_dispatches_nothing(self):
        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 0)
            orch, _, renderer = _orchestrator(repo, TrackingPipeline(repo))
            progress = await orch.run(batch.id)
            return progress, renderer

        progress, renderer = asyncio.run(scenario())
        assert progress.total == 0 and progress.finished
        assert renderer.dispatched == []


class TestProgress:
    def test_snapshots_are_monotonic(self):
        snapshots = []

        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 4)
            orch, _, _ = _orchestrator(repo, TrackingPipeline(repo, fail_rows={2}), concurrency=2,
                                       on_progress=snapshots.append)
            await orch.run(batch.id)

        asyncio.run(scenario())
        done = [s.completed + s.failed for s in snapshots]
        assert done == sorted(done)
        assert done[-1] == 4
        assert all(s.completed + s.failed <= s.total for s in snapshots)
        assert any(s.current is not None for s in snapshots)
        assert snapshots[-1].finished

    def test_rerun_only_touches_pending_items(self):
        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 3)
            pipeline = TrackingPipeline(repo, fail_rows={0})
            orch, _, _ = _orchestrator(repo, pipeline)
            await orch.run(batch.id)
            second = await orch.run(batch.id)
            return pipeline, second

        pipeline, second = asyncio.run(scenario())
        assert sorted(pipeline.processed) == [0, 1, 2]
        assert (second.total, second.completed, second.failed) == (3, 2, 1)


class TestCancellation:
    def test_cancel_stops_new_groups(self):
        async def scenario():
            repo = MemoryRepository()
            batch = await _seed(repo, 6)
            pipeline = TrackingPipeline(repo, delay=0.05)
            orch, _, renderer = _orchestrator(repo, pipeline, concurrency=2)
            event = asyncio.Event()
            run = asyncio.create_task(orch.run(batch.id, cancel_event=event))
            await asyncio.sleep(0.01)
            event.set()
            progress = await run
            return progress, await repo.list_items(batch.id), renderer

        progress, items, renderer = asyncio.run(scenario())
        statuses = [i.status for i in items]
        assert statuses[:2] == [WorkItemStatus.FAILED, WorkItemStatus.FAILED]
        assert all(i.error == "Generation cancelled" for i in items[:2])
        assert statuses[2:] == [WorkItemStatus.PENDING] * 4
        assert progress.failed == 2 and progress.finished
        assert renderer.dispatched == []


class TestEndToEnd:
    def test_real_pipeline_with_fakes(self):
        async def scenario():
            repo, _, pipeline = make_pipeline(FakeImageGenerator(fail_on=(3,)))
            batch = await _seed(repo, 3, defaults=BatchDefaults(scene_count=1))
            orch, store, renderer = _orchestrator(repo, pipeline, concurrency=2)
            progress = await orch.run(batch.id)
            return progress, await repo.list_items(batch.id), renderer

        progress, items, renderer = asyncio.run(scenario())
        assert (progress.completed, progress.failed) == (2, 1)
        assert sum(i.status == WorkItemStatus.FAILED for i in items) == 1
        assert renderer.dispatched == []
