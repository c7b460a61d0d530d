import asyncio

from bulkgen.pipeline.models import BatchProgress
from bulkgen.pipeline.status_store import InMemoryStatusStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestInMemoryStatusStore:
    def test_put_and_get_returns_copy(self):
        async def scenario():
            store = InMemoryStatusStore(ttl_seconds=60)
            progress = BatchProgress(batch_id="b1", total=3, completed=1)
            await store.put(progress)
            progress.completed = 3
            return await store.get("b1")

        stored = asyncio.run(scenario())
        assert stored.completed == 1

    def test_unknown_batch(self):
        assert asyncio.run(InMemoryStatusStore().get("nope")) is None

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()

        async def scenario():
            store = InMemoryStatusStore(ttl_seconds=60, clock=clock)
            await store.put(BatchProgress(batch_id="b1"))
            clock.now += 59
            fresh = await store.get("b1")
            clock.now += 2
            stale = await store.get("b1")
            return fresh, stale, len(store)

        fresh, stale, remaining = asyncio.run(scenario())
        assert fresh is not None
        assert stale is None
        assert remaining == 0

    def test_put_refreshes_ttl(self):
        clock = FakeClock()

        async def scenario():
            store = InMemoryStatusStore(ttl_seconds=60, clock=clock)
            await store.put(BatchProgress(batch_id="b1"))
            clock.now += 50
            await store.put(BatchProgress(batch_id="b1", completed=1))
            clock.now += 50
            return await store.get("b1")

        assert asyncio.run(scenario()).completed == 1

    def test_sweep_removes_only_expired(self):
        clock = FakeClock()

        async def scenario():
            store = InMemoryStatusStore(ttl_seconds=60, clock=clock)
            await store.put(BatchProgress(batch_id="old"))
            clock.now += 45
            await store.put(BatchProgress(batch_id="new"))
            clock.now += 30
            removed = await store.sweep()
            return removed, len(store), await store.get("new")

        removed, remaining, new = asyncio.run(scenario())
        assert removed == 1
        assert remaining == 1
        assert new is not None

    def test_sweeper_task_runs_and_stops(self):
        clock = FakeClock()

        async def scenario():
            store = InMemoryStatusStore(ttl_seconds=10, clock=clock)
            await store.put(BatchProgress(batch_id="b1"))
            clock.now += 11
            store.start_sweeper(interval=0.01)
            await asyncio.sleep(0.05)
            await store.stop_sweeper()
            return len(store)

        assert asyncio.run(scenario()) == 0
