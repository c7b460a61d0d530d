"""Supabase and Redis backed stores against recording fakes of their clients."""

import asyncio
import threading

import pytest

from bulkgen.pipeline.errors import NotFoundError, VersionNotFoundError
from bulkgen.pipeline.models import BatchProgress, VersionKind, VersionPayload
from bulkgen.pipeline.repository import SupabaseRepository
from bulkgen.pipeline.status_store import RedisStatusStore
from bulkgen.pipeline.versioning import SupabaseVersionStore


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable postgrest-style query; execute() records the calling thread."""

    def __init__(self, client, target, data):
        self.client = client
        self.target = target
        self.data = data
        self.steps: list[tuple] = []

    def __getattr__(self, name):
        def step(*args, **kwargs):
            self.steps.append((name, args))
            return self
        return step

    def execute(self):
        self.client.executed.append((self.target, self.steps, threading.get_ident()))
        return FakeResult(self.data)


class FakeSupabase:
    def __init__(self, tables=None, rpcs=None):
        self.tables = tables or {}
        self.rpcs = rpcs or {}
        self.executed: list[tuple] = []

    def table(self, name):
        return FakeQuery(self, name, self.tables.get(name, []))

    def rpc(self, name, params):
        query = FakeQuery(self, name, self.rpcs.get(name))
        query.steps.append(("params", (params,)))
        return query


class FakeRedis:
    def __init__(self):
        self.values: dict[str, str] = {}
        self.calls: list[tuple[str, int]] = []

    def set(self, key, value, ex=None):
        self.calls.append(("set", threading.get_ident()))
        self.values[key] = value

    def get(self, key):
        self.calls.append(("get", threading.get_ident()))
        return self.values.get(key)


def run_with_loop_thread(coro):
    """Run `coro`, returning its result and the event-loop thread id."""
    async def scenario():
        return await coro, threading.get_ident()
    return asyncio.run(scenario())


VERSION_ROW = {
    "id": "v-2",
    "scene_id": "scene-1",
    "kind": "image",
    "version": 2,
    "url": "https://assets.test/bulk/images/2.png",
    "is_active": True,
    "created_at": "2026-01-05T10:00:00+00:00",
}


class TestSupabaseRepository:
    def test_queries_run_off_the_event_loop(self):
        client = FakeSupabase(tables={"bulk_batches": [{"id": "b-1", "name": "Acme"}]})
        batch, loop_thread = run_with_loop_thread(SupabaseRepository(client).get_batch("b-1"))
        assert batch.name == "Acme"
        [(target, steps, thread)] = client.executed
        assert target == "bulk_batches"
        assert ("eq", ("id", "b-1")) in steps
        assert thread != loop_thread

    def test_missing_batch(self):
        with pytest.raises(NotFoundError):
            asyncio.run(SupabaseRepository(FakeSupabase()).get_batch("nope"))


class TestSupabaseVersionStore:
    def test_add_version_calls_rpc_off_loop(self):
        client = FakeSupabase(rpcs={"add_scene_version": [VERSION_ROW]})
        store = SupabaseVersionStore(client)
        version, loop_thread = run_with_loop_thread(store.add_version(
            "scene-1", VersionKind.IMAGE, VersionPayload(url=VERSION_ROW["url"]),
        ))
        assert (version.version, version.is_active) == (2, True)
        [(target, steps, thread)] = client.executed
        assert target == "add_scene_version"
        assert steps[0][1][0]["p_kind"] == "image"
        assert thread != loop_thread

    def test_activate_foreign_version(self):
        store = SupabaseVersionStore(FakeSupabase(rpcs={"activate_scene_version": None}))
        with pytest.raises(VersionNotFoundError):
            asyncio.run(store.activate("scene-1", VersionKind.IMAGE, "v-9"))


class TestRedisStatusStore:
    def test_put_and_get_run_off_the_event_loop(self):
        client = FakeRedis()
        store = RedisStatusStore(client, ttl_seconds=60)

        async def scenario():
            await store.put(BatchProgress(batch_id="b-1", total=3, completed=1))
            return await store.get("b-1"), threading.get_ident()

        progress, loop_thread = asyncio.run(scenario())
        assert (progress.total, progress.completed) == (3, 1)
        assert [name for name, _ in client.calls] == ["set", "get"]
        assert all(thread != loop_thread for _, thread in client.calls)

    def test_missing_key(self):
        assert asyncio.run(RedisStatusStore(FakeRedis()).get("nope")) is None
