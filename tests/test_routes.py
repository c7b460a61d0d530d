"""HTTP surface tests against an in-memory service."""

import asyncio

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from bulkgen.pipeline.models import BatchProgress, VersionKind
from bulkgen.pipeline.orchestrator import BatchOrchestrator
from bulkgen.pipeline.routes import batch_router, scene_router
from bulkgen.pipeline.service import BulkVideoService, set_service
from bulkgen.pipeline.status_store import InMemoryStatusStore

from fakes import FakeProvider, make_pipeline, make_providers


@pytest.fixture
def service():
    providers = make_providers(FakeProvider("bytedance"), FakeProvider("runway"))
    repo, versions, pipeline = make_pipeline(providers=providers)
    store = InMemoryStatusStore()
    svc = BulkVideoService(
        repository=repo,
        versions=versions,
        status_store=store,
        pipeline=pipeline,
        orchestrator=BatchOrchestrator(repo, pipeline, store),
        providers=providers,
    )
    set_service(svc)
    yield svc
    set_service(None)


@pytest.fixture
def client(service):
    app = FastAPI()
    app.include_router(batch_router)
    app.include_router(scene_router)
    return TestClient(app)


def _create_batch(client) -> str:
    resp = client.post("/batches", json={"name": "Acme", "defaults": {"scene_count": 1}})
    assert resp.status_code == 200
    return resp.json()["id"]


def _processed_scene(service, client) -> tuple[str, str]:
    batch_id = _create_batch(client)
    client.post(f"/batches/{batch_id}/import", json={"csv_text": "text_content\nAero Kettle\n"})

    async def process():
        await service.orchestrator.run(batch_id)
        [item] = await service.repository.list_items(batch_id)
        [scene] = await service.repository.list_scenes(item.id)
        return batch_id, scene.id

    return asyncio.run(process())


class TestBatchRoutes:
    def test_create_and_import(self, client):
        batch_id = _create_batch(client)
        resp = client.post(
            f"/batches/{batch_id}/import",
            json={"csv_text": "text_content,duration\nAero Kettle,abc\n\"\"\nPremium Toaster,10\n"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["imported"] == 2
        assert body["skipped"] == 1
        assert len(body["warnings"]) == 2
        assert len(body["item_ids"]) == 2

    def test_import_appends_row_indexes(self, service, client):
        batch_id = _create_batch(client)
        client.post(f"/batches/{batch_id}/import", json={"csv_text": "text_content\nA\nB\n"})
        client.post(f"/batches/{batch_id}/import", json={"csv_text": "text_content\nC\n"})
        items = asyncio.run(service.repository.list_items(batch_id))
        assert [(i.row_index, i.text_content) for i in items] == [(0, "A"), (1, "B"), (2, "C")]

    def test_import_into_missing_batch(self, client):
        resp = client.post("/batches/nope/import", json={"csv_text": "text_content\nA\n"})
        assert resp.status_code == 404

    def test_import_without_text_column(self, client):
        batch_id = _create_batch(client)
        resp = client.post(f"/batches/{batch_id}/import", json={"csv_text": "title\nA\n"})
        assert resp.status_code == 400
        assert "text_content" in resp.json()["detail"]

    def test_status_and_cancel_unknown(self, client):
        assert client.get("/batches/nope/status").status_code == 404
        assert client.post("/batches/nope/cancel").status_code == 404

    def test_status_after_run(self, service, client):
        batch_id, _ = _processed_scene(service, client)
        resp = client.get(f"/batches/{batch_id}/status")
        assert resp.status_code == 200
        progress = BatchProgress(**resp.json())
        assert (progress.total, progress.completed, progress.finished) == (1, 1, True)


class TestSceneRoutes:
    def test_versions_and_activation(self, service, client):
        _, scene_id = _processed_scene(service, client)
        regen = client.post(f"/scenes/{scene_id}/regenerate-animation", json={"provider": "runway"})
        assert regen.status_code == 200
        assert regen.json()["version"] == 2

        versions = client.get(f"/scenes/{scene_id}/versions", params={"kind": "animation"}).json()
        assert [v["version"] for v in versions] == [1, 2]
        first = versions[0]["id"]

        resp = client.post(
            f"/scenes/{scene_id}/versions/activate", json={"kind": "animation", "version_id": first},
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is True
        scene = asyncio.run(service.repository.get_scene(scene_id))
        assert scene.animation_url == versions[0]["url"]

    def test_activate_foreign_version(self, service, client):
        _, scene_id = _processed_scene(service, client)
        resp = client.post(
            f"/scenes/{scene_id}/versions/activate",
            json={"kind": VersionKind.IMAGE.value, "version_id": "not-a-version"},
        )
        assert resp.status_code == 404

    def test_versions_of_missing_scene(self, client):
        assert client.get("/scenes/nope/versions").status_code == 404

    def test_regenerate_animation_unknown_provider(self, service, client):
        _, scene_id = _processed_scene(service, client)
        resp = client.post(f"/scenes/{scene_id}/regenerate-animation", json={"provider": "sora"})
        assert resp.status_code == 400
        assert "sora" in resp.json()["detail"]

    def test_regenerate_scene(self, service, client):
        _, scene_id = _processed_scene(service, client)
        resp = client.post(f"/scenes/{scene_id}/regenerate")
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"
        images = client.get(f"/scenes/{scene_id}/versions", params={"kind": "image"}).json()
        assert [v["is_active"] for v in images] == [False, True]


class TestServiceRuns:
    def test_background_run_and_double_start(self, service, client):
        batch_id = _create_batch(client)
        client.post(f"/batches/{batch_id}/import", json={"csv_text": "text_content\nA\nB\n"})

        async def scenario():
            await service.start_batch(batch_id)
            assert service.is_running(batch_id)
            with pytest.raises(ValueError, match="already running"):
                await service.start_batch(batch_id)
            task, _ = service._runs[batch_id]
            await task
            return service.is_running(batch_id), await service.get_status(batch_id)

        running, progress = asyncio.run(scenario())
        assert not running
        assert progress.finished and progress.completed == 2

    def test_cancel_running_batch(self, service, client):
        batch_id = _create_batch(client)
        client.post(f"/batches/{batch_id}/import", json={"csv_text": "text_content\nA\nB\nC\nD\n"})

        async def scenario():
            await service.start_batch(batch_id, concurrency=1)
            assert service.cancel_batch(batch_id)
            task, _ = service._runs[batch_id]
            await task
            return await service.repository.list_items(batch_id)

        items = asyncio.run(scenario())
        assert all(i.status.value == "pending" for i in items)
        assert not service.cancel_batch(batch_id)
