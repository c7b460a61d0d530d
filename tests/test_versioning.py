"""Tests for the in-memory version store."""

import asyncio

import pytest

from bulkgen.pipeline.errors import NotFoundError, VersionNotFoundError
from bulkgen.pipeline.models import Scene, SceneVersion, VersionKind, VersionPayload
from bulkgen.pipeline.repository import MemoryRepository
from bulkgen.pipeline.versioning import MemoryVersionStore, scene_pointer_fields


async def _setup(*scene_ids: str):
    repo = MemoryRepository()
    for order, scene_id in enumerate(scene_ids or ("s1",)):
        await repo.create_scene(Scene(id=scene_id, item_id="item-1", order=order))
    return repo, MemoryVersionStore(repo)


def image(n: int, score: float = 9.0) -> VersionPayload:
    return VersionPayload(url=f"https://cdn.test/img-{n}.png", prompt=f"prompt {n}", quality_score=score)


class TestAddVersion:
    def test_numbers_start_at_one_and_are_gap_free(self):
        async def scenario():
            repo, store = await _setup()
            for n in range(1, 4):
                await store.add_version("s1", VersionKind.IMAGE, image(n))
            return await store.list_versions("s1", VersionKind.IMAGE)

        versions = asyncio.run(scenario())
        assert [v.version for v in versions] == [1, 2, 3]

    def test_new_version_is_the_only_active_one(self):
        async def scenario():
            repo, store = await _setup()
            await store.add_version("s1", VersionKind.IMAGE, image(1))
            await store.add_version("s1", VersionKind.IMAGE, image(2))
            return await store.list_versions("s1", VersionKind.IMAGE), await repo.get_scene("s1")

        versions, scene = asyncio.run(scenario())
        assert [v.is_active for v in versions] == [False, True]
        assert scene.image_url == "https://cdn.test/img-2.png"
        assert scene.prompt == "prompt 2"

    def test_kinds_are_numbered_independently(self):
        async def scenario():
            repo, store = await _setup()
            await store.add_version("s1", VersionKind.IMAGE, image(1))
            await store.add_version("s1", VersionKind.IMAGE, image(2))
            anim = await store.add_version("s1", VersionKind.ANIMATION, VersionPayload(
                url="https://cdn.test/a.mp4", prompt="sway", provider="bytedance", duration=5,
            ))
            return anim, await repo.get_scene("s1"), await store.list_versions("s1")

        anim, scene, everything = asyncio.run(scenario())
        assert anim.version == 1
        assert scene.animation_url == "https://cdn.test/a.mp4"
        assert scene.animation_provider == "bytedance"
        assert scene.image_url == "https://cdn.test/img-2.png"
        assert [(v.kind, v.version) for v in everything] == [
            (VersionKind.IMAGE, 1), (VersionKind.IMAGE, 2), (VersionKind.ANIMATION, 1),
        ]

    def test_unknown_scene(self):
        async def scenario():
            repo, store = await _setup()
            await store.add_version("missing", VersionKind.IMAGE, image(1))

        with pytest.raises(NotFoundError):
            asyncio.run(scenario())

    def test_concurrent_adds_stay_consistent(self):
        async def scenario():
            repo, store = await _setup()
            await asyncio.gather(*(store.add_version("s1", VersionKind.IMAGE, image(n)) for n in range(10)))
            return await store.list_versions("s1", VersionKind.IMAGE)

        versions = asyncio.run(scenario())
        assert sorted(v.version for v in versions) == list(range(1, 11))
        assert sum(v.is_active for v in versions) == 1


class TestActivate:
    def test_activate_older_version_repoints_scene(self):
        async def scenario():
            repo, store = await _setup()
            first = await store.add_version("s1", VersionKind.IMAGE, image(1))
            await store.add_version("s1", VersionKind.IMAGE, image(2))
            await store.activate("s1", VersionKind.IMAGE, first.id)
            return (
                await store.list_versions("s1", VersionKind.IMAGE),
                await repo.get_scene("s1"),
                await store.active_version("s1", VersionKind.IMAGE),
            )

        versions, scene, active = asyncio.run(scenario())
        assert [v.is_active for v in versions] == [True, False]
        assert scene.image_url == "https://cdn.test/img-1.png"
        assert active.version == 1

    def test_numbering_continues_after_activation(self):
        async def scenario():
            repo, store = await _setup()
            first = await store.add_version("s1", VersionKind.IMAGE, image(1))
            await store.add_version("s1", VersionKind.IMAGE, image(2))
            await store.activate("s1", VersionKind.IMAGE, first.id)
            return await store.add_version("s1", VersionKind.IMAGE, image(3))

        assert asyncio.run(scenario()).version == 3

    def test_version_of_another_scene_is_rejected(self):
        async def scenario():
            repo, store = await _setup("s1", "s2")
            await store.add_version("s1", VersionKind.IMAGE, image(1))
            other = await store.add_version("s2", VersionKind.IMAGE, image(2))
            try:
                await store.activate("s1", VersionKind.IMAGE, other.id)
            finally:
                scene = await repo.get_scene("s1")
            return scene

        with pytest.raises(VersionNotFoundError):
            asyncio.run(scenario())

    def test_version_of_another_kind_is_rejected(self):
        async def scenario():
            repo, store = await _setup()
            img = await store.add_version("s1", VersionKind.IMAGE, image(1))
            await store.activate("s1", VersionKind.ANIMATION, img.id)

        with pytest.raises(VersionNotFoundError):
            asyncio.run(scenario())


class TestPointers:
    def test_image_pointer_fields(self):
        version = SceneVersion(scene_id="s1", kind=VersionKind.IMAGE, version=1, url="u", prompt="p")
        assert scene_pointer_fields(version) == {"image_url": "u", "prompt": "p"}

    def test_animation_pointer_fields(self):
        version = SceneVersion(
            scene_id="s1", kind=VersionKind.ANIMATION, version=1, url="v", prompt="m", provider="runway",
        )
        assert scene_pointer_fields(version) == {
            "animation_url": "v", "animation_prompt": "m", "animation_provider": "runway",
        }
