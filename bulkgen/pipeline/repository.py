"""
Durable store for batches, work items and scenes.

Two implementations of the same interface:
  - MemoryRepository:   dict-backed, for local runs and tests
  - SupabaseRepository: service-role client (bypasses RLS), tables defined
                        in sql/bulk_video.sql

Version history lives in versioning.py.
"""

import os
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from supabase import create_client, Client

from .errors import NotFoundError
from .models import (
    Batch,
    BatchDefaults,
    ItemOverrides,
    Scene,
    SceneStatus,
    WorkItem,
    WorkItemStatus,
)

logger = logging.getLogger(__name__)

# ── Tables ───────────────────────────────────────────────────────────────────

BATCHES_TABLE = "bulk_batches"
ITEMS_TABLE = "bulk_video_items"
SCENES_TABLE = "bulk_video_scenes"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in fields.items()}


class Repository(ABC):
    @abstractmethod
    async def get_batch(self, batch_id: str) -> Batch: ...

    @abstractmethod
    async def save_batch(self, batch: Batch) -> Batch: ...

    @abstractmethod
    async def list_items(self, batch_id: str) -> list[WorkItem]: ...

    @abstractmethod
    async def get_item(self, item_id: str) -> WorkItem: ...

    @abstractmethod
    async def create_items(self, items: list[WorkItem]) -> list[WorkItem]: ...

    @abstractmethod
    async def update_item(self, item_id: str, **fields) -> None: ...

    @abstractmethod
    async def create_scene(self, scene: Scene) -> Scene: ...

    @abstractmethod
    async def get_scene(self, scene_id: str) -> Scene: ...

    @abstractmethod
    async def list_scenes(self, item_id: str) -> list[Scene]: ...

    @abstractmethod
    async def update_scene(self, scene_id: str, **fields) -> None: ...


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════

class MemoryRepository(Repository):
    def __init__(self):
        self._batches: dict[str, Batch] = {}
        self._items: dict[str, WorkItem] = {}
        self._scenes: dict[str, Scene] = {}
        self._lock = asyncio.Lock()

    async def get_batch(self, batch_id: str) -> Batch:
        batch = self._batches.get(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch {batch_id} not found")
        return batch.model_copy(deep=True)

    async def save_batch(self, batch: Batch) -> Batch:
        self._batches[batch.id] = batch.model_copy(deep=True)
        return batch

    async def list_items(self, batch_id: str) -> list[WorkItem]:
        items = [i for i in self._items.values() if i.batch_id == batch_id]
        return [i.model_copy(deep=True) for i in sorted(items, key=lambda i: i.row_index)]

    async def get_item(self, item_id: str) -> WorkItem:
        item = self._items.get(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item.model_copy(deep=True)

    async def create_items(self, items: list[WorkItem]) -> list[WorkItem]:
        async with self._lock:
            for item in items:
                self._items[item.id] = item.model_copy(deep=True)
        return items

    async def update_item(self, item_id: str, **fields) -> None:
        async with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")
            self._items[item_id] = item.model_copy(update=fields)

    async def create_scene(self, scene: Scene) -> Scene:
        async with self._lock:
            self._scenes[scene.id] = scene.model_copy(deep=True)
        return scene

    async def get_scene(self, scene_id: str) -> Scene:
        scene = self._scenes.get(scene_id)
        if scene is None:
            raise NotFoundError(f"Scene {scene_id} not found")
        return scene.model_copy(deep=True)

    async def list_scenes(self, item_id: str) -> list[Scene]:
        scenes = [s for s in self._scenes.values() if s.item_id == item_id]
        return [s.model_copy(deep=True) for s in sorted(scenes, key=lambda s: s.order)]

    async def update_scene(self, scene_id: str, **fields) -> None:
        async with self._lock:
            scene = self._scenes.get(scene_id)
            if scene is None:
                raise NotFoundError(f"Scene {scene_id} not found")
            self._scenes[scene_id] = scene.model_copy(update=fields)


# ═════════════════════════════════════════════════════════════════════════════
# Supabase
# ═════════════════════════════════════════════════════════════════════════════

_service_client: Optional[Client] = None


def get_service_client() -> Client:
    """Lazy-init Supabase client using service role key."""
    global _service_client
    if _service_client is None:
        url = os.getenv("SUPABASE_URL", "")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        if not url or not key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _service_client = create_client(url, key)
    return _service_client


async def execute(query):
    """Run a blocking postgrest query off the event loop."""
    return await asyncio.to_thread(query.execute)


def _row_to_batch(row: dict) -> Batch:
    return Batch(
        id=row["id"],
        user_id=row.get("user_id") or "",
        name=row.get("name") or "",
        description=row.get("description") or "",
        defaults=BatchDefaults(**(row.get("defaults") or {})),
    )


def _row_to_item(row: dict) -> WorkItem:
    return WorkItem(
        id=row["id"],
        batch_id=row["batch_id"],
        row_index=row.get("row_index", 0),
        text_content=row.get("text_content") or "",
        product_image_url=row.get("product_image_url"),
        overrides=ItemOverrides(**(row.get("overrides") or {})),
        status=row.get("status", WorkItemStatus.PENDING.value),
        error=row.get("error"),
    )


def _row_to_scene(row: dict) -> Scene:
    return Scene(
        id=row["id"],
        item_id=row["item_id"],
        order=row.get("scene_order", 0),
        prompt=row.get("prompt") or "",
        status=row.get("status", SceneStatus.PENDING.value),
        error=row.get("error"),
        image_url=row.get("image_url"),
        animation_url=row.get("animation_url"),
        animation_prompt=row.get("animation_prompt"),
        animation_provider=row.get("animation_provider"),
    )


def _scene_columns(fields: dict[str, Any]) -> dict[str, Any]:
    fields = dict(fields)
    if "order" in fields:
        fields["scene_order"] = fields.pop("order")
    return _serialize(fields)


class SupabaseRepository(Repository):
    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def sb(self) -> Client:
        return self._client or get_service_client()

    async def get_batch(self, batch_id: str) -> Batch:
        result = await execute(self.sb.table(BATCHES_TABLE).select("*").eq("id", batch_id))
        if not result.data:
            raise NotFoundError(f"Batch {batch_id} not found")
        return _row_to_batch(result.data[0])

    async def save_batch(self, batch: Batch) -> Batch:
        await execute(self.sb.table(BATCHES_TABLE).upsert({
            "id": batch.id,
            "user_id": batch.user_id,
            "name": batch.name,
            "description": batch.description,
            "defaults": batch.defaults.model_dump(mode="json", exclude_none=True),
        }))
        return batch

    async def list_items(self, batch_id: str) -> list[WorkItem]:
        result = await execute(
            self.sb.table(ITEMS_TABLE)
            .select("*")
            .eq("batch_id", batch_id)
            .order("row_index")
        )
        return [_row_to_item(row) for row in result.data or []]

    async def get_item(self, item_id: str) -> WorkItem:
        result = await execute(self.sb.table(ITEMS_TABLE).select("*").eq("id", item_id))
        if not result.data:
            raise NotFoundError(f"Item {item_id} not found")
        return _row_to_item(result.data[0])

    async def create_items(self, items: list[WorkItem]) -> list[WorkItem]:
        if not items:
            return []
        rows = []
        for item in items:
            row = item.model_dump(mode="json", exclude={"overrides"})
            row["overrides"] = item.overrides.model_dump(mode="json", exclude_none=True)
            rows.append(row)
        await execute(self.sb.table(ITEMS_TABLE).insert(rows))
        logger.info(f"Inserted {len(rows)} items into batch {items[0].batch_id}")
        return items

    async def update_item(self, item_id: str, **fields) -> None:
        payload = _serialize(fields)
        payload["updated_at"] = _now_iso()
        await execute(self.sb.table(ITEMS_TABLE).update(payload).eq("id", item_id))

    async def create_scene(self, scene: Scene) -> Scene:
        row = _scene_columns(scene.model_dump(mode="json"))
        await execute(self.sb.table(SCENES_TABLE).insert(row))
        return scene

    async def get_scene(self, scene_id: str) -> Scene:
        result = await execute(self.sb.table(SCENES_TABLE).select("*").eq("id", scene_id))
        if not result.data:
            raise NotFoundError(f"Scene {scene_id} not found")
        return _row_to_scene(result.data[0])

    async def list_scenes(self, item_id: str) -> list[Scene]:
        result = await execute(
            self.sb.table(SCENES_TABLE)
            .select("*")
            .eq("item_id", item_id)
            .order("scene_order")
        )
        return [_row_to_scene(row) for row in result.data or []]

    async def update_scene(self, scene_id: str, **fields) -> None:
        payload = _scene_columns(fields)
        payload["updated_at"] = _now_iso()
        await execute(self.sb.table(SCENES_TABLE).update(payload).eq("id", scene_id))
