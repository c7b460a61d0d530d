"""
Versioning Store — immutable image / animation history per scene.

Every write is one atomic unit:
  next number = max(existing) + 1 → insert active → deactivate the rest
  → point the scene at the new artifact.

Exactly one version per (scene, kind) is active after any write. Version
numbers start at 1 and are never reused.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from supabase import Client

from .errors import VersionNotFoundError
from .models import SceneVersion, VersionKind, VersionPayload
from .repository import Repository, execute, get_service_client

logger = logging.getLogger(__name__)

VERSIONS_TABLE = "scene_versions"


def scene_pointer_fields(version: SceneVersion) -> dict:
    """Scene columns that mirror the active version of its kind."""
    if version.kind == VersionKind.IMAGE:
        return {"image_url": version.url, "prompt": version.prompt}
    return {
        "animation_url": version.url,
        "animation_prompt": version.prompt,
        "animation_provider": version.provider,
    }


class VersionStore(ABC):
    @abstractmethod
    async def add_version(self, scene_id: str, kind: VersionKind, payload: VersionPayload) -> SceneVersion:
        """Append a new active version and repoint the scene."""

    @abstractmethod
    async def activate(self, scene_id: str, kind: VersionKind, version_id: str) -> SceneVersion:
        """Make an existing version the active one and repoint the scene."""

    @abstractmethod
    async def list_versions(self, scene_id: str, kind: Optional[VersionKind] = None) -> list[SceneVersion]:
        """Versions ordered by kind, then version number."""

    async def active_version(self, scene_id: str, kind: VersionKind) -> Optional[SceneVersion]:
        for version in await self.list_versions(scene_id, kind):
            if version.is_active:
                return version
        return None


class MemoryVersionStore(VersionStore):
    """Writes are serialized per (scene, kind) with an asyncio.Lock."""

    def __init__(self, repository: Repository):
        self.repository = repository
        self._versions: dict[tuple[str, VersionKind], list[SceneVersion]] = {}
        self._locks: dict[tuple[str, VersionKind], asyncio.Lock] = {}

    def _lock_for(self, key: tuple[str, VersionKind]) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def add_version(self, scene_id: str, kind: VersionKind, payload: VersionPayload) -> SceneVersion:
        key = (scene_id, kind)
        async with self._lock_for(key):
            # Fails fast on an unknown scene before anything is written
            await self.repository.get_scene(scene_id)
            existing = self._versions.setdefault(key, [])
            number = max((v.version for v in existing), default=0) + 1
            version = SceneVersion(scene_id=scene_id, kind=kind, version=number, **payload.model_dump())
            for other in existing:
                other.is_active = False
            existing.append(version)
            await self.repository.update_scene(scene_id, **scene_pointer_fields(version))

        logger.info(f"[{scene_id}] {kind.value} v{number} added and activated")
        return version.model_copy()

    async def activate(self, scene_id: str, kind: VersionKind, version_id: str) -> SceneVersion:
        key = (scene_id, kind)
        async with self._lock_for(key):
            existing = self._versions.get(key, [])
            target = next((v for v in existing if v.id == version_id), None)
            if target is None:
                raise VersionNotFoundError(
                    f"Version {version_id} is not a {kind.value} version of scene {scene_id}"
                )
            for version in existing:
                version.is_active = version.id == version_id
            await self.repository.update_scene(scene_id, **scene_pointer_fields(target))

        logger.info(f"[{scene_id}] {kind.value} v{target.version} activated")
        return target.model_copy()

    async def list_versions(self, scene_id: str, kind: Optional[VersionKind] = None) -> list[SceneVersion]:
        kinds = [kind] if kind else list(VersionKind)
        out: list[SceneVersion] = []
        for k in kinds:
            out.extend(v.model_copy() for v in sorted(self._versions.get((scene_id, k), []), key=lambda v: v.version))
        return out


def _row_to_version(row: dict) -> SceneVersion:
    return SceneVersion(
        id=row["id"],
        scene_id=row["scene_id"],
        kind=row["kind"],
        version=row["version"],
        url=row["url"],
        prompt=row.get("prompt") or "",
        quality_score=row.get("quality_score"),
        provider=row.get("provider"),
        duration=row.get("duration"),
        source_image_url=row.get("source_image_url"),
        is_active=row.get("is_active", False),
        created_at=row["created_at"],
    )


class SupabaseVersionStore(VersionStore):
    """
    Postgres-side atomicity: `add_scene_version` and `activate_scene_version`
    (sql/bulk_video.sql) lock the scene row and do the whole write in one
    transaction.
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def sb(self) -> Client:
        return self._client or get_service_client()

    async def add_version(self, scene_id: str, kind: VersionKind, payload: VersionPayload) -> SceneVersion:
        result = await execute(self.sb.rpc("add_scene_version", {
            "p_scene_id": scene_id,
            "p_kind": kind.value,
            "p_payload": payload.model_dump(mode="json"),
        }))
        rows = result.data if isinstance(result.data, list) else [result.data]
        if not rows or not rows[0]:
            raise RuntimeError(f"add_scene_version returned nothing for scene {scene_id}")
        version = _row_to_version(rows[0])
        logger.info(f"[{scene_id}] {kind.value} v{version.version} added and activated")
        return version

    async def activate(self, scene_id: str, kind: VersionKind, version_id: str) -> SceneVersion:
        result = await execute(self.sb.rpc("activate_scene_version", {
            "p_scene_id": scene_id,
            "p_kind": kind.value,
            "p_version_id": version_id,
        }))
        rows = result.data if isinstance(result.data, list) else [result.data]
        if not rows or not rows[0]:
            raise VersionNotFoundError(
                f"Version {version_id} is not a {kind.value} version of scene {scene_id}"
            )
        return _row_to_version(rows[0])

    async def list_versions(self, scene_id: str, kind: Optional[VersionKind] = None) -> list[SceneVersion]:
        query = self.sb.table(VERSIONS_TABLE).select("*").eq("scene_id", scene_id)
        if kind:
            query = query.eq("kind", kind.value)
        result = await execute(query.order("kind").order("version"))
        return [_row_to_version(row) for row in result.data or []]
