"""
BulkVideoService — wires the pipeline from the environment and exposes the
operations the HTTP routes call.

Durable store: Supabase when SUPABASE_URL is set, otherwise in-memory.
Status store:  Redis when REDIS_URL is reachable, otherwise in-memory.
AI text / vision: Gemini when GEMINI_API_KEY is set, otherwise the
deterministic fallbacks (and unverified quality acceptance).
"""

import os
import asyncio
import logging
from typing import Optional

from ..gemini import get_text_client, get_vision_client
from ..kie import KieImageClient
from ..provider_factory import ProviderFactory
from .animate import AnimationAdapter
from .animation_prompts import AnimationPromptGenerator
from .csv_import import ImportResult, parse_rows
from .image_gen import ImageGenerationAdapter
from .item_pipeline import ItemPipeline
from .models import BatchProgress, Scene, SceneVersion, VersionKind
from .orchestrator import BatchOrchestrator
from .prompt_builder import PromptBuilder
from .quality_gate import PromptImprover, QualityGate
from .render import RenderDispatcher
from .repository import MemoryRepository, Repository, SupabaseRepository
from .status_store import InMemoryStatusStore, StatusStore, create_status_store
from .storage import BlobStorage
from .versioning import MemoryVersionStore, SupabaseVersionStore, VersionStore
from .vision import VisionAnalyzer

logger = logging.getLogger(__name__)


class BulkVideoService:
    def __init__(
        self,
        repository: Repository,
        versions: VersionStore,
        status_store: StatusStore,
        pipeline: ItemPipeline,
        orchestrator: BatchOrchestrator,
        providers: ProviderFactory,
    ):
        self.repository = repository
        self.versions = versions
        self.status_store = status_store
        self.pipeline = pipeline
        self.orchestrator = orchestrator
        self.providers = providers
        self._runs: dict[str, tuple[asyncio.Task, asyncio.Event]] = {}

    @classmethod
    def from_env(cls) -> "BulkVideoService":
        if os.getenv("SUPABASE_URL"):
            repository: Repository = SupabaseRepository()
            versions: VersionStore = SupabaseVersionStore()
        else:
            logger.warning("SUPABASE_URL not set; using in-memory repository")
            repository = MemoryRepository()
            versions = MemoryVersionStore(repository)

        storage = BlobStorage()
        text = get_text_client()
        vision = VisionAnalyzer(get_vision_client(), storage)
        providers = ProviderFactory.default()

        gate = QualityGate(
            generator=ImageGenerationAdapter(KieImageClient(), storage),
            analyzer=vision if vision.available else None,
            improver=PromptImprover(text),
        )
        pipeline = ItemPipeline(
            repository=repository,
            versions=versions,
            prompt_builder=PromptBuilder(text),
            quality_gate=gate,
            vision=vision,
            animation_prompts=AnimationPromptGenerator(text),
            animator=AnimationAdapter(providers, storage),
        )
        status_store = create_status_store()
        orchestrator = BatchOrchestrator(repository, pipeline, status_store, RenderDispatcher())
        return cls(repository, versions, status_store, pipeline, orchestrator, providers)

    # ── Batches ──────────────────────────────────────────────────────────

    async def import_rows(self, batch_id: str, csv_text: str) -> ImportResult:
        await self.repository.get_batch(batch_id)
        result = parse_rows(csv_text, batch_id, self.providers.available())
        existing = await self.repository.list_items(batch_id)
        offset = max((i.row_index for i in existing), default=-1) + 1
        for item in result.items:
            item.row_index += offset
        await self.repository.create_items(result.items)
        return result

    def is_running(self, batch_id: str) -> bool:
        run = self._runs.get(batch_id)
        return run is not None and not run[0].done()

    async def start_batch(self, batch_id: str, concurrency: Optional[int] = None) -> BatchProgress:
        """Start a run in the background; returns the initial snapshot."""
        await self.repository.get_batch(batch_id)
        if self.is_running(batch_id):
            raise ValueError(f"Batch {batch_id} is already running")

        cancel_event = asyncio.Event()
        task = asyncio.create_task(self._run(batch_id, cancel_event, concurrency))
        self._runs[batch_id] = (task, cancel_event)
        return BatchProgress(batch_id=batch_id)

    async def _run(self, batch_id: str, cancel_event: asyncio.Event, concurrency: Optional[int]):
        try:
            await self.orchestrator.run(batch_id, cancel_event, concurrency)
        except Exception as e:
            logger.error(f"[{batch_id}] Batch run failed: {e}", exc_info=True)
        finally:
            self._runs.pop(batch_id, None)

    def cancel_batch(self, batch_id: str) -> bool:
        run = self._runs.get(batch_id)
        if run is None:
            return False
        run[1].set()
        return True

    async def get_status(self, batch_id: str) -> Optional[BatchProgress]:
        return await self.status_store.get(batch_id)

    # ── Scenes / versions ────────────────────────────────────────────────

    async def list_versions(self, scene_id: str, kind: Optional[VersionKind] = None) -> list[SceneVersion]:
        await self.repository.get_scene(scene_id)
        return await self.versions.list_versions(scene_id, kind)

    async def activate_version(self, scene_id: str, kind: VersionKind, version_id: str) -> SceneVersion:
        await self.repository.get_scene(scene_id)
        return await self.versions.activate(scene_id, kind, version_id)

    async def regenerate_scene(self, scene_id: str) -> Scene:
        return await self.pipeline.regenerate_scene(scene_id)

    async def regenerate_animation(
        self, scene_id: str, provider: Optional[str] = None, prompt: Optional[str] = None,
    ) -> SceneVersion:
        return await self.pipeline.regenerate_animation(scene_id, provider, prompt)

    async def start_maintenance(self):
        if isinstance(self.status_store, InMemoryStatusStore):
            self.status_store.start_sweeper()

    async def stop_maintenance(self):
        if isinstance(self.status_store, InMemoryStatusStore):
            await self.status_store.stop_sweeper()


_service: Optional[BulkVideoService] = None


def get_service() -> BulkVideoService:
    """Lazy singleton built from the environment."""
    global _service
    if _service is None:
        _service = BulkVideoService.from_env()
    return _service


def set_service(service: Optional[BulkVideoService]):
    global _service
    _service = service
