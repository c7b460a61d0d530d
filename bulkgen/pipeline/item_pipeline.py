"""
Item Pipeline — one work item through prompt → image → gate → animation.

Scenes run strictly in order. A scene failure is recorded on that scene and
the next scene is still attempted; the item status is derived from the
scene statuses once all scenes have settled.
"""

import asyncio
import logging
from typing import Optional

from .. import metrics
from .animate import AnimationAdapter
from .animation_prompts import AnimationPromptGenerator, AnimationPromptRequest
from .errors import PipelineCancelled, QualityGateError
from .fallback import check_cancelled
from .models import (
    AnimationOptions,
    Batch,
    BatchDefaults,
    ItemSettings,
    Scene,
    SceneStatus,
    SceneVersion,
    VersionKind,
    VersionPayload,
    WorkItem,
    WorkItemStatus,
)
from .prompt_builder import PromptBuilder, PromptRequest
from .quality_gate import GateAttempt, GateOutcome, GateState, QualityGate
from .repository import Repository
from .versioning import VersionStore
from .vision import VisionAnalyzer

logger = logging.getLogger(__name__)

ASPECT_RATIOS = {"16:9": 16 / 9, "9:16": 9 / 16, "4:5": 4 / 5}
ASPECT_TOLERANCE = 0.1


# ── Pure helpers ─────────────────────────────────────────────────────────────

def resolve_settings(item: WorkItem, defaults: BatchDefaults) -> ItemSettings:
    """Per field: item override, else batch default, else built-in default."""
    resolved = {}
    for name in ItemSettings.model_fields:
        value = getattr(item.overrides, name, None)
        if value is None:
            value = getattr(defaults, name, None)
        if value is not None:
            resolved[name] = value
    return ItemSettings(**resolved)


def scene_duration(settings: ItemSettings) -> int:
    return max(1, settings.duration // max(settings.scene_count, 1))


def aspect_ratio_for_formats(formats: list[str]) -> str:
    """
    Single output format → the closest of 16:9 / 9:16 / 4:5 (within 0.1);
    several formats → square so every crop is possible.
    """
    if len(formats) != 1:
        return "1:1"
    raw = formats[0].lower().replace(":", "x")
    try:
        width, height = (float(p) for p in raw.split("x", 1))
        ratio = width / height
    except (ValueError, ZeroDivisionError):
        return "1:1"
    for name, target in ASPECT_RATIOS.items():
        if abs(ratio - target) < ASPECT_TOLERANCE:
            return name
    return "1:1"


def derive_item_status(statuses: list[SceneStatus]) -> tuple[WorkItemStatus, Optional[str]]:
    """
    completed iff there is at least one scene and all completed; otherwise
    failed with a message saying how many scenes failed.
    """
    total = len(statuses)
    completed = sum(1 for s in statuses if s == SceneStatus.COMPLETED)
    if total > 0 and completed == total:
        return WorkItemStatus.COMPLETED, None
    if completed == 0:
        return WorkItemStatus.FAILED, "All scenes failed (no scenes succeeded)"
    return WorkItemStatus.FAILED, f"{total - completed} of {total} scenes failed"


# ── Pipeline ─────────────────────────────────────────────────────────────────

class ItemPipeline:
    def __init__(
        self,
        repository: Repository,
        versions: VersionStore,
        prompt_builder: PromptBuilder,
        quality_gate: QualityGate,
        vision: VisionAnalyzer,
        animation_prompts: AnimationPromptGenerator,
        animator: AnimationAdapter,
    ):
        self.repository = repository
        self.versions = versions
        self.prompt_builder = prompt_builder
        self.quality_gate = quality_gate
        self.vision = vision
        self.animation_prompts = animation_prompts
        self.animator = animator

    async def process(
        self,
        item: WorkItem,
        batch: Batch,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WorkItemStatus:
        """
        Run every scene of `item` and persist the derived item status.

        Raises:
            PipelineCancelled: the cancellation signal was set mid-item.
        """
        await self.repository.update_item(item.id, status=WorkItemStatus.PROCESSING, error=None)
        settings = resolve_settings(item, batch.defaults)
        aspect_ratio = aspect_ratio_for_formats(settings.formats)
        duration = scene_duration(settings)
        logger.info(
            f"[{item.id}] Processing row {item.row_index}: {settings.scene_count} scenes, "
            f"{duration}s each, aspect {aspect_ratio}, provider {settings.animation_provider}"
        )

        scenes = []
        for order in range(settings.scene_count):
            scenes.append(await self.repository.create_scene(Scene(item_id=item.id, order=order)))

        for scene in scenes:
            check_cancelled(cancel_event)
            try:
                await self._run_scene(scene, item, batch, settings, aspect_ratio, duration, cancel_event)
            except PipelineCancelled as e:
                await self._fail_scene(scene.id, e)
                raise
            except Exception as e:
                await self._fail_scene(scene.id, e)

        status, _ = await self.refresh_item_status(item.id)
        return status

    async def _run_scene(
        self,
        scene: Scene,
        item: WorkItem,
        batch: Batch,
        settings: ItemSettings,
        aspect_ratio: str,
        duration: int,
        cancel_event: Optional[asyncio.Event],
    ):
        prompt = await self.prompt_builder.build(PromptRequest(
            text=item.text_content,
            has_reference_image=bool(item.product_image_url),
            style=settings.image_style,
            preset_id=settings.image_style_preset,
            scene_index=scene.order,
            scene_count=settings.scene_count,
            project_name=batch.name,
            project_description=batch.description,
        ))
        await self.repository.update_scene(scene.id, prompt=prompt, status=SceneStatus.GENERATING, error=None)

        outcome = await self._generate_image(scene.id, prompt, aspect_ratio, cancel_event)
        check_cancelled(cancel_event)
        await self._animate(scene.id, item, settings, outcome.image_url, duration)

        await self.repository.update_scene(scene.id, status=SceneStatus.COMPLETED, error=None)
        metrics.inc_counter("scenes.completed")
        logger.info(f"[{scene.id}] Scene {scene.order + 1}/{settings.scene_count} completed")

    async def _generate_image(
        self,
        scene_id: str,
        prompt: str,
        aspect_ratio: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GateOutcome:
        async def _persist(attempt: GateAttempt):
            await self.versions.add_version(scene_id, VersionKind.IMAGE, VersionPayload(
                url=attempt.image_url,
                prompt=attempt.prompt,
                quality_score=attempt.analysis.score if attempt.analysis else None,
            ))

        outcome = await self.quality_gate.run(prompt, aspect_ratio, on_attempt=_persist, cancel_event=cancel_event)
        if outcome.state is GateState.FAIL:
            raise QualityGateError(outcome.message or "Image quality check failed")
        if outcome.message:
            logger.info(f"[{scene_id}] {outcome.message}")
        return outcome

    async def _animate(
        self,
        scene_id: str,
        item: WorkItem,
        settings: ItemSettings,
        image_url: str,
        duration: int,
        provider: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> SceneVersion:
        if custom_prompt:
            prompt = custom_prompt
        else:
            description = await self.vision.describe(image_url)
            prompt = await self.animation_prompts.generate(AnimationPromptRequest(
                text=item.text_content,
                style=settings.image_style,
                preset_id=settings.image_style_preset,
                vision_description=description,
                mode=settings.animation_prompt_mode,
                template_id=settings.animation_template,
                has_reference_image=bool(item.product_image_url),
            ))

        options = AnimationOptions(
            duration=duration,
            camera_fixed=settings.camera_fixed,
            end_image_url=image_url if settings.use_end_image else None,
        )
        result = await self.animator.generate(
            image_url, prompt, provider or settings.animation_provider, options,
        )
        return await self.versions.add_version(scene_id, VersionKind.ANIMATION, VersionPayload(
            url=result.video_url,
            prompt=prompt,
            provider=result.provider,
            duration=duration,
            source_image_url=image_url,
        ))

    async def _fail_scene(self, scene_id: str, error: Exception):
        message = str(error) or error.__class__.__name__
        logger.error(f"[{scene_id}] Scene failed: {message}", exc_info=True)
        metrics.inc_counter("scenes.failed")
        metrics.record_error("scene", error.__class__.__name__, message, scene_id)
        await self.repository.update_scene(scene_id, status=SceneStatus.FAILED, error=message)

    async def refresh_item_status(self, item_id: str) -> tuple[WorkItemStatus, Optional[str]]:
        scenes = await self.repository.list_scenes(item_id)
        status, error = derive_item_status([s.status for s in scenes])
        await self.repository.update_item(item_id, status=status, error=error)
        logger.info(f"[{item_id}] Item {status.value}" + (f": {error}" if error else ""))
        return status, error

    # ── Regeneration ─────────────────────────────────────────────────────

    async def _context(self, scene: Scene) -> tuple[WorkItem, Batch, ItemSettings]:
        item = await self.repository.get_item(scene.item_id)
        batch = await self.repository.get_batch(item.batch_id)
        return item, batch, resolve_settings(item, batch.defaults)

    async def regenerate_scene(self, scene_id: str) -> Scene:
        """
        New gated image from the scene's current prompt, then a new animation.
        Previous versions stay in history.
        """
        scene = await self.repository.get_scene(scene_id)
        item, batch, settings = await self._context(scene)
        prompt = scene.prompt
        if not prompt:
            prompt = await self.prompt_builder.build(PromptRequest(
                text=item.text_content,
                has_reference_image=bool(item.product_image_url),
                style=settings.image_style,
                preset_id=settings.image_style_preset,
                scene_index=scene.order,
                scene_count=settings.scene_count,
                project_name=batch.name,
                project_description=batch.description,
            ))

        await self.repository.update_scene(scene_id, status=SceneStatus.GENERATING, error=None)
        try:
            outcome = await self._generate_image(
                scene_id, prompt, aspect_ratio_for_formats(settings.formats),
            )
            await self._animate(scene_id, item, settings, outcome.image_url, scene_duration(settings))
            await self.repository.update_scene(scene_id, status=SceneStatus.COMPLETED, error=None)
        except Exception as e:
            await self._fail_scene(scene_id, e)
            raise
        finally:
            await self.refresh_item_status(item.id)

        return await self.repository.get_scene(scene_id)

    async def regenerate_animation(
        self,
        scene_id: str,
        provider: Optional[str] = None,
        custom_prompt: Optional[str] = None,
    ) -> SceneVersion:
        """Re-animate the active image, optionally with another provider or prompt."""
        scene = await self.repository.get_scene(scene_id)
        if not scene.image_url:
            raise ValueError(f"Scene {scene_id} has no image to animate")
        item, _, settings = await self._context(scene)
        # Unknown providers are rejected before the scene is touched
        self.animator.providers.get_provider(provider or settings.animation_provider)

        await self.repository.update_scene(scene_id, status=SceneStatus.GENERATING, error=None)
        try:
            version = await self._animate(
                scene_id, item, settings, scene.image_url, scene_duration(settings),
                provider=provider, custom_prompt=custom_prompt,
            )
            await self.repository.update_scene(scene_id, status=SceneStatus.COMPLETED, error=None)
        except Exception as e:
            await self._fail_scene(scene_id, e)
            raise
        finally:
            await self.refresh_item_status(item.id)

        return version
