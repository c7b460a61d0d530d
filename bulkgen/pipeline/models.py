"""
Pydantic models and enums for the bulk video pipeline.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Statuses ─────────────────────────────────────────────────────────────────

class WorkItemStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SceneStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class VersionKind(str, Enum):
    IMAGE = "image"
    ANIMATION = "animation"


class AnimationPromptMode(str, Enum):
    AI = "ai"
    TEMPLATE = "template"


# ── Batch / Item settings ────────────────────────────────────────────────────

DEFAULT_IMAGE_STYLE = "modern product photography"
DEFAULT_FORMATS = ["9x16"]
DEFAULT_ANIMATION_PROVIDER = "bytedance"
DEFAULT_DURATION = 5
DEFAULT_SCENE_COUNT = 2


class BatchDefaults(BaseModel):
    """Project-level defaults. None means "use the built-in default"."""
    image_style: Optional[str] = None
    image_style_preset: Optional[str] = None
    formats: Optional[list[str]] = None
    animation_provider: Optional[str] = None
    duration: Optional[int] = None
    scene_count: Optional[int] = None
    camera_fixed: Optional[bool] = None
    use_end_image: Optional[bool] = None
    animation_prompt_mode: Optional[AnimationPromptMode] = None
    animation_template: Optional[str] = None


class ItemOverrides(BatchDefaults):
    """Per-row overrides, same fields as BatchDefaults."""


class ItemSettings(BaseModel):
    """Effective settings after override → batch default → built-in resolution."""
    image_style: str = DEFAULT_IMAGE_STYLE
    image_style_preset: Optional[str] = None
    formats: list[str] = Field(default_factory=lambda: list(DEFAULT_FORMATS))
    animation_provider: str = DEFAULT_ANIMATION_PROVIDER
    duration: int = DEFAULT_DURATION
    scene_count: int = DEFAULT_SCENE_COUNT
    camera_fixed: bool = False
    use_end_image: bool = False
    animation_prompt_mode: AnimationPromptMode = AnimationPromptMode.AI
    animation_template: Optional[str] = None


# ── Records ──────────────────────────────────────────────────────────────────

class Batch(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    description: str = ""
    defaults: BatchDefaults = Field(default_factory=BatchDefaults)


class WorkItem(BaseModel):
    id: str = Field(default_factory=_new_id)
    batch_id: str
    row_index: int = 0
    text_content: str
    product_image_url: Optional[str] = None
    overrides: ItemOverrides = Field(default_factory=ItemOverrides)
    status: WorkItemStatus = WorkItemStatus.PENDING
    error: Optional[str] = None


class Scene(BaseModel):
    id: str = Field(default_factory=_new_id)
    item_id: str
    order: int
    prompt: str = ""
    status: SceneStatus = SceneStatus.PENDING
    error: Optional[str] = None
    # Active-artifact pointers, kept in sync by the version store
    image_url: Optional[str] = None
    animation_url: Optional[str] = None
    animation_prompt: Optional[str] = None
    animation_provider: Optional[str] = None


class VersionPayload(BaseModel):
    """Fields supplied when appending a version."""
    url: str
    prompt: str = ""
    quality_score: Optional[float] = None
    provider: Optional[str] = None
    duration: Optional[int] = None
    source_image_url: Optional[str] = None


class SceneVersion(VersionPayload):
    id: str = Field(default_factory=_new_id)
    scene_id: str
    kind: VersionKind
    version: int
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


# ── Quality analysis ─────────────────────────────────────────────────────────

class ColorMismatch(BaseModel):
    expected: list[str] = Field(default_factory=list)
    found: list[str] = Field(default_factory=list)
    severity: Literal["minor", "critical"] = "minor"


class QualityAnalysis(BaseModel):
    score: float = Field(..., ge=0, le=10)
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    color_mismatch: Optional[ColorMismatch] = None


# ── Animation ────────────────────────────────────────────────────────────────

class AnimationOptions(BaseModel):
    duration: int = DEFAULT_DURATION
    resolution: str = "720p"
    camera_fixed: bool = False
    end_image_url: Optional[str] = None
    seed: Optional[int] = None


class AnimationResult(BaseModel):
    video_url: str
    provider: str
    cost: Optional[float] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Progress ─────────────────────────────────────────────────────────────────

class CurrentItem(BaseModel):
    id: str
    index: int
    status: WorkItemStatus


class BatchProgress(BaseModel):
    batch_id: str
    total: int = 0
    completed: int = 0
    failed: int = 0
    current: Optional[CurrentItem] = None
    finished: bool = False
    updated_at: datetime = Field(default_factory=_utcnow)


# ── API Request Models ───────────────────────────────────────────────────────

class CreateBatchRequest(BaseModel):
    user_id: str = ""
    name: str = ""
    description: str = ""
    defaults: BatchDefaults = Field(default_factory=BatchDefaults)


class ImportRowsRequest(BaseModel):
    csv_text: str = Field(..., description="CSV with a header row; text_content is required")


class RunBatchRequest(BaseModel):
    concurrency: Optional[int] = Field(None, ge=1, le=10)


class ActivateVersionRequest(BaseModel):
    kind: VersionKind
    version_id: str


class RegenerateAnimationRequest(BaseModel):
    provider: Optional[str] = None
    prompt: Optional[str] = None
