"""
FastAPI routes for bulk video generation.

Batch Endpoints:
  POST /batches                       — Create a batch with project defaults
  POST /batches/{id}/import           — Import CSV rows as pending items
  POST /batches/{id}/run              — Start processing pending items (async)
  POST /batches/{id}/cancel           — Signal a running batch to stop
  GET  /batches/{id}/status           — Latest progress snapshot

Scene Endpoints:
  GET  /scenes/{id}/versions                 — Image + animation history
  POST /scenes/{id}/versions/activate        — Make a version active
  POST /scenes/{id}/regenerate               — New gated image + animation
  POST /scenes/{id}/regenerate-animation     — New animation of the active image
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

from .errors import GenerationError, NotFoundError, QualityGateError, UnsupportedProviderError
from .models import (
    ActivateVersionRequest,
    Batch,
    BatchProgress,
    CreateBatchRequest,
    ImportRowsRequest,
    RegenerateAnimationRequest,
    RunBatchRequest,
    Scene,
    SceneVersion,
    VersionKind,
)
from .service import get_service

logger = logging.getLogger(__name__)


def _http_error(action: str, e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ValueError, UnsupportedProviderError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, (QualityGateError, GenerationError)):
        logger.warning(f"{action} failed: {e}")
        return HTTPException(status_code=422, detail=str(e))
    logger.error(f"{action} failed: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))


# ═════════════════════════════════════════════════════════════════════════════
# Batch Router
# ═════════════════════════════════════════════════════════════════════════════

batch_router = APIRouter(prefix="/batches", tags=["batches"])


@batch_router.post("", response_model=Batch)
async def create_batch(request: CreateBatchRequest):
    try:
        batch = Batch(**request.model_dump())
        return await get_service().repository.save_batch(batch)
    except Exception as e:
        raise _http_error("Create batch", e)


@batch_router.post("/{batch_id}/import")
async def import_rows(batch_id: str, request: ImportRowsRequest):
    """Parse CSV rows into pending work items."""
    try:
        result = await get_service().import_rows(batch_id, request.csv_text)
        return {
            "batch_id": batch_id,
            "imported": len(result.items),
            "skipped": result.skipped,
            "warnings": result.warnings,
            "item_ids": [item.id for item in result.items],
        }
    except Exception as e:
        raise _http_error("Import", e)


@batch_router.post("/{batch_id}/run", response_model=BatchProgress)
async def run_batch(batch_id: str, request: Optional[RunBatchRequest] = None):
    """Start the batch in the background; poll /status for progress."""
    try:
        concurrency = request.concurrency if request else None
        return await get_service().start_batch(batch_id, concurrency)
    except Exception as e:
        raise _http_error("Run batch", e)


@batch_router.post("/{batch_id}/cancel")
async def cancel_batch(batch_id: str):
    if not get_service().cancel_batch(batch_id):
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} is not running")
    return {"status": "cancelling", "batch_id": batch_id}


@batch_router.get("/{batch_id}/status", response_model=BatchProgress)
async def batch_status(batch_id: str):
    progress = await get_service().get_status(batch_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"No progress recorded for batch {batch_id}")
    return progress


# ═════════════════════════════════════════════════════════════════════════════
# Scene Router
# ═════════════════════════════════════════════════════════════════════════════

scene_router = APIRouter(prefix="/scenes", tags=["scenes"])


@scene_router.get("/{scene_id}/versions", response_model=list[SceneVersion])
async def list_versions(scene_id: str, kind: Optional[VersionKind] = None):
    try:
        return await get_service().list_versions(scene_id, kind)
    except Exception as e:
        raise _http_error("List versions", e)


@scene_router.post("/{scene_id}/versions/activate", response_model=SceneVersion)
async def activate_version(scene_id: str, request: ActivateVersionRequest):
    try:
        return await get_service().activate_version(scene_id, request.kind, request.version_id)
    except Exception as e:
        raise _http_error("Activate version", e)


@scene_router.post("/{scene_id}/regenerate", response_model=Scene)
async def regenerate_scene(scene_id: str):
    """Runs synchronously; the scene carries the failure message if it fails."""
    try:
        return await get_service().regenerate_scene(scene_id)
    except Exception as e:
        raise _http_error("Regenerate scene", e)


@scene_router.post("/{scene_id}/regenerate-animation", response_model=SceneVersion)
async def regenerate_animation(scene_id: str, request: Optional[RegenerateAnimationRequest] = None):
    request = request or RegenerateAnimationRequest()
    try:
        return await get_service().regenerate_animation(scene_id, request.provider, request.prompt)
    except Exception as e:
        raise _http_error("Regenerate animation", e)
