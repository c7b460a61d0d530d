"""
Bulk Video Pipeline

Per-row flow: Prompt Builder → Image Generation → Quality Gate → Vision →
Animation Prompt → Animation → Versioning, driven for a whole batch by the
BatchOrchestrator with bounded concurrency.
"""

from .models import SceneStatus, VersionKind, WorkItemStatus

__all__ = [
    "SceneStatus",
    "VersionKind",
    "WorkItemStatus",
]
