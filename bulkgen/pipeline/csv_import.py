"""
Row import — CSV text into WorkItems.

Columns (header row required, names case-insensitive):
  text_content (required), product_image, image_style, image_style_preset,
  video_formats, animation_provider, duration, scene_count, camera_fixed,
  use_end_image, animation_prompt_mode, animation_template

Invalid optional values are dropped with a warning rather than rejecting
the row; rows without text are skipped.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .models import AnimationPromptMode, ItemOverrides, WorkItem

logger = logging.getLogger(__name__)

MAX_SCENE_COUNT = 10
MAX_DURATION = 60
_TRUE = {"true", "yes", "1", "y"}
_FALSE = {"false", "no", "0", "n"}


@dataclass
class ImportResult:
    items: list[WorkItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: int = 0


def _positive_int(value: str, column: str, row: int, limit: int, warnings: list[str]) -> Optional[int]:
    try:
        number = int(float(value))
    except (ValueError, OverflowError):
        warnings.append(f"Row {row}: {column} '{value}' is not a number; using default")
        return None
    if number < 1 or number > limit:
        warnings.append(f"Row {row}: {column} must be between 1 and {limit}; using default")
        return None
    return number


def _boolean(value: str, column: str, row: int, warnings: list[str]) -> Optional[bool]:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    warnings.append(f"Row {row}: {column} '{value}' is not a boolean; using default")
    return None


def parse_rows(
    csv_text: str,
    batch_id: str,
    providers: Iterable[str] = ("bytedance", "runway"),
) -> ImportResult:
    """
    Parse CSV text into pending WorkItems for `batch_id`.

    Raises:
        ValueError: no header, no text_content column, or no usable rows.
    """
    reader = csv.DictReader(io.StringIO(csv_text.strip().lstrip("\ufeff")))
    if not reader.fieldnames:
        raise ValueError("CSV has no header row")
    reader.fieldnames = [name.strip().lower() for name in reader.fieldnames]
    if "text_content" not in reader.fieldnames:
        raise ValueError("CSV must have a text_content column")

    valid_providers = set(providers)
    result = ImportResult()

    for row_number, raw in enumerate(reader, start=2):
        row = {k: (v or "").strip() for k, v in raw.items() if k}
        text = row.get("text_content", "")
        if not text:
            result.skipped += 1
            result.warnings.append(f"Row {row_number}: empty text_content; skipped")
            continue

        warnings = result.warnings
        overrides: dict = {}

        if row.get("image_style"):
            overrides["image_style"] = row["image_style"]
        if row.get("image_style_preset"):
            overrides["image_style_preset"] = row["image_style_preset"]
        if row.get("video_formats"):
            formats = [f.strip() for f in row["video_formats"].replace(";", ",").split(",") if f.strip()]
            if formats:
                overrides["formats"] = formats
        if row.get("animation_provider"):
            provider = row["animation_provider"].lower()
            if provider in valid_providers:
                overrides["animation_provider"] = provider
            else:
                warnings.append(
                    f"Row {row_number}: unknown animation_provider '{provider}'; using default"
                )
        if row.get("duration"):
            overrides["duration"] = _positive_int(row["duration"], "duration", row_number, MAX_DURATION, warnings)
        if row.get("scene_count"):
            overrides["scene_count"] = _positive_int(
                row["scene_count"], "scene_count", row_number, MAX_SCENE_COUNT, warnings,
            )
        for column in ("camera_fixed", "use_end_image"):
            if row.get(column):
                overrides[column] = _boolean(row[column], column, row_number, warnings)
        if row.get("animation_prompt_mode"):
            mode = row["animation_prompt_mode"].lower()
            try:
                overrides["animation_prompt_mode"] = AnimationPromptMode(mode)
            except ValueError:
                warnings.append(f"Row {row_number}: unknown animation_prompt_mode '{mode}'; using default")
        if row.get("animation_template"):
            overrides["animation_template"] = row["animation_template"]

        result.items.append(WorkItem(
            batch_id=batch_id,
            row_index=len(result.items),
            text_content=text,
            product_image_url=row.get("product_image") or None,
            overrides=ItemOverrides(**{k: v for k, v in overrides.items() if v is not None}),
        ))

    if not result.items:
        raise ValueError("CSV contains no rows with text_content")

    logger.info(
        f"Parsed {len(result.items)} rows for batch {batch_id} "
        f"({result.skipped} skipped, {len(result.warnings)} warnings)"
    )
    return result
