"""
Prompt Builder — turns a work item row into an image-generation prompt.

Two regimes:
  - Minimal (super-minimalist preset, or a "super minimal" / "product only …
    solid" style): product name on a solid colour background, nothing else.
  - Normal: row text + project context, one scene type per scene index.

The unbranded clause is always present and the generic-category clause is
added when there is no reference image. Colour codes never survive into
the returned prompt.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from ..presets import SUPER_MINIMALIST_PRESET_ID, get_base_prompt
from .colors import extract_background_color, replace_color_codes
from .fallback import with_fallback
from .prompt_optimizer import (
    MAX_PROMPT_LENGTH,
    TEXT_TIMEOUT,
    TextCompleter,
    optimize_prompt_length,
    truncate_prompt,
)

logger = logging.getLogger(__name__)

MINIMAL_SCENE_TYPES = [
    "product on solid background",
    "centered product",
    "isolated product",
    "product showcase",
]

SCENE_TYPES = [
    "product in context",
    "close-up details",
    "lifestyle usage",
    "hero shot",
    "product advantages",
]

UNBRANDED_CLAUSE = (
    "Unbranded product: no logos, no brand marks, no text, no company names "
    "or trademarks visible on the product"
)
GENERIC_CATEGORY_CLAUSE = (
    "Generic category representation, focus on the product type rather than a specific brand"
)

DEFAULT_MINIMAL_BACKGROUND = "white"

ELABORATE_INSTRUCTIONS = """You write prompts for an AI image generator producing advertising stills.

Write one vivid, concrete image prompt (max 120 words) for this scene.

Context: {context}
Scene type: {scene_type} (scene {scene_number} of {scene_count})
Style: {style}
{extra}
Rules:
- Describe colours with plain words, never hex or RGB codes
- Never describe logos, brand names or text on the product
- Return only the prompt text"""

MINIMAL_INSTRUCTIONS = """You write prompts for an AI image generator producing ultra-minimal product stills.

Product: {product}
Background: solid {color}
Variation: {scene_type}

Write one short prompt (max 60 words): the product alone, centered, on a seamless solid {color} background,
no props, no environment, no shadows beyond a soft contact shadow, studio lighting.
Describe colours with plain words only. Return only the prompt text."""

_PRODUCT_NAME_RE = re.compile(r"^([^,.-]+?)(?:\s+by\s+|,|\.|-|$)")


@dataclass
class PromptRequest:
    text: str
    has_reference_image: bool = False
    style: str = ""
    preset_id: Optional[str] = None
    scene_index: int = 0
    scene_count: int = 1
    project_name: str = ""
    project_description: str = ""


def is_minimal_style(style: Optional[str], preset_id: Optional[str] = None) -> bool:
    if preset_id == SUPER_MINIMALIST_PRESET_ID:
        return True
    lowered = (style or "").lower()
    return "super minimal" in lowered or ("product only" in lowered and "solid" in lowered)


def extract_product_name(text: str) -> str:
    """Leading product name of a row ("Aero Kettle by Acme, 1.7L" → "Aero Kettle")."""
    text = (text or "").strip()
    match = _PRODUCT_NAME_RE.match(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return " ".join(text.split()[:3])


def scene_type_for(index: int, minimal: bool) -> str:
    types = MINIMAL_SCENE_TYPES if minimal else SCENE_TYPES
    return types[index % len(types)]


def build_context(req: PromptRequest, minimal: bool) -> str:
    if minimal:
        return extract_product_name(req.text)

    parts = [f"Main content: {req.text.strip()}"]
    if req.project_name and req.project_name.lower() not in req.text.lower():
        parts.append(f"Brand/Project: {req.project_name}")
    if req.project_description:
        parts.append(f"Context: {req.project_description.strip()}")
    if req.has_reference_image:
        parts.append("Product photography focused")
    return replace_color_codes(". ".join(parts))


def style_elements(req: PromptRequest) -> str:
    elements = [req.style or "modern product photography", "professional quality"]
    if req.has_reference_image or "product" in req.text.lower():
        elements.append("centered product")
    return ", ".join(elements)


def required_clauses(has_reference_image: bool) -> list[str]:
    clauses = [UNBRANDED_CLAUSE]
    if not has_reference_image:
        clauses.append(GENERIC_CATEGORY_CLAUSE)
    return clauses


def minimal_background(req: PromptRequest) -> str:
    return (
        extract_background_color(req.style)
        or extract_background_color(req.project_description)
        or DEFAULT_MINIMAL_BACKGROUND
    )


def fallback_prompt(req: PromptRequest) -> str:
    """Deterministic prompt used when AI elaboration is unavailable or fails."""
    minimal = is_minimal_style(req.style, req.preset_id)
    context = build_context(req, minimal)

    if minimal:
        color = minimal_background(req)
        return (
            f"{context}, product only on solid {color} background color, "
            f"no props, no environment, no additional elements, centered composition, "
            f"isolated product, clean studio lighting, ultra minimalist"
        )

    prompt = f"{context}, {scene_type_for(req.scene_index, False)}, {style_elements(req)}"
    base = get_base_prompt(req.preset_id)
    if base:
        prompt = f"{prompt}, {base}"
    return prompt


def finalize_prompt(body: str, has_reference_image: bool, max_length: int) -> str:
    """
    Strip colour codes, then append the required clauses.

    The body is trimmed first so the clauses always survive the length budget.
    """
    body = replace_color_codes(body.strip().rstrip("."))
    clauses = [c for c in required_clauses(has_reference_image) if c.lower() not in body.lower()]
    suffix = "".join(f". {c}" for c in clauses)
    if clauses:
        suffix += "."

    budget = max_length - len(suffix)
    if len(body) > budget:
        body = truncate_prompt(body, max(budget, 0))
    return f"{body}{suffix}"


class PromptBuilder:
    """Builds scene prompts, elaborating with AI when a completer is configured."""

    def __init__(
        self,
        text_completer: Optional[TextCompleter] = None,
        max_length: int = MAX_PROMPT_LENGTH,
        timeout: float = TEXT_TIMEOUT,
    ):
        self.text_completer = text_completer
        self.max_length = max_length
        self.timeout = timeout

    def _instructions(self, req: PromptRequest) -> str:
        minimal = is_minimal_style(req.style, req.preset_id)
        scene_type = scene_type_for(req.scene_index, minimal)
        if minimal:
            return MINIMAL_INSTRUCTIONS.format(
                product=extract_product_name(req.text),
                color=minimal_background(req),
                scene_type=scene_type,
            )
        base = get_base_prompt(req.preset_id)
        return ELABORATE_INSTRUCTIONS.format(
            context=build_context(req, False),
            scene_type=scene_type,
            scene_number=req.scene_index + 1,
            scene_count=req.scene_count,
            style=style_elements(req),
            extra=f"Preset look: {base}\n" if base else "",
        )

    async def build(self, req: PromptRequest) -> str:
        async def _elaborate() -> str:
            reply = await self.text_completer.complete(self._instructions(req))
            return reply.strip().strip('"').strip()

        body = await with_fallback(
            _elaborate if self.text_completer is not None else None,
            lambda: fallback_prompt(req),
            label="prompt_elaborate",
            timeout=self.timeout,
            accept=bool,
        )

        suffix_len = sum(len(c) + 2 for c in required_clauses(req.has_reference_image)) + 1
        if len(body) > self.max_length - suffix_len:
            body = await optimize_prompt_length(
                body, self.max_length - suffix_len, self.text_completer, self.timeout,
            )
        prompt = finalize_prompt(body, req.has_reference_image, self.max_length)
        logger.info(f"Built scene {req.scene_index + 1}/{req.scene_count} prompt ({len(prompt)} chars)")
        return prompt
