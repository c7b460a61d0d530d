"""
Animation Prompt Generator — motion prompts for image-to-video providers.

Selection order:
  1. Minimal style → random pick from a fixed set of camera-stationary sways
  2. Template mode → the chosen camera-move template
  3. AI mode with a usable vision description → AI-written prompt under
     hard rotation constraints
  4. Otherwise (or on AI failure) → templates bucketed by
     minimalistic × product-focused
"""

import random
import logging
from dataclasses import dataclass
from typing import Optional

from ..presets import get_animation_template
from .fallback import with_fallback
from .models import AnimationPromptMode
from .prompt_builder import is_minimal_style
from .prompt_optimizer import TEXT_TIMEOUT, TextCompleter

logger = logging.getLogger(__name__)

MIN_VISION_DESCRIPTION_LENGTH = 50
MAX_PROMPT_WORDS = 30

MINIMAL_ANIMATION_PROMPTS = [
    "Static camera, simple side-to-side rotation of 30 degrees total, smooth and continuous",
    "Fixed camera, gentle left-to-right rotation, 15 degrees each direction",
    "Stationary view, slow horizontal rotation from -15 to +15 degrees",
    "No camera movement, product sways gently side to side, front always facing camera",
    "Fixed perspective, smooth pendulum rotation left to right, 25 degrees total",
]

FALLBACK_PROMPTS = {
    "minimal_product": [
        "Static camera, product rotates slowly 15 degrees left and right, front facing camera",
        "Fixed camera, gentle 20 degree sway, smooth continuous motion, clean background",
        "Product turns subtly 10 degrees each side, soft even lighting, calm motion",
        "Stationary shot, slow side-to-side rotation of 20 degrees, crisp product detail",
        "Locked-off camera, product gently pivots left to right, 15 degrees, front-facing",
    ],
    "product": [
        "Slow push-in toward the product, soft light sweeps across the surface",
        "Gentle 15 degree camera arc around the product, front always visible, cinematic",
        "Product rotates 20 degrees left to right while light glints on its edges",
        "Smooth slow dolly forward, subtle depth of field shift onto the product",
        "Product gently floats and sways 10 degrees, soft shadows move beneath it",
    ],
    "scene": [
        "Slow cinematic pan across the scene, subtle ambient motion, warm light",
        "Gentle camera push-in, background elements drift softly, natural movement",
        "Soft parallax movement, foreground and background shift slightly, calm mood",
        "Smooth slow tilt revealing the scene, light flickers gently",
        "Subtle handheld drift, natural ambient motion, inviting atmosphere",
    ],
}

STYLE_GUIDELINES = {
    "minimalist": (
        ("minimalist", "minimal", "clean"),
        "Minimalist: restrained motion, slow and precise, no added elements, calm pacing.",
    ),
    "luxury": (
        ("luxury", "premium", "elegant"),
        "Luxury: slow graceful motion, light gliding over surfaces, sophisticated reveal.",
    ),
    "dynamic": (
        ("dynamic", "energetic", "vibrant"),
        "Dynamic: livelier motion and energy, but rotation limits still apply.",
    ),
    "lifestyle": (
        ("lifestyle", "natural", "authentic"),
        "Lifestyle: natural ambient movement, relaxed pacing, authentic feel.",
    ),
    "tech": (
        ("tech", "futuristic", "modern"),
        "Tech: precise smooth motion, light sweeps and subtle glow accents.",
    ),
    "vintage": (
        ("vintage", "retro", "classic"),
        "Vintage: gentle nostalgic motion, soft film-like drift.",
    ),
}

AI_INSTRUCTIONS = """You write motion prompts for an image-to-video model animating an advertising still.

Scene description (from vision analysis):
{vision}

Source text: {text}
Visual style: {style}
{guidelines}
Hard rules:
- Rotation between 10 and 20 degrees total, never more
- The product always stays front-facing; never show its back or its profile
- Smooth, continuous motion; no cuts, no new objects
- Maximum {max_words} words

Return only the motion prompt."""

_MINIMAL_VISION_MARKERS = ("solid background", "solid color background", "product only", "plain background")
_MINIMALISTIC_STYLE_WORDS = ("minimal", "clean", "simple")
_MINIMALISTIC_VISION_WORDS = ("minimalist", "clean background", "white background")
_PRODUCT_VISION_WORDS = ("product", "item", "object")


@dataclass
class AnimationPromptRequest:
    text: str = ""
    style: str = ""
    preset_id: Optional[str] = None
    vision_description: str = ""
    mode: AnimationPromptMode = AnimationPromptMode.AI
    template_id: Optional[str] = None
    has_reference_image: bool = False


def is_minimal_animation(req: AnimationPromptRequest) -> bool:
    if is_minimal_style(req.style, req.preset_id):
        return True
    vision = req.vision_description.lower()
    return any(marker in vision for marker in _MINIMAL_VISION_MARKERS)


def style_guidelines(style: str) -> str:
    lowered = (style or "").lower()
    blocks = [text for keywords, text in STYLE_GUIDELINES.values() if any(k in lowered for k in keywords)]
    return "\n".join(blocks)


def is_minimalistic(req: AnimationPromptRequest) -> bool:
    """Looser than `is_minimal_animation`: any clean/simple look counts."""
    style = (req.style or "").lower()
    vision = req.vision_description.lower()
    return (
        any(word in style for word in _MINIMALISTIC_STYLE_WORDS)
        or any(word in vision for word in _MINIMALISTIC_VISION_WORDS)
    )


def is_product_focused(req: AnimationPromptRequest) -> bool:
    if req.has_reference_image or "product" in (req.text or "").lower():
        return True
    vision = req.vision_description.lower()
    return any(word in vision for word in _PRODUCT_VISION_WORDS)


def fallback_animation_prompt(req: AnimationPromptRequest, rng: random.Random = random) -> str:
    product = is_product_focused(req)
    if product and is_minimalistic(req):
        bucket = "minimal_product"
    elif product:
        bucket = "product"
    else:
        bucket = "scene"
    return rng.choice(FALLBACK_PROMPTS[bucket])


def _limit_words(text: str, max_words: int = MAX_PROMPT_WORDS) -> str:
    words = text.split()
    return " ".join(words[:max_words])


class AnimationPromptGenerator:
    def __init__(
        self,
        text_completer: Optional[TextCompleter] = None,
        timeout: float = TEXT_TIMEOUT,
        rng: Optional[random.Random] = None,
    ):
        self.text_completer = text_completer
        self.timeout = timeout
        self.rng = rng or random.Random()

    async def generate(self, req: AnimationPromptRequest) -> str:
        if is_minimal_animation(req):
            return self.rng.choice(MINIMAL_ANIMATION_PROMPTS)

        if req.mode == AnimationPromptMode.TEMPLATE:
            return get_animation_template(req.template_id)["prompt"]

        usable_vision = len(req.vision_description.strip()) > MIN_VISION_DESCRIPTION_LENGTH
        primary = None
        if req.mode == AnimationPromptMode.AI and usable_vision and self.text_completer is not None:
            async def primary() -> str:
                guidelines = style_guidelines(req.style)
                reply = await self.text_completer.complete(AI_INSTRUCTIONS.format(
                    vision=req.vision_description.strip(),
                    text=req.text,
                    style=req.style or "modern product photography",
                    guidelines=f"Style guidance:\n{guidelines}\n" if guidelines else "",
                    max_words=MAX_PROMPT_WORDS,
                ))
                return _limit_words(reply.strip().strip('"').strip())

        return await with_fallback(
            primary,
            lambda: fallback_animation_prompt(req, self.rng),
            label="animation_prompt",
            timeout=self.timeout,
            accept=bool,
        )
