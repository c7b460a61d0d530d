"""
Prompt Length Optimizer.

Image models truncate (or reject) long prompts. Over-budget prompts are
shortened by the text-completion capability when available, otherwise by
deterministic trimming. The result is always within budget.
"""

import os
import re
import logging
from typing import Optional, Protocol

from .fallback import with_fallback

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

MAX_PROMPT_LENGTH = int(os.getenv("MAX_PROMPT_LENGTH", "2800"))
TEXT_TIMEOUT = float(os.getenv("TEXT_TIMEOUT", "60"))

SHORTEN_INSTRUCTIONS = """Shorten this image generation prompt to at most {max_length} characters.
Keep the product description, scene, style, colour requirements and every "no logos / unbranded" requirement.
Drop repetition and filler. Return only the shortened prompt, no quotes, no commentary.

PROMPT:
{prompt}"""

_IMPORTANT_SENTENCE = re.compile(r"IMPORTANT:[^.!?]*[.!?]?\s*")
_QUALITY_SECTION = re.compile(
    r"PROFESSIONAL QUALITY REQUIREMENTS:.*?(?=\n\s*\n|[A-Z][A-Z ]{3,}:|$)",
    re.DOTALL,
)


class TextCompleter(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


def truncate_prompt(prompt: str, max_length: int) -> str:
    """Deterministic trimming; the result is never longer than `max_length`."""
    if len(prompt) <= max_length:
        return prompt

    text = _QUALITY_SECTION.sub("", prompt)
    text = _IMPORTANT_SENTENCE.sub("", text)
    text = re.sub(r"\s+", " ", text).strip()

    if len(text) <= max_length:
        return text
    if max_length < 4:
        return text[:max_length]
    return text[:max_length - 3] + "..."


async def optimize_prompt_length(
    prompt: str,
    max_length: int = MAX_PROMPT_LENGTH,
    text_completer: Optional[TextCompleter] = None,
    timeout: float = TEXT_TIMEOUT,
) -> str:
    """
    Fit `prompt` into `max_length` characters.

    AI shortening is accepted only when it is non-empty and within budget.
    """
    if len(prompt) <= max_length:
        return prompt

    logger.info(f"Prompt is {len(prompt)} chars (max {max_length}); optimizing")

    async def _shorten() -> str:
        reply = await text_completer.complete(
            SHORTEN_INSTRUCTIONS.format(max_length=max_length, prompt=prompt)
        )
        return reply.strip().strip('"').strip()

    return await with_fallback(
        _shorten if text_completer is not None else None,
        lambda: truncate_prompt(prompt, max_length),
        label="prompt_shorten",
        timeout=timeout,
        accept=lambda text: bool(text) and len(text) <= max_length,
    )
