"""
Quality Gate — bounded generate → analyze → regenerate loop for one scene.

States:
    GENERATE → ANALYZE → ACCEPT | REGENERATE | FORCE_ACCEPT | FAIL

`decide()` is the pure transition out of ANALYZE:
  - score ≥ 8, or score ≥ 7 with only a minor colour mismatch → ACCEPT
  - attempts left → REGENERATE with an improved prompt
  - out of attempts and (score < 5 or critical colour mismatch) → FAIL
  - out of attempts otherwise → FORCE_ACCEPT the last image

When no analyzer is configured, or analysis raises, the current image is
accepted unverified.
"""

import os
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from .. import metrics
from .colors import replace_color_codes
from .errors import PipelineCancelled
from .fallback import call_with_timeout, check_cancelled, with_fallback
from .models import QualityAnalysis
from .prompt_optimizer import MAX_PROMPT_LENGTH, TEXT_TIMEOUT, TextCompleter, optimize_prompt_length

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

MAX_QUALITY_ATTEMPTS = int(os.getenv("MAX_QUALITY_ATTEMPTS", "5"))
ACCEPT_SCORE = 8.0
ACCEPT_SCORE_MINOR_COLOR = 7.0
FAIL_SCORE = 5.0
IMAGE_TIMEOUT = float(os.getenv("IMAGE_TIMEOUT", "420"))


class GateState(str, Enum):
    GENERATE = "generate"
    ANALYZE = "analyze"
    ACCEPT = "accept"
    REGENERATE = "regenerate"
    FORCE_ACCEPT = "force_accept"
    FAIL = "fail"


class ImageGenerator(Protocol):
    async def generate(self, prompt: str, aspect_ratio: str) -> str:
        ...


class QualityAnalyzer(Protocol):
    async def analyze(self, image_url: str, reference_prompt: str) -> QualityAnalysis:
        ...


@dataclass
class GateAttempt:
    attempt: int
    image_url: str
    prompt: str
    analysis: Optional[QualityAnalysis] = None


@dataclass
class GateOutcome:
    state: GateState
    image_url: str
    prompt: str
    attempts: int
    analysis: Optional[QualityAnalysis] = None
    message: Optional[str] = None
    history: list[GateAttempt] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.state in (GateState.ACCEPT, GateState.FORCE_ACCEPT)


def _has_critical_mismatch(analysis: QualityAnalysis) -> bool:
    return analysis.color_mismatch is not None and analysis.color_mismatch.severity == "critical"


def decide(attempt: int, max_attempts: int, analysis: QualityAnalysis) -> GateState:
    """Transition out of ANALYZE for the `attempt`-th generated image (1-based)."""
    mismatch = analysis.color_mismatch
    if analysis.score >= ACCEPT_SCORE:
        return GateState.ACCEPT
    if analysis.score >= ACCEPT_SCORE_MINOR_COLOR and mismatch is not None and mismatch.severity == "minor":
        return GateState.ACCEPT
    if attempt < max_attempts:
        return GateState.REGENERATE
    if analysis.score < FAIL_SCORE or _has_critical_mismatch(analysis):
        return GateState.FAIL
    return GateState.FORCE_ACCEPT


def failure_message(analysis: QualityAnalysis) -> str:
    message = f"Image quality too poor (score: {analysis.score:g}/10)."
    if _has_critical_mismatch(analysis):
        mismatch = analysis.color_mismatch
        return (
            f"{message} Critical color mismatch: expected {', '.join(mismatch.expected) or 'specified colors'} "
            f"but got {', '.join(mismatch.found) or 'other colors'}"
        )
    if analysis.issues:
        return f"{message} {'; '.join(analysis.issues)}"
    return message


# ── Prompt improvement ───────────────────────────────────────────────────────

IMPROVE_INSTRUCTIONS = """An AI image generator produced a flawed advertising image from this prompt:

PROMPT:
{prompt}

Quality score: {score}/10
Issues: {issues}
Suggestions: {suggestions}
{color_block}
Rewrite the prompt so the next image fixes these issues. Keep the product, scene and style.
Describe colours with plain words, never codes. Keep every "no logos / unbranded" requirement.
Return only the rewritten prompt."""

_INTEGRITY_WORDS = (
    "missing", "malformed", "incomplete", "one ear", "single",
    "broken", "anatomically", "structurally",
)


def improve_prompt_heuristically(prompt: str, analysis: QualityAnalysis) -> str:
    """Append corrective phrases derived from the analysis."""
    issues = " ".join(analysis.issues).lower()
    suggestions = " ".join(analysis.suggestions).lower()
    critical = _has_critical_mismatch(analysis)

    colors: list[str] = []
    if critical:
        expected = ", ".join(analysis.color_mismatch.expected)
        colors += [
            "EXACTLY match the background color specified in the project requirements",
            f"background must be {expected}" if expected else "use the exact specified colors",
            "no color deviations",
        ]

    enhancements: list[str] = []
    if any(word in issues for word in _INTEGRITY_WORDS):
        enhancements += [
            "complete product with all parts visible",
            "anatomically correct structure",
            "realistic product proportions",
            "fully assembled product",
        ]
        if "headphone" in issues or "ear" in issues:
            enhancements += ["both ear cups visible", "symmetrical headband"]
        if "watch" in issues:
            enhancements += ["complete watch face and strap", "correct watch proportions"]

    enhancements += [
        "ultra-high quality",
        "professional product photography",
        "photorealistic",
        "no AI artifacts",
    ]
    if "product" in prompt.lower():
        enhancements += ["centered product", "product as main focus", "clean presentation"]
    if "blur" in issues or "focus" in issues:
        enhancements += ["crystal clear", "tack sharp", "perfect focus on product"]
    if "light" in issues:
        enhancements += ["professional studio lighting", "perfectly balanced exposure"]
    if "text" in issues or "garbled" in issues:
        enhancements += ["clear readable text", "crisp typography"]
    if "complete" in suggestions or "all parts" in suggestions:
        enhancements += ["show complete product", "all components visible"]

    base = prompt.strip().rstrip(".")
    if critical:
        return ", ".join(colors + [base] + enhancements)
    return ", ".join([base] + enhancements)


class PromptImprover:
    def __init__(
        self,
        text_completer: Optional[TextCompleter] = None,
        max_length: int = MAX_PROMPT_LENGTH,
        timeout: float = TEXT_TIMEOUT,
    ):
        self.text_completer = text_completer
        self.max_length = max_length
        self.timeout = timeout

    async def improve(self, prompt: str, analysis: QualityAnalysis) -> str:
        async def _rewrite() -> str:
            mismatch = analysis.color_mismatch
            color_block = ""
            if mismatch is not None:
                color_block = (
                    f"Colour mismatch ({mismatch.severity}): expected {', '.join(mismatch.expected)}, "
                    f"found {', '.join(mismatch.found)}\n"
                )
            reply = await self.text_completer.complete(IMPROVE_INSTRUCTIONS.format(
                prompt=prompt,
                score=analysis.score,
                issues="; ".join(analysis.issues) or "none listed",
                suggestions="; ".join(analysis.suggestions) or "none listed",
                color_block=color_block,
            ))
            return reply.strip().strip('"').strip()

        improved = await with_fallback(
            _rewrite if self.text_completer is not None else None,
            lambda: improve_prompt_heuristically(prompt, analysis),
            label="prompt_improve",
            timeout=self.timeout,
            accept=bool,
        )
        improved = replace_color_codes(improved)
        return await optimize_prompt_length(improved, self.max_length, self.text_completer, self.timeout)


# ── Gate loop ────────────────────────────────────────────────────────────────

class QualityGate:
    """
    Runs the state machine for one scene.

    Args:
        generator:    Image generation adapter.
        analyzer:     Quality analyzer, or None when vision is not configured.
        improver:     Prompt improver used on REGENERATE.
        max_attempts: Maximum number of generated images.
    """

    def __init__(
        self,
        generator: ImageGenerator,
        analyzer: Optional[QualityAnalyzer],
        improver: PromptImprover,
        max_attempts: int = MAX_QUALITY_ATTEMPTS,
        image_timeout: float = IMAGE_TIMEOUT,
    ):
        self.generator = generator
        self.analyzer = analyzer
        self.improver = improver
        self.max_attempts = max(1, max_attempts)
        self.image_timeout = image_timeout

    async def run(
        self,
        prompt: str,
        aspect_ratio: str,
        on_attempt: Optional[Callable[[GateAttempt], Awaitable[None]]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> GateOutcome:
        history: list[GateAttempt] = []
        original_prompt = prompt
        attempt = 0

        while True:
            check_cancelled(cancel_event)
            attempt += 1
            image_url = await call_with_timeout(
                self.generator.generate(prompt, aspect_ratio), self.image_timeout, "image_generate",
            )

            analysis: Optional[QualityAnalysis] = None
            unverified_reason: Optional[str] = None
            if self.analyzer is None:
                unverified_reason = "quality analysis unavailable"
            else:
                try:
                    analysis = await self.analyzer.analyze(image_url, original_prompt)
                except PipelineCancelled:
                    raise
                except Exception as e:
                    logger.warning(f"Quality analysis failed on attempt {attempt}: {e}; accepting current image")
                    unverified_reason = f"quality analysis failed: {e}"

            record = GateAttempt(attempt=attempt, image_url=image_url, prompt=prompt, analysis=analysis)
            history.append(record)
            if on_attempt is not None:
                await on_attempt(record)

            if analysis is None:
                metrics.inc_counter("gate.unverified")
                return GateOutcome(
                    state=GateState.FORCE_ACCEPT, image_url=image_url, prompt=prompt,
                    attempts=attempt, message=unverified_reason, history=history,
                )

            state = decide(attempt, self.max_attempts, analysis)
            metrics.inc_counter(f"gate.{state.value}")
            logger.info(
                f"Quality gate attempt {attempt}/{self.max_attempts}: "
                f"score={analysis.score:g} → {state.value}"
            )

            if state is GateState.REGENERATE:
                check_cancelled(cancel_event)
                # Each rewrite starts from the original prompt
                prompt = await self.improver.improve(original_prompt, analysis)
                continue

            message = None
            if state is GateState.FAIL:
                message = failure_message(analysis)
            elif state is GateState.FORCE_ACCEPT:
                message = f"Accepted after {attempt} attempts with score {analysis.score:g}/10"
            return GateOutcome(
                state=state, image_url=image_url, prompt=prompt, attempts=attempt,
                analysis=analysis, message=message, history=history,
            )
