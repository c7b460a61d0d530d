"""
Gemini integration for text completion and image judgment.

- Text completion: Gemini Flash via REST (prompt elaboration, shortening,
  improvement, animation prompts)
- Vision: Gemini Flash via REST — quality scoring against the generation
  prompt, and free-form scene descriptions
"""

import os
import json
import base64
import logging
from typing import Optional

import httpx

from .pipeline.colors import extract_color_requirements
from .pipeline.models import ColorMismatch, QualityAnalysis

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
API_BASE = "https://generativelanguage.googleapis.com/v1beta"
TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
VISION_MODEL = os.getenv("GEMINI_VISION_MODEL", "gemini-2.0-flash")
REQUEST_TIMEOUT = 60

# Assumed score when the reply cannot be parsed at all
UNPARSEABLE_SCORE = 7.0


def _api_url(model: str) -> str:
    return f"{API_BASE}/models/{model}:generateContent"


def _guess_mime(url: str) -> str:
    lower = url.lower().split("?")[0]
    if lower.endswith(".png"):
        return "image/png"
    if lower.endswith(".webp"):
        return "image/webp"
    return "image/jpeg"


def _parse_json_response(text: str) -> dict:
    """Parse JSON from Gemini response, handling markdown code blocks."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            json_block = text.split("```")[1]
            if json_block.startswith("json"):
                json_block = json_block[4:]
            return json.loads(json_block.strip())
        raise ValueError(f"Gemini returned invalid JSON: {text[:200]}")


def _extract_text(data: dict) -> str:
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError) as e:
        raise RuntimeError(f"Unexpected Gemini response shape: {str(data)[:300]}") from e


async def _generate_content(
    model: str,
    parts: list,
    config: dict | None = None,
    api_key: str = "",
) -> dict:
    """Call Gemini generateContent REST endpoint."""
    key = api_key or GEMINI_API_KEY
    if not key:
        raise RuntimeError("GEMINI_API_KEY not set")

    body: dict = {"contents": [{"parts": parts}]}
    if config:
        body["generationConfig"] = config

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
        resp = await client.post(_api_url(model), params={"key": key}, json=body)

    if resp.status_code != 200:
        raise RuntimeError(f"Gemini API error {resp.status_code}: {resp.text[:500]}")

    return resp.json()


async def _image_part(image_url: str) -> dict:
    async with httpx.AsyncClient(timeout=30, follow_redirects=True) as client:
        resp = await client.get(image_url)
        resp.raise_for_status()
    mime = resp.headers.get("content-type", "").split(";")[0] or _guess_mime(image_url)
    if not mime.startswith("image/"):
        mime = _guess_mime(image_url)
    return {"inlineData": {"mimeType": mime, "data": base64.b64encode(resp.content).decode()}}


# =========================================================================
# 1. Text completion
# =========================================================================

class GeminiTextClient:
    """`complete(prompt) -> str` backed by Gemini Flash."""

    def __init__(self, api_key: str = "", model: str = TEXT_MODEL, temperature: float = 0.7):
        self.api_key = api_key or GEMINI_API_KEY
        self.model = model
        self.temperature = temperature

    async def complete(self, prompt: str, max_tokens: int = 1024) -> str:
        data = await _generate_content(
            self.model,
            [{"text": prompt}],
            {"temperature": self.temperature, "maxOutputTokens": max_tokens},
            api_key=self.api_key,
        )
        return _extract_text(data).strip()


# =========================================================================
# 2. Vision — quality judgment + scene description
# =========================================================================

QUALITY_PROMPT = """You are a strict quality inspector for AI-generated product advertising images.

The image was generated from this prompt:
\"\"\"{prompt}\"\"\"

{color_block}
Evaluate:
1. Product integrity — is the product complete, correctly assembled, anatomically/structurally plausible?
2. Sharpness and focus on the product
3. Lighting and exposure
4. Text artifacts — garbled letters, fake logos, watermarks
5. Colour accuracy against the required colours
6. Overall advertising quality

Return ONLY a JSON object, no markdown:
{{
  "qualityScore": 0-10,
  "issues": ["short issue", ...],
  "suggestions": ["short suggestion", ...],
  "colorAnalysis": {{
    "expectedColors": ["..."],
    "foundColors": ["..."],
    "colorMatch": true/false,
    "colorMismatchSeverity": "none" | "minor" | "critical"
  }}
}}

Use "critical" only when the dominant or background colour is clearly wrong."""

DESCRIBE_PROMPT = (
    "Analyze this advertising scene image in detail. Describe: "
    "1. Main subject/product and its position "
    "2. Background and environment "
    "3. Lighting and mood "
    "4. Colors and visual style "
    "5. Composition and camera angle "
    "6. Any text or graphics visible "
    "7. Elements that could be animated "
    "8. Overall emotional tone and message"
)

_ISSUE_KEYWORDS = ["blurry", "distorted", "artifact", "missing", "incomplete", "garbled", "low quality"]


def _analysis_from_dict(data: dict, expected_colors: list[str]) -> QualityAnalysis:
    score = float(data.get("qualityScore", data.get("score", UNPARSEABLE_SCORE)))
    score = max(0.0, min(10.0, score))
    issues = [str(i) for i in data.get("issues", []) if i]
    suggestions = [str(s) for s in data.get("suggestions", []) if s]

    mismatch = None
    color = data.get("colorAnalysis") or {}
    severity = str(color.get("colorMismatchSeverity", "none")).lower()
    if color and color.get("colorMatch") is False and severity in ("minor", "critical"):
        mismatch = ColorMismatch(
            expected=color.get("expectedColors") or expected_colors,
            found=color.get("foundColors") or [],
            severity=severity,
        )
        issues.append(
            f"Color mismatch ({severity}): expected {', '.join(mismatch.expected)} "
            f"but found {', '.join(mismatch.found) or 'other colors'}"
        )
        suggestions.append(f"Use exactly {', '.join(mismatch.expected)} as specified")

    return QualityAnalysis(score=score, issues=issues, suggestions=suggestions, color_mismatch=mismatch)


def _analysis_from_text(text: str) -> QualityAnalysis:
    """Keyword scan for replies that are not JSON."""
    lowered = text.lower()
    issues = [k for k in _ISSUE_KEYWORDS if k in lowered]
    return QualityAnalysis(score=5.0 if issues else 8.0, issues=issues)


class GeminiVisionClient:
    """Image judgment and description backed by Gemini Flash vision."""

    def __init__(self, api_key: str = "", model: str = VISION_MODEL):
        self.api_key = api_key or GEMINI_API_KEY
        self.model = model

    async def analyze(self, image_url: str, reference_prompt: str) -> QualityAnalysis:
        """
        Score an image 0-10 against the prompt that produced it.

        Colour requirements are extracted from the prompt and checked
        explicitly so a wrong background can be flagged as critical.
        """
        expected = extract_color_requirements(reference_prompt)
        color_block = (
            f"Required colours: {', '.join(expected)}.\n" if expected else ""
        )
        parts = [
            await _image_part(image_url),
            {"text": QUALITY_PROMPT.format(prompt=reference_prompt[:3000], color_block=color_block)},
        ]
        data = await _generate_content(
            self.model, parts, {"temperature": 0.1, "maxOutputTokens": 1024}, api_key=self.api_key,
        )
        text = _extract_text(data)

        try:
            parsed = _parse_json_response(text)
        except (ValueError, IndexError) as e:
            logger.warning(f"Quality reply was not JSON ({e}); using keyword scan")
            return _analysis_from_text(text)

        analysis = _analysis_from_dict(parsed, expected)
        logger.info(f"Quality analysis: score={analysis.score} issues={len(analysis.issues)}")
        return analysis

    async def describe(self, image_url: str, instructions: Optional[str] = None) -> str:
        parts = [await _image_part(image_url), {"text": instructions or DESCRIBE_PROMPT}]
        data = await _generate_content(
            self.model, parts, {"temperature": 0.4, "maxOutputTokens": 1024}, api_key=self.api_key,
        )
        return _extract_text(data).strip()


def get_text_client() -> Optional[GeminiTextClient]:
    """Text completion client, or None when no API key is configured."""
    return GeminiTextClient() if GEMINI_API_KEY else None


def get_vision_client() -> Optional[GeminiVisionClient]:
    """Vision client, or None when no API key is configured."""
    return GeminiVisionClient() if GEMINI_API_KEY else None
