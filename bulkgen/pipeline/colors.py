"""
Colour handling for prompts.

Image models render literal colour codes poorly (and sometimes print them
into the image), so every hex / rgb() code is turned into a descriptive
name before it reaches a prompt.
"""

import colorsys
import re
from typing import Optional

NAMED_HEX = {
    "ffffff": "white",
    "000000": "black",
    "ff0000": "red",
    "00ff00": "green",
    "0000ff": "blue",
    "ffff00": "yellow",
    "ffa500": "orange",
    "800080": "purple",
    "ffc0cb": "pink",
    "808080": "gray",
    "a52a2a": "brown",
    "f5f5dc": "beige",
    "000080": "navy",
    "008080": "teal",
    "00ffff": "cyan",
    "ff00ff": "magenta",
}

# (upper hue bound in degrees, name)
_HUE_NAMES = [
    (15, "red"),
    (45, "orange"),
    (70, "yellow"),
    (150, "green"),
    (190, "teal"),
    (250, "blue"),
    (290, "purple"),
    (335, "pink"),
    (360, "red"),
]

COLOR_WORDS = [
    "white", "black", "red", "green", "blue", "yellow", "orange", "purple",
    "pink", "gray", "grey", "brown", "beige", "navy", "teal", "cyan",
    "magenta", "gold", "silver", "cream", "turquoise",
]

# A bare "#" needs six hex digits ("Model #100" is not a colour); the short
# form is only read after a hex/colour/background keyword.
_HEX_RE = re.compile(
    r"\bhex\s*[/#:]?\s*#?(?P<hex>[0-9a-f]{6}|[0-9a-f]{3})\b"
    r"|(?P<keyword>\b(?:colou?r|background)\s*:?\s*)#(?P<short>[0-9a-f]{6}|[0-9a-f]{3})\b"
    r"|#(?P<bare>[0-9a-f]{6})\b",
    re.IGNORECASE,
)
_RGB_RE = re.compile(
    r"\brgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*[\d.]+\s*)?\)",
    re.IGNORECASE,
)
_COLOR_PHRASE_RE = re.compile(
    r"\b(?:(?:vibrant|dark|light|pale|deep|bright|soft)\s+)?(" + "|".join(COLOR_WORDS) + r")\b",
    re.IGNORECASE,
)


def _expand(hex_code: str) -> str:
    hex_code = hex_code.lower().lstrip("#")
    if len(hex_code) == 3:
        hex_code = "".join(c * 2 for c in hex_code)
    return hex_code


def rgb_to_name(r: int, g: int, b: int) -> str:
    """Describe an RGB triple with a plain colour name ("vibrant green")."""
    h, lightness, s = colorsys.rgb_to_hls(r / 255, g / 255, b / 255)

    if lightness < 0.12:
        return "black"
    if lightness > 0.93:
        return "white"
    if s < 0.15:
        if lightness < 0.35:
            return "dark gray"
        if lightness > 0.75:
            return "light gray"
        return "gray"

    degrees = h * 360
    base = next(name for bound, name in _HUE_NAMES if degrees < bound or bound == 360)
    if base == "orange" and lightness < 0.35:
        base = "brown"

    if lightness < 0.3:
        return f"dark {base}"
    if lightness > 0.75:
        return f"light {base}"
    if s > 0.6:
        return f"vibrant {base}"
    return base


def _matched_hex(match: re.Match) -> str:
    return match.group("hex") or match.group("short") or match.group("bare")


def hex_to_name(hex_code: str) -> str:
    """Map a hex code to a descriptive colour name; unparseable → "solid color"."""
    code = _expand(hex_code)
    if code in NAMED_HEX:
        return NAMED_HEX[code]
    if not re.fullmatch(r"[0-9a-f]{6}", code):
        return "solid color"
    r, g, b = (int(code[i:i + 2], 16) for i in (0, 2, 4))
    return rgb_to_name(r, g, b)


def replace_color_codes(text: str) -> str:
    """Replace every hex / rgb() colour code in `text` with its name."""
    if not text:
        return text
    text = _HEX_RE.sub(lambda m: (m.group("keyword") or "") + hex_to_name(_matched_hex(m)), text)
    text = _RGB_RE.sub(
        lambda m: rgb_to_name(*(min(int(v), 255) for v in m.groups())),
        text,
    )
    return text


def contains_color_code(text: str) -> bool:
    return bool(_HEX_RE.search(text) or _RGB_RE.search(text))


def extract_background_color(text: str) -> Optional[str]:
    """
    Pull the intended background colour out of free text.

    Hex codes win over colour words; returns None when nothing is found.
    """
    if not text:
        return None
    hex_match = _HEX_RE.search(text)
    if hex_match:
        return hex_to_name(_matched_hex(hex_match))
    rgb_match = _RGB_RE.search(text)
    if rgb_match:
        return rgb_to_name(*(min(int(v), 255) for v in rgb_match.groups()))

    lowered = text.lower()
    # Prefer a colour word that sits next to "background"
    near = re.search(
        r"((?:\w+\s+)?\w+)\s+(?:solid\s+)?background|background\s+(?:color\s+|colour\s+)?(?:of\s+|is\s+)?((?:\w+\s+)?\w+)",
        lowered,
    )
    if near:
        phrase = near.group(1) or near.group(2) or ""
        found = _COLOR_PHRASE_RE.search(phrase)
        if found:
            return found.group(0)
    found = _COLOR_PHRASE_RE.search(lowered)
    return found.group(0) if found else None


def extract_color_requirements(prompt: str) -> list[str]:
    """All colour names a prompt asks for, in order, deduplicated."""
    seen: list[str] = []
    for match in _COLOR_PHRASE_RE.finditer(replace_color_codes(prompt or "").lower()):
        name = match.group(0)
        if name not in seen:
            seen.append(name)
    return seen
