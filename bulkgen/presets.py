"""
Preset Library — image-style presets and camera-move animation templates.

Users pick a style / motion by id; the pipeline injects the actual prompt
text. The reserved `super-minimalist` preset switches the prompt builder and
the animation prompt generator into their product-only modes.
"""

SUPER_MINIMALIST_PRESET_ID = "super-minimalist"

IMAGE_STYLE_PRESETS = {
    SUPER_MINIMALIST_PRESET_ID: {
        "id": SUPER_MINIMALIST_PRESET_ID,
        "name": "Super Minimalist",
        "category": "Minimal",
        "base_prompt": (
            "product only on a solid background color, no props, no environment, "
            "centered composition, clean studio lighting, ultra minimalist"
        ),
    },
    "studio-clean": {
        "id": "studio-clean",
        "name": "Studio Clean",
        "category": "Product",
        "base_prompt": (
            "seamless studio backdrop, soft box key light with subtle rim light, "
            "gentle floor shadow, crisp commercial product photography"
        ),
    },
    "lifestyle-natural": {
        "id": "lifestyle-natural",
        "name": "Lifestyle Natural",
        "category": "Lifestyle",
        "base_prompt": (
            "authentic everyday setting, warm natural window light, lived-in props, "
            "shallow depth of field, candid lifestyle photography"
        ),
    },
    "luxury-editorial": {
        "id": "luxury-editorial",
        "name": "Luxury Editorial",
        "category": "Premium",
        "base_prompt": (
            "premium materials, dark marble and brushed metal surfaces, dramatic "
            "low-key lighting, elegant reflections, high-end editorial aesthetic"
        ),
    },
    "tech-futuristic": {
        "id": "tech-futuristic",
        "name": "Tech Futuristic",
        "category": "Tech",
        "base_prompt": (
            "sleek modern surfaces, cool blue accent lighting, subtle light trails, "
            "futuristic tech showcase, sharp specular highlights"
        ),
    },
    "vintage-film": {
        "id": "vintage-film",
        "name": "Vintage Film",
        "category": "Retro",
        "base_prompt": (
            "retro film grain, warm faded color grading, classic props, "
            "nostalgic analog photography look"
        ),
    },
}

ANIMATION_TEMPLATES = [
    {
        "id": "side-to-side-20",
        "name": "Side to Side 20°",
        "prompt": "Static camera, product slowly rotates 20 degrees left to right, smooth continuous motion, front always facing camera",
    },
    {
        "id": "side-to-side-30",
        "name": "Side to Side 30°",
        "prompt": "Fixed camera, gentle side-to-side rotation of 30 degrees total, smooth and continuous, front facing camera",
    },
    {
        "id": "pendulum-25",
        "name": "Pendulum 25°",
        "prompt": "Fixed perspective, smooth pendulum rotation left to right, 25 degrees total, steady rhythm",
    },
    {
        "id": "gentle-orbit",
        "name": "Gentle Orbit",
        "prompt": "Camera slowly orbits 15 degrees around the product, product stays centered and front-facing, smooth cinematic motion",
    },
    {
        "id": "vertical-tilt",
        "name": "Vertical Tilt",
        "prompt": "Slow vertical camera tilt from slightly below to eye level, product centered, soft smooth motion",
    },
    {
        "id": "zoom-in-slow",
        "name": "Slow Zoom In",
        "prompt": "Slow steady push-in toward the product, revealing detail, product remains centered and front-facing",
    },
    {
        "id": "floating-gentle",
        "name": "Gentle Float",
        "prompt": "Product floats gently up and down a few centimeters, subtle 10 degree sway, static camera",
    },
    {
        "id": "360-spin",
        "name": "Turntable Spin",
        "prompt": "Smooth turntable rotation showing the product, steady speed, static camera, clean studio lighting",
    },
    {
        "id": "diagonal-pan",
        "name": "Diagonal Pan",
        "prompt": "Slow diagonal camera pan from upper left to lower right across the product, smooth cinematic movement",
    },
    {
        "id": "static-subtle",
        "name": "Static Subtle",
        "prompt": "Nearly static shot with subtle light shimmer across the product surface, minimal motion, calm mood",
    },
]

_TEMPLATES_BY_ID = {t["id"]: t for t in ANIMATION_TEMPLATES}


def get_preset(preset_id: str) -> dict:
    """Get full image-style preset object by ID."""
    if preset_id not in IMAGE_STYLE_PRESETS:
        raise ValueError(f"Unknown preset: {preset_id}. Valid: {list(IMAGE_STYLE_PRESETS.keys())}")
    return IMAGE_STYLE_PRESETS[preset_id]


def get_base_prompt(preset_id: str | None) -> str:
    """Base prompt for a preset, or "" when unset or unknown."""
    if not preset_id:
        return ""
    return IMAGE_STYLE_PRESETS.get(preset_id, {}).get("base_prompt", "")


def get_animation_template(template_id: str | None) -> dict:
    """Template by id; unknown or missing ids resolve to the first template."""
    return _TEMPLATES_BY_ID.get(template_id or "", ANIMATION_TEMPLATES[0])
