"""Tests for animation prompt selection."""

import asyncio
import random
import re

import pytest

from bulkgen import metrics
from bulkgen.pipeline.animation_prompts import (
    FALLBACK_PROMPTS,
    MINIMAL_ANIMATION_PROMPTS,
    AnimationPromptGenerator,
    AnimationPromptRequest,
    style_guidelines,
)
from bulkgen.pipeline.models import AnimationPromptMode
from bulkgen.presets import ANIMATION_TEMPLATES, SUPER_MINIMALIST_PRESET_ID, get_animation_template

from fakes import FakeCompleter

VISION = (
    "A matte black espresso machine on a marble kitchen counter, morning light from the left, "
    "steam rising from a small cup beside it."
)


def generate(req: AnimationPromptRequest, completer=None, seed: int = 7) -> str:
    gen = AnimationPromptGenerator(completer, rng=random.Random(seed))
    return asyncio.run(gen.generate(req))


class TestMinimal:
    def test_minimal_preset_only_uses_fixed_set(self):
        completer = FakeCompleter(reply="dramatic orbit")
        for seed in range(20):
            req = AnimationPromptRequest(text="Toaster", preset_id=SUPER_MINIMALIST_PRESET_ID, vision_description=VISION)
            assert generate(req, completer, seed) in MINIMAL_ANIMATION_PROMPTS
        assert completer.prompts == []

    def test_minimal_wins_over_template_mode(self):
        req = AnimationPromptRequest(
            style="super minimal", mode=AnimationPromptMode.TEMPLATE, template_id="diagonal-pan",
        )
        assert generate(req) in MINIMAL_ANIMATION_PROMPTS

    def test_vision_marker_counts_as_minimal(self):
        req = AnimationPromptRequest(vision_description="A kettle centered on a solid background, nothing else")
        assert generate(req) in MINIMAL_ANIMATION_PROMPTS

    def test_minimal_sway_within_thirty_degrees(self):
        def total_sway(prompt):
            span = re.search(r"-(\d+) to \+(\d+) degrees", prompt)
            if span:
                return int(span[1]) + int(span[2])
            each = re.search(r"(\d+) degrees each direction", prompt)
            if each:
                return 2 * int(each[1])
            total = re.search(r"(\d+) degrees", prompt)
            return int(total[1]) if total else 0

        for prompt in MINIMAL_ANIMATION_PROMPTS:
            assert total_sway(prompt) <= 30, prompt

    def test_no_minimal_prompt_turns_the_product_away(self):
        for prompt in MINIMAL_ANIMATION_PROMPTS:
            assert "profile" not in prompt.lower()
            assert "back" not in prompt.lower().split()


class TestTemplateMode:
    def test_selected_template(self):
        req = AnimationPromptRequest(text="Lamp", mode=AnimationPromptMode.TEMPLATE, template_id="zoom-in-slow")
        assert generate(req) == get_animation_template("zoom-in-slow")["prompt"]

    def test_unknown_template_uses_first(self):
        req = AnimationPromptRequest(text="Lamp", mode=AnimationPromptMode.TEMPLATE, template_id="nope")
        assert generate(req) == ANIMATION_TEMPLATES[0]["prompt"]

    def test_missing_template_uses_first(self):
        req = AnimationPromptRequest(text="Lamp", mode=AnimationPromptMode.TEMPLATE)
        assert generate(req) == ANIMATION_TEMPLATES[0]["prompt"]


class TestAIMode:
    def test_ai_prompt_with_rich_vision(self):
        completer = FakeCompleter(reply='"Camera pushes in slowly as steam curls upward"')
        req = AnimationPromptRequest(text="Espresso machine", style="luxury", vision_description=VISION)
        assert generate(req, completer) == "Camera pushes in slowly as steam curls upward"
        sent = completer.prompts[0]
        assert VISION in sent
        assert "never show its back or its profile" in sent
        assert "Luxury:" in sent

    def test_ai_prompt_capped_at_thirty_words(self):
        completer = FakeCompleter(reply=" ".join(["slow"] * 45))
        req = AnimationPromptRequest(text="Espresso machine", vision_description=VISION)
        assert len(generate(req, completer).split()) == 30

    def test_short_vision_skips_ai(self):
        completer = FakeCompleter(reply="should not be used")
        req = AnimationPromptRequest(text="Espresso machine", vision_description="a machine")
        assert generate(req, completer) in FALLBACK_PROMPTS["scene"]
        assert completer.prompts == []

    def test_ai_failure_uses_bucket(self):
        completer = FakeCompleter(error=RuntimeError("quota"))
        req = AnimationPromptRequest(text="New product launch", vision_description=VISION)
        assert generate(req, completer) in FALLBACK_PROMPTS["product"]
        assert metrics.get_counter("fallback.animation_prompt") == 1

    def test_ai_mode_without_completer(self):
        req = AnimationPromptRequest(text="Espresso machine", vision_description=VISION)
        assert generate(req) in FALLBACK_PROMPTS["scene"]


class TestFallbackBuckets:
    @pytest.mark.parametrize("req,bucket", [
        (AnimationPromptRequest(text="Aero Kettle", style="clean", has_reference_image=True), "minimal_product"),
        (AnimationPromptRequest(text="New product launch", style="simple pastel"), "minimal_product"),
        (AnimationPromptRequest(text="Aero Kettle", vision_description="kettle on a white background"),
         "scene"),
        (AnimationPromptRequest(text="Aero Kettle", vision_description="an item on a white background"),
         "minimal_product"),
        (AnimationPromptRequest(text="Aero Kettle", style="luxury", has_reference_image=True), "product"),
        (AnimationPromptRequest(text="Aero Kettle", vision_description="a shiny object"), "product"),
        (AnimationPromptRequest(text="Beach day", style="minimal"), "scene"),
        (AnimationPromptRequest(text="Beach day", style="luxury"), "scene"),
    ])
    def test_bucket_chosen_by_generate(self, req, bucket):
        for seed in range(10):
            assert generate(req, seed=seed) in FALLBACK_PROMPTS[bucket]

    def test_minimal_product_reachable_in_ai_mode(self):
        completer = FakeCompleter(error=RuntimeError("quota"))
        req = AnimationPromptRequest(
            text="Aero Kettle", style="clean studio", vision_description=VISION, has_reference_image=True,
        )
        assert generate(req, completer) in FALLBACK_PROMPTS["minimal_product"]


class TestHelpers:
    def test_style_guidelines_combine(self):
        text = style_guidelines("Modern luxury")
        assert "Luxury:" in text
        assert "Tech:" in text
        assert style_guidelines("") == ""
