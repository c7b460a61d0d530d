import pytest

from bulkgen.pipeline.csv_import import parse_rows
from bulkgen.pipeline.models import AnimationPromptMode, WorkItemStatus


class TestParseRows:
    def test_basic_rows(self):
        result = parse_rows(
            "text_content,product_image\n"
            "Aero Kettle,https://cdn.test/kettle.png\n"
            "Premium Toaster,\n",
            "batch-1",
        )
        assert [i.text_content for i in result.items] == ["Aero Kettle", "Premium Toaster"]
        assert [i.row_index for i in result.items] == [0, 1]
        assert result.items[0].product_image_url == "https://cdn.test/kettle.png"
        assert result.items[1].product_image_url is None
        assert all(i.status == WorkItemStatus.PENDING and i.batch_id == "batch-1" for i in result.items)
        assert result.warnings == []

    def test_header_case_and_bom(self):
        result = parse_rows("\ufeffText_Content,Scene_Count\nLamp,3\n", "b")
        assert result.items[0].overrides.scene_count == 3

    def test_overrides_parsed(self):
        result = parse_rows(
            "text_content,video_formats,animation_provider,duration,camera_fixed,use_end_image,"
            "animation_prompt_mode,animation_template,image_style_preset\n"
            "Lamp,9x16;16x9,Runway,10,yes,0,template,zoom-in-slow,super-minimalist\n",
            "b",
        )
        overrides = result.items[0].overrides
        assert overrides.formats == ["9x16", "16x9"]
        assert overrides.animation_provider == "runway"
        assert overrides.duration == 10
        assert overrides.camera_fixed is True
        assert overrides.use_end_image is False
        assert overrides.animation_prompt_mode == AnimationPromptMode.TEMPLATE
        assert overrides.animation_template == "zoom-in-slow"
        assert overrides.image_style_preset == "super-minimalist"

    def test_invalid_values_dropped_with_warnings(self):
        result = parse_rows(
            "text_content,animation_provider,duration,scene_count,camera_fixed,animation_prompt_mode\n"
            "Lamp,sora,abc,99,maybe,freestyle\n",
            "b",
        )
        overrides = result.items[0].overrides
        assert overrides.model_dump(exclude_none=True) == {}
        assert len(result.warnings) == 5
        assert any("unknown animation_provider 'sora'" in w for w in result.warnings)

    def test_empty_rows_skipped_and_indexes_sequential(self):
        result = parse_rows("text_content\nLamp\n\"\"\nKettle\n", "b")
        assert [i.row_index for i in result.items] == [0, 1]
        assert result.skipped == 1
        assert result.warnings == ["Row 3: empty text_content; skipped"]

    def test_custom_provider_list(self):
        result = parse_rows("text_content,animation_provider\nLamp,kling\n", "b", providers=["kling"])
        assert result.items[0].overrides.animation_provider == "kling"

    @pytest.mark.parametrize("csv_text,message", [
        ("", "no header"),
        ("title,product_image\nLamp,\n", "text_content column"),
        ("text_content\n\"\"\n", "no rows"),
    ])
    def test_rejected(self, csv_text, message):
        with pytest.raises(ValueError, match=message):
            parse_rows(csv_text, "b")
