"""
Unit tests for prompt templates.
"""

import pytest

from storyforge.ai_generation.prompting import (
    DEFAULT_PALETTE,
    DEFAULT_STYLE,
    build_character_thumbnail_prompt,
    build_cover_prompt,
    build_cover_variant_prompt,
    build_page_prompt,
    render_template,
)


class TestTemplates:
    def test_render_template_leaves_unknown_placeholders(self):
        rendered = render_template("{story} in {style} with {lighting}", {"story": "Moon", "style": "ink"})

        assert rendered == "Moon in ink with {lighting}"

    def test_render_template_rejects_blank(self):
        with pytest.raises(ValueError):
            render_template("   ", {})

    def test_cover_prompt_defaults_and_cast(self):
        prompt = build_cover_prompt("The Moon Picnic", characters={"Ana": "red boots", "Max": "a tall giraffe"})

        assert '"The Moon Picnic"' in prompt
        assert DEFAULT_STYLE in prompt
        assert DEFAULT_PALETTE in prompt
        assert "CHARACTERS ON THE COVER\n- Ana: red boots\n- Max: a tall giraffe" in prompt

    def test_cover_prompt_custom_template(self):
        prompt = build_cover_prompt(
            "Sea Song",
            style="paper cut-out",
            palette="ocean blues",
            template="{story} | {style} | {palette}",
        )

        assert prompt == "Sea Song | paper cut-out | ocean blues"

    def test_thumbnail_prompt(self):
        prompt = build_character_thumbnail_prompt("Ana", "curly hair, yellow raincoat", style="crayon")

        assert "Ana" in prompt
        assert "curly hair, yellow raincoat" in prompt
        assert "crayon" in prompt

    def test_cover_variant_wraps_style(self):
        prompt = build_cover_variant_prompt("Soft pastel chalk texture")

        assert "Soft pastel chalk texture" in prompt
        with pytest.raises(ValueError):
            build_cover_variant_prompt("")

    def test_page_prompt_sections(self):
        prompt = build_page_prompt(
            "Ana finds a glowing shell",
            characters=["Ana: yellow raincoat"],
            continuity_notes="- shell stays in Ana's left hand\n- night sky",
        )

        assert "Ana finds a glowing shell" in prompt
        assert "CHARACTER CONTINUITY\n- Ana: yellow raincoat" in prompt
        assert "CONTINUITY NOTES\n- shell stays in Ana's left hand\n- night sky" in prompt

    def test_page_prompt_requires_scene(self):
        with pytest.raises(ValueError):
            build_page_prompt("  ")
