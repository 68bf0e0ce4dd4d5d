"""
Unit tests for request payload dispatch and error shaping.
"""

from unittest.mock import Mock

import pytest

from storyforge.common.errors import (
    ActivityDisabledError,
    ErrorKind,
    GenerationError,
    USER_MESSAGES,
    WizardPreconditionError,
)
from storyforge.pipeline.assets import AssetGenerationService
from storyforge.pipeline.handlers import GenerationRequestHandler


class TestGenerationRequestHandler:
    def setup_method(self):
        self.service = Mock(spec=AssetGenerationService)
        self.handler = GenerationRequestHandler(self.service)

    def test_cover_request_is_dispatched(self):
        self.service.generate_cover.return_value = "https://cdn.example/covers/s1.png"

        response = self.handler.handle(
            {"activity": "cover", "story_id": "s1", "user_id": "u1", "style": "watercolor"}
        )

        assert response == {"asset_url": "https://cdn.example/covers/s1.png"}
        self.service.generate_cover.assert_called_once_with(
            story_id="s1", user_id="u1", style="watercolor", palette=None
        )

    def test_cover_variant_passes_style_fields(self):
        self.service.generate_cover_variant.return_value = "https://cdn.example/covers/s1_pastel.png"

        response = self.handler.handle(
            {
                "activity": "cover_variant",
                "story_id": "s1",
                "style_key": "pastel",
                "style_prompt": "Soft pastel chalk",
            }
        )

        assert response["asset_url"].endswith("s1_pastel.png")
        self.service.generate_cover_variant.assert_called_once_with(
            story_id="s1", style_key="pastel", style_prompt="Soft pastel chalk", user_id=None
        )

    def test_page_illustration_passes_continuity_notes(self):
        self.service.generate_page_illustration.return_value = "url"

        self.handler.handle(
            {"activity": "page_illustration", "page_id": "p1", "continuity_notes": ["red scarf"]}
        )

        kwargs = self.service.generate_page_illustration.call_args.kwargs
        assert kwargs["page_id"] == "p1"
        assert kwargs["continuity_notes"] == ["red scarf"]

    def test_missing_field_is_invalid_input(self):
        response = self.handler.handle({"activity": "cover_variant", "story_id": "s1"})

        assert response["error"]["kind"] == "invalid_input"
        assert "style_key" in response["error"]["message"]
        assert "style_prompt" in response["error"]["message"]
        self.service.generate_cover_variant.assert_not_called()

    @pytest.mark.parametrize("activity", ["poster", None, "pdf_export"])
    def test_unsupported_activity_is_invalid_input(self, activity):
        response = self.handler.handle({"activity": activity, "story_id": "s1"})

        assert response["error"]["kind"] == "invalid_input"

    def test_provider_details_are_masked(self):
        self.service.generate_cover.side_effect = GenerationError(
            ErrorKind.RATE_LIMITED, "429 from api.openai.com: org quota exceeded"
        )

        response = self.handler.handle({"activity": "cover", "story_id": "s1"})

        assert response == {
            "error": {"kind": "rate_limited", "message": USER_MESSAGES[ErrorKind.RATE_LIMITED]}
        }

    def test_invalid_input_keeps_its_message(self):
        self.service.generate_character_thumbnail.side_effect = GenerationError(
            ErrorKind.INVALID_INPUT, "Character not found: c9"
        )

        response = self.handler.handle({"activity": "character_thumbnail", "character_id": "c9"})

        assert response["error"] == {"kind": "invalid_input", "message": "Character not found: c9"}

    def test_disabled_activity_is_reported(self):
        self.service.generate_cover.side_effect = ActivityDisabledError("story", "cover")

        response = self.handler.handle({"activity": "cover", "story_id": "s1"})

        assert response["error"]["kind"] == "disabled"

    def test_wizard_precondition_is_invalid_input(self):
        self.service.generate_cover.side_effect = WizardPreconditionError(
            "The characters stage is not completed yet."
        )

        response = self.handler.handle({"activity": "cover", "story_id": "s1"})

        assert response["error"] == {
            "kind": "invalid_input",
            "message": "The characters stage is not completed yet.",
        }

    def test_unexpected_exception_is_unknown(self):
        self.service.generate_cover.side_effect = KeyError("boom")

        response = self.handler.handle({"activity": "cover", "story_id": "s1"})

        assert response["error"] == {"kind": "unknown", "message": USER_MESSAGES[ErrorKind.UNKNOWN]}
