"""
Unit tests for the asset services built on the orchestrator.
"""

import pytest

from storyforge.ai_generation.base import GenerationResult, ReferenceImage
from storyforge.common.errors import (
    ActivityDisabledError,
    ErrorKind,
    GenerationError,
    WizardPreconditionError,
)
from storyforge.common.settings import Settings
from storyforge.pipeline.assets import AssetGenerationService
from storyforge.pipeline.feature_flags import FeatureFlagGate
from storyforge.pipeline.wizard import WizardService
from storyforge.storage.assets import LocalAssetStore
from storyforge.storage.models import Character, Story, StoryPage
from storyforge.storage.repository import (
    CharacterRepository,
    MetricsRepository,
    SettingsRepository,
    StoryRepository,
)

from fakes import PNG_BYTES


class TestAssetGenerationService:
    @pytest.fixture(autouse=True)
    def setup_service(self, db_path, orchestrator, provider, tmp_path):
        self.db_path = db_path
        self.provider = provider
        self.asset_root = tmp_path / "assets"
        self.characters = CharacterRepository(db_path)
        self.stories = StoryRepository(db_path)
        self.fetched = []

        def fetch_references(sources):
            sources = list(sources)
            self.fetched.append(sources)
            return [ReferenceImage(name, b"ref") for name, _ in sources]

        self.service = AssetGenerationService(
            orchestrator=orchestrator,
            settings=Settings(),
            characters=self.characters,
            stories=self.stories,
            store=LocalAssetStore(self.asset_root, base_url="https://cdn.example/storage"),
            fetch_references=fetch_references,
        )

        self.stories.save(
            Story(
                id="s1",
                user_id="u1",
                title="The Moon Picnic",
                pages=[StoryPage(id="p1", story_id="s1", page_number=1, text="Ana packs a basket.")],
            )
        )
        for character_id, name in (("c1", "Zoe"), ("c2", "Ana"), ("c3", "Max")):
            self.characters.save(
                Character(
                    id=character_id,
                    user_id="u1",
                    name=name,
                    description=f"{name} the explorer",
                    reference_image_url=f"https://photos.example/{character_id}.jpg",
                )
            )
        self.stories.link_characters("s1", ["c1", "c2", "c3"])

    def complete_characters_stage(self):
        wizard = WizardService(self.stories)
        for _ in range(3):
            wizard.apply("s1", "assign_character")
        wizard.apply("s1", "advance_characters")

    def test_character_thumbnail_is_stored_and_linked(self):
        url = self.service.generate_character_thumbnail(character_id="c2")

        assert url == "https://cdn.example/storage/thumbnails/c2.png"
        assert (self.asset_root / "thumbnails" / "c2.png").read_bytes() == PNG_BYTES
        assert self.characters.get("c2").thumbnail_url == url
        assert self.fetched == [[("Ana", "https://photos.example/c2.jpg")]]
        call = self.provider.calls[0]
        assert "Ana" in call["prompt"]
        assert call["config"].endpoint.endswith("/images/edits")
        metric = MetricsRepository(self.db_path).fetch()[0]
        assert metric.activity == "character_thumbnail"
        assert metric.user_id == "u1"

    def test_cover_requires_completed_characters_stage(self):
        with pytest.raises(WizardPreconditionError):
            self.service.generate_cover(story_id="s1")

        assert self.provider.calls == []
        assert MetricsRepository(self.db_path).fetch() == []

    def test_cover_uses_whole_cast(self):
        self.complete_characters_stage()
        self.characters.set_thumbnail_url("c1", "https://cdn.example/storage/thumbnails/c1.png")

        url = self.service.generate_cover(story_id="s1", style="crayon")

        assert url == "https://cdn.example/storage/covers/s1.png"
        assert self.stories.get("s1").cover_url == url
        assert self.fetched == [
            [
                ("Ana", "https://photos.example/c2.jpg"),
                ("Max", "https://photos.example/c3.jpg"),
                ("Zoe", "https://cdn.example/storage/thumbnails/c1.png"),
            ]
        ]
        call = self.provider.calls[0]
        assert [image.name for image in call["references"]] == ["Ana", "Max", "Zoe"]
        assert "crayon" in call["prompt"]
        assert "The Moon Picnic" in call["prompt"]

    def test_cover_variant_needs_existing_cover(self):
        with pytest.raises(GenerationError) as excinfo:
            self.service.generate_cover_variant(story_id="s1", style_key="pastel", style_prompt="Pastel chalk")

        assert excinfo.value.kind is ErrorKind.INVALID_INPUT
        assert self.provider.calls == []

    def test_cover_variant_keeps_base_cover(self):
        self.stories.set_cover_url("s1", "https://cdn.example/storage/covers/s1.png")

        url = self.service.generate_cover_variant(
            story_id="s1", style_key="pastel", style_prompt="Pastel chalk"
        )

        assert url == "https://cdn.example/storage/covers/s1_pastel.png"
        assert self.stories.get("s1").cover_url == "https://cdn.example/storage/covers/s1.png"
        assert self.fetched == [[("The Moon Picnic", "https://cdn.example/storage/covers/s1.png")]]
        metric = MetricsRepository(self.db_path).fetch()[0]
        assert metric.activity == "cover_variant"

    def test_page_illustration_is_written_to_page(self):
        self.complete_characters_stage()

        url = self.service.generate_page_illustration(page_id="p1", continuity_notes=["night sky"])

        assert url == "https://cdn.example/storage/story-images/s1/1.png"
        page = self.stories.get_page("p1")
        assert page.image_url == url
        assert "Ana packs a basket." in page.prompt
        assert "night sky" in page.prompt

    def test_provider_failure_leaves_entity_untouched(self):
        self.provider.outcomes = [GenerationError(ErrorKind.INVALID_INPUT, "unsafe prompt")]

        with pytest.raises(GenerationError):
            self.service.generate_character_thumbnail(character_id="c1")

        assert self.characters.get("c1").thumbnail_url is None
        assert not (self.asset_root / "thumbnails" / "c1.png").exists()

    def test_hosted_result_is_downloaded(self, monkeypatch):
        self.provider.outcomes = [GenerationResult(asset_url="https://provider.example/out.png")]
        downloaded = []

        def fake_download(store, url):
            downloaded.append(url)
            return PNG_BYTES

        monkeypatch.setattr(LocalAssetStore, "download", fake_download)

        self.service.generate_character_thumbnail(character_id="c3")

        assert downloaded == ["https://provider.example/out.png"]
        assert (self.asset_root / "thumbnails" / "c3.png").read_bytes() == PNG_BYTES

    def test_unknown_entities_are_invalid_input(self):
        for call in (
            lambda: self.service.generate_character_thumbnail(character_id="nope"),
            lambda: self.service.generate_cover(story_id="nope"),
            lambda: self.service.generate_page_illustration(page_id="nope"),
        ):
            with pytest.raises(GenerationError) as excinfo:
                call()
            assert excinfo.value.kind is ErrorKind.INVALID_INPUT

    def test_disabled_activity_skips_reference_downloads(self):
        FeatureFlagGate(SettingsRepository(self.db_path)).set_enabled(
            "characters", "character_thumbnail", False
        )

        with pytest.raises(GenerationError) as excinfo:
            self.service.generate_character_thumbnail(character_id="c2")

        assert excinfo.value.kind is ErrorKind.DISABLED
        assert self.fetched == []
        assert self.provider.calls == []

    def test_disabled_cover_wins_over_wizard_precondition(self):
        FeatureFlagGate(SettingsRepository(self.db_path)).set_enabled("story", "cover", False)

        with pytest.raises(ActivityDisabledError):
            self.service.generate_cover(story_id="s1")

        assert self.fetched == []


class TestStoredAssetsAsReferences:
    """Assets written without a public base URL are read back from disk."""

    @pytest.fixture(autouse=True)
    def setup_service(self, db_path, orchestrator, provider, tmp_path):
        self.provider = provider
        self.store = LocalAssetStore(tmp_path / "assets")
        self.stories = StoryRepository(db_path)
        self.service = AssetGenerationService(
            orchestrator=orchestrator,
            settings=Settings(),
            characters=CharacterRepository(db_path),
            stories=self.stories,
            store=self.store,
        )
        self.stories.save(Story(id="s1", user_id="u1", title="The Moon Picnic"))

    def test_cover_variant_uses_stored_cover(self):
        cover_url = self.store.save_bytes("covers/s1.png", PNG_BYTES)
        self.stories.set_cover_url("s1", cover_url)

        url = self.service.generate_cover_variant(
            story_id="s1", style_key="pastel", style_prompt="Pastel chalk"
        )

        assert url == self.store.public_url("covers/s1_pastel.png")
        [reference] = self.provider.calls[0]["references"]
        assert reference.name == "The Moon Picnic"
        assert reference.data == PNG_BYTES
