"""
Unit tests for the orchestrated PDF export.
"""

import pytest

from storyforge.common.errors import ActivityDisabledError, ErrorKind, GenerationError
from storyforge.pdf_generation.builder import StorybookPDFBuilder
from storyforge.pdf_generation.export import PDF_MODEL, StoryPdfExporter
from storyforge.pipeline.feature_flags import FeatureFlagGate
from storyforge.storage.assets import LocalAssetStore
from storyforge.storage.models import Story, StoryPage
from storyforge.storage.repository import MetricsRepository, SettingsRepository, StoryRepository

from fakes import PNG_BYTES, PNG_DATA_URL


class TestStoryPdfExporter:
    @pytest.fixture(autouse=True)
    def setup_exporter(self, db_path, orchestrator, tmp_path):
        self.db_path = db_path
        self.asset_root = tmp_path / "assets"
        self.stories = StoryRepository(db_path)
        self.stories.save(
            Story(
                id="s1",
                user_id="u1",
                title="Luna Learns to Swim",
                cover_url=PNG_DATA_URL,
                pages=[
                    StoryPage(id="p1", story_id="s1", page_number=1, text="Luna dips a toe.", image_url=PNG_DATA_URL)
                ],
            )
        )
        self.exporter = StoryPdfExporter(
            orchestrator=orchestrator,
            stories=self.stories,
            store=LocalAssetStore(self.asset_root, base_url="https://cdn.example/storage"),
            builder=StorybookPDFBuilder(),
        )

    def test_export_stores_pdf_and_records_metric(self):
        url = self.exporter.export("s1", "u1")

        assert url == "https://cdn.example/storage/exports/s1.pdf"
        assert (self.asset_root / "exports" / "s1.pdf").read_bytes().startswith(b"%PDF")
        metrics = MetricsRepository(self.db_path).fetch(activity="pdf_export")
        assert len(metrics) == 1
        assert metrics[0].model == PDF_MODEL
        assert metrics[0].outcome == "success"
        assert metrics[0].user_id == "u1"

    def test_export_leaves_story_row_alone(self):
        self.exporter.export("s1", "u1")

        assert self.stories.get("s1").pdf_url is None

    def test_disabled_export_is_rejected(self):
        FeatureFlagGate(SettingsRepository(self.db_path)).set_enabled("export", "pdf_export", False)

        with pytest.raises(ActivityDisabledError):
            self.exporter.export("s1", "u1")

        assert not (self.asset_root / "exports" / "s1.pdf").exists()

    @pytest.mark.parametrize("story_id, user_id", [("s1", "someone-else"), ("missing", "u1")])
    def test_unknown_or_foreign_story_is_invalid_input(self, story_id, user_id):
        with pytest.raises(GenerationError) as excinfo:
            self.exporter.export(story_id, user_id)

        assert excinfo.value.kind is ErrorKind.INVALID_INPUT
        assert MetricsRepository(self.db_path).fetch() == []


class TestExportWithoutPublicBaseUrl:
    @pytest.fixture(autouse=True)
    def setup_exporter(self, db_path, orchestrator, tmp_path):
        self.store = LocalAssetStore(tmp_path / "assets")
        self.stories = StoryRepository(db_path)
        self.exporter = StoryPdfExporter(orchestrator=orchestrator, stories=self.stories, store=self.store)

    def save_story(self, image_url):
        self.stories.save(
            Story(
                id="s1",
                user_id="u1",
                title="Luna Learns to Swim",
                pages=[StoryPage(id="p1", story_id="s1", page_number=1, text="Luna dips a toe.", image_url=image_url)],
            )
        )

    def test_stored_page_image_is_embedded(self):
        image_url = self.store.save_bytes("story-images/s1/1.png", PNG_BYTES)
        assert image_url.startswith("file://")
        self.save_story(image_url)

        pdf_url = self.exporter.export("s1", "u1")

        assert b"/Subtype /Image" in self.store.load(pdf_url)

    def test_missing_stored_image_falls_back_to_placeholder(self):
        self.save_story(self.store.public_url("story-images/s1/9.png"))

        pdf_url = self.exporter.export("s1", "u1")

        document = self.store.load(pdf_url)
        assert document.startswith(b"%PDF")
        assert b"/Subtype /Image" not in document
