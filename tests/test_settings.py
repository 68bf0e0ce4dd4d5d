"""
Unit tests for configuration loading.
"""

import os
import tempfile

import pytest

from storyforge.common.errors import ConfigurationError
from storyforge.common.settings import DEFAULT_PROVIDERS, Settings, load_settings


class TestSettings:
    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()

    def teardown_method(self):
        self.temp_dir.cleanup()

    def write_config(self, content: str) -> str:
        path = os.path.join(self.temp_dir.name, "storyforge.yaml")
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)
        return path

    def test_defaults(self):
        settings = load_settings(env={})

        assert settings.retry_attempts == 3
        assert settings.retry_delay == 2.0
        assert settings.poll_attempts == 20
        assert settings.poll_interval == 1.5
        assert settings.fulfillment_batch_size == 3
        assert settings.fulfillment_item_timeout == 30.0
        assert settings.fulfillment_batch_delay == 2.0
        assert settings.provider_for("cover") == DEFAULT_PROVIDERS["cover"]

    def test_yaml_overrides_sections_and_providers(self):
        path = self.write_config(
            """
db_path: /tmp/storyforge-test.db
retry:
  attempts: 5
polling:
  interval: 0.5
fulfillment:
  batch_size: 4
  lease_seconds: 60
providers:
  cover:
    endpoint: https://api.bfl.ai/v1/flux-kontext-pro
    model: flux-kontext-pro
    options:
      seed: 3
"""
        )

        settings = load_settings(path, env={})

        assert settings.db_path == "/tmp/storyforge-test.db"
        assert settings.retry_attempts == 5
        assert settings.poll_interval == 0.5
        assert settings.fulfillment_batch_size == 4
        assert settings.export_lease_seconds == 60.0
        cover = settings.provider_for("cover")
        assert cover.kind == "flux"
        assert cover.reference_limit == 1
        assert cover.options == {"seed": 3}
        assert settings.provider_for("character_thumbnail") == DEFAULT_PROVIDERS["character_thumbnail"]

    def test_environment_wins_over_yaml(self):
        path = self.write_config("db_path: from-yaml.db\n")

        settings = load_settings(
            path,
            env={"STORYFORGE_DB_PATH": "from-env.db", "OPENAI_API_KEY": "sk-env"},
        )

        assert settings.db_path == "from-env.db"
        assert settings.openai_api_key == "sk-env"

    def test_unknown_top_level_key(self):
        path = self.write_config("api_key: secret\n")

        with pytest.raises(ConfigurationError):
            load_settings(path, env={})

    def test_unknown_section_key(self):
        path = self.write_config("retry:\n  attemps: 2\n")

        with pytest.raises(ConfigurationError):
            load_settings(path, env={})

    def test_invalid_provider_entry(self):
        path = self.write_config("providers:\n  cover:\n    model: gpt-image-1\n")

        with pytest.raises(ConfigurationError):
            load_settings(path, env={})

    def test_invalid_environment_value(self):
        with pytest.raises(ConfigurationError):
            load_settings(env={"STORYFORGE_FULFILLMENT_BATCH_SIZE": "three"})

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_settings(os.path.join(self.temp_dir.name, "absent.yaml"), env={})

    def test_validation(self):
        with pytest.raises(ConfigurationError):
            Settings(fulfillment_batch_size=0)
        with pytest.raises(ConfigurationError):
            Settings(retry_attempts=0)

    def test_unconfigured_activity(self):
        with pytest.raises(ConfigurationError):
            Settings().provider_for("pdf_export")
