"""
Runtime configuration loaded from environment variables and an optional YAML file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..ai_generation.base import ProviderConfig
from .activities import Activity
from .errors import ConfigurationError

OPENAI_GENERATIONS_ENDPOINT = "https://api.openai.com/v1/images/generations"
OPENAI_EDITS_ENDPOINT = "https://api.openai.com/v1/images/edits"

DEFAULT_PROVIDERS: dict[str, ProviderConfig] = {
    Activity.CHARACTER_THUMBNAIL.value: ProviderConfig(
        endpoint=OPENAI_EDITS_ENDPOINT, model="gpt-image-1"
    ),
    Activity.COVER.value: ProviderConfig(
        endpoint=OPENAI_GENERATIONS_ENDPOINT, model="gpt-image-1"
    ),
    Activity.COVER_VARIANT.value: ProviderConfig(
        endpoint=OPENAI_EDITS_ENDPOINT, model="gpt-image-1"
    ),
    Activity.PAGE_ILLUSTRATION.value: ProviderConfig(
        endpoint=OPENAI_GENERATIONS_ENDPOINT, model="gpt-image-1"
    ),
}

_ENV_KEYS: dict[str, tuple[str, type]] = {
    "STORYFORGE_DB_PATH": ("db_path", str),
    "STORYFORGE_ASSET_ROOT": ("asset_root", Path),
    "STORYFORGE_ASSET_BASE_URL": ("asset_base_url", str),
    "OPENAI_API_KEY": ("openai_api_key", str),
    "BFL_API_KEY": ("bfl_api_key", str),
    "REPLICATE_API_TOKEN": ("replicate_api_token", str),
    "STORYFORGE_REQUEST_TIMEOUT": ("request_timeout", float),
    "STORYFORGE_FULFILLMENT_BATCH_SIZE": ("fulfillment_batch_size", int),
    "STORYFORGE_FULFILLMENT_ITEM_TIMEOUT": ("fulfillment_item_timeout", float),
}

_YAML_KEYS = {
    "db_path",
    "asset_root",
    "asset_base_url",
    "request_timeout",
    "retry",
    "polling",
    "fulfillment",
    "providers",
}


@dataclass(frozen=True)
class Settings:
    """
    Process configuration for the generation subsystem.

    API keys are only read from the environment; the YAML file never carries secrets.
    """

    db_path: str = "storyforge.db"
    asset_root: Path = Path("assets")
    asset_base_url: str | None = None
    openai_api_key: str | None = None
    bfl_api_key: str | None = None
    replicate_api_token: str | None = None
    request_timeout: float = 60.0
    retry_attempts: int = 3
    retry_delay: float = 2.0
    poll_attempts: int = 20
    poll_interval: float = 1.5
    fulfillment_batch_size: int = 3
    fulfillment_item_timeout: float = 30.0
    fulfillment_batch_delay: float = 2.0
    export_lease_seconds: float = 300.0
    providers: Mapping[str, ProviderConfig] = field(
        default_factory=lambda: dict(DEFAULT_PROVIDERS)
    )

    def __post_init__(self) -> None:
        if self.retry_attempts < 1:
            raise ConfigurationError("retry attempts must be >= 1")
        if self.poll_attempts < 1:
            raise ConfigurationError("poll attempts must be >= 1")
        if self.fulfillment_batch_size < 1:
            raise ConfigurationError("fulfillment batch size must be >= 1")
        for name in ("retry_delay", "poll_interval", "fulfillment_batch_delay"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")
        if self.fulfillment_item_timeout <= 0:
            raise ConfigurationError("fulfillment item timeout must be > 0")

    def provider_for(self, activity: str | Activity) -> ProviderConfig:
        key = activity.value if isinstance(activity, Activity) else str(activity)
        try:
            return self.providers[key]
        except KeyError as exc:
            raise ConfigurationError(
                f"No provider configured for activity '{key}'."
            ) from exc


def load_settings(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Settings:
    """
    Build :class:`Settings` from an optional YAML file, then apply environment overrides.

    Raises
    ------
    FileNotFoundError
        If ``path`` is given but does not exist.
    ConfigurationError
        If the file contains unknown keys or invalid values.
    """
    environ = os.environ if env is None else env
    settings = Settings()

    if path is not None:
        settings = _apply_yaml(settings, Path(path))

    overrides: dict[str, Any] = {}
    for env_key, (attr, caster) in _ENV_KEYS.items():
        raw = environ.get(env_key)
        if raw is None or raw == "":
            continue
        try:
            overrides[attr] = caster(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid value for {env_key}: {raw!r}") from exc

    return replace(settings, **overrides) if overrides else settings


def _apply_yaml(settings: Settings, config_path: Path) -> Settings:
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, Mapping):
        raise ConfigurationError("Settings file must contain a mapping.")

    unknown = set(raw) - _YAML_KEYS
    if unknown:
        raise ConfigurationError(f"Unknown settings keys: {sorted(unknown)}")

    values: dict[str, Any] = {}
    if "db_path" in raw:
        values["db_path"] = str(raw["db_path"])
    if "asset_root" in raw:
        values["asset_root"] = Path(str(raw["asset_root"])).expanduser()
    if "asset_base_url" in raw:
        values["asset_base_url"] = str(raw["asset_base_url"]).rstrip("/") or None
    if "request_timeout" in raw:
        values["request_timeout"] = float(raw["request_timeout"])

    values.update(
        _section(raw, "retry", {"attempts": ("retry_attempts", int), "delay": ("retry_delay", float)})
    )
    values.update(
        _section(raw, "polling", {"attempts": ("poll_attempts", int), "interval": ("poll_interval", float)})
    )
    values.update(
        _section(
            raw,
            "fulfillment",
            {
                "batch_size": ("fulfillment_batch_size", int),
                "item_timeout": ("fulfillment_item_timeout", float),
                "batch_delay": ("fulfillment_batch_delay", float),
                "lease_seconds": ("export_lease_seconds", float),
            },
        )
    )

    if "providers" in raw:
        providers_data = raw["providers"]
        if not isinstance(providers_data, Mapping):
            raise ConfigurationError("'providers' must be a mapping of activity to provider.")
        providers = dict(settings.providers)
        for activity, entry in providers_data.items():
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"Provider entry for '{activity}' must be a mapping.")
            try:
                providers[str(activity)] = ProviderConfig.from_mapping(entry)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid provider for '{activity}': {exc}") from exc
        values["providers"] = providers

    try:
        return replace(settings, **values)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(str(exc)) from exc


def _section(
    raw: Mapping[str, Any],
    name: str,
    fields: Mapping[str, tuple[str, type]],
) -> dict[str, Any]:
    data = raw.get(name)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"'{name}' must be a mapping")

    unknown = set(data) - set(fields)
    if unknown:
        raise ConfigurationError(f"Unknown keys in {name}: {sorted(unknown)}")

    values: dict[str, Any] = {}
    for key, (attr, caster) in fields.items():
        if key in data:
            try:
                values[attr] = caster(data[key])
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"Invalid value for {name}.{key}: {data[key]!r}") from exc
    return values
