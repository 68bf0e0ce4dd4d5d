"""
Stage -> activity feature flags read on every generation call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..common.activities import normalize_identifier
from ..storage.repository import SettingsRepository

logger = logging.getLogger(__name__)

FLAGS_SETTINGS_KEY = "stages_enabled"


@dataclass(frozen=True)
class FeatureFlagMatrix:
    """
    Immutable snapshot of ``{stage: {activity: enabled}}``.

    Missing stages or activities are enabled; only an explicit ``False`` disables.
    """

    flags: Mapping[str, Mapping[str, bool]] = field(default_factory=dict)

    def is_enabled(self, stage: str | Enum, activity: str | Enum) -> bool:
        stage_flags = self.flags.get(normalize_identifier(stage)) or {}
        return stage_flags.get(normalize_identifier(activity)) is not False

    def with_flag(self, stage: str | Enum, activity: str | Enum, enabled: bool) -> "FeatureFlagMatrix":
        updated = {name: dict(values) for name, values in self.flags.items()}
        updated.setdefault(normalize_identifier(stage), {})[normalize_identifier(activity)] = bool(enabled)
        return FeatureFlagMatrix(flags=updated)

    def to_dict(self) -> dict[str, dict[str, bool]]:
        return {name: dict(values) for name, values in self.flags.items()}

    @classmethod
    def from_mapping(cls, payload: Any) -> "FeatureFlagMatrix":
        """Parse a stored document; malformed branches are ignored rather than disabling work."""
        if not isinstance(payload, Mapping):
            return cls()
        flags: dict[str, dict[str, bool]] = {}
        for stage, activities in payload.items():
            if not isinstance(activities, Mapping) or not str(stage).strip():
                continue
            stage_flags = flags.setdefault(normalize_identifier(str(stage)), {})
            for activity, value in activities.items():
                if isinstance(value, bool) and str(activity).strip():
                    stage_flags[normalize_identifier(str(activity))] = value
        return cls(flags=flags)


def load_flag_matrix(path: str | Path) -> FeatureFlagMatrix:
    """
    Load a flag matrix from YAML with strict validation.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the document is not a mapping of mappings of booleans.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Feature flag file not found: {path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, Mapping):
        raise ValueError("Feature flag file must contain a mapping of stages.")
    for stage, activities in raw.items():
        if not isinstance(activities, Mapping):
            raise ValueError(f"Stage '{stage}' must map activities to booleans.")
        for activity, value in activities.items():
            if not isinstance(value, bool):
                raise ValueError(f"Flag '{stage}.{activity}' must be true or false, got {value!r}.")
    return FeatureFlagMatrix.from_mapping(raw)


class FeatureFlagGate:
    """
    Reads the flag matrix from the settings row keyed ``stages_enabled``.

    Callers take one :meth:`snapshot` per generation call, so a toggle made by an
    administrator applies from the next call on. If the row cannot be read, every
    activity is treated as enabled.
    """

    def __init__(self, repository: SettingsRepository) -> None:
        self._repository = repository

    def snapshot(self) -> FeatureFlagMatrix:
        try:
            payload = self._repository.get_value(FLAGS_SETTINGS_KEY)
        except Exception:
            logger.exception("Failed to load feature flags; treating all activities as enabled.")
            return FeatureFlagMatrix()
        return FeatureFlagMatrix.from_mapping(payload)

    def is_enabled(self, stage: str | Enum, activity: str | Enum) -> bool:
        return self.snapshot().is_enabled(stage, activity)

    def set_enabled(self, stage: str | Enum, activity: str | Enum, enabled: bool) -> FeatureFlagMatrix:
        """Administrator toggle; returns the matrix that was written."""
        matrix = self.snapshot().with_flag(stage, activity, enabled)
        self._repository.set_value(FLAGS_SETTINGS_KEY, matrix.to_dict())
        logger.info(
            "Feature flag %s.%s set to %s",
            normalize_identifier(stage),
            normalize_identifier(activity),
            enabled,
        )
        return matrix

    def replace(self, matrix: FeatureFlagMatrix) -> None:
        self._repository.set_value(FLAGS_SETTINGS_KEY, matrix.to_dict())
