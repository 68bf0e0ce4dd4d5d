"""
Stage and activity identifiers used for feature flags, metrics, and in-flight tracking.
"""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    CHARACTERS = "characters"
    STORY = "story"
    DESIGN = "design"
    PREVIEW = "preview"
    EXPORT = "export"


class Activity(str, Enum):
    CHARACTER_THUMBNAIL = "character_thumbnail"
    COVER = "cover"
    COVER_VARIANT = "cover_variant"
    PAGE_ILLUSTRATION = "page_illustration"
    PDF_EXPORT = "pdf_export"

    @property
    def default_stage(self) -> Stage:
        return DEFAULT_STAGES[self]


DEFAULT_STAGES: dict[Activity, Stage] = {
    Activity.CHARACTER_THUMBNAIL: Stage.CHARACTERS,
    Activity.COVER: Stage.STORY,
    Activity.COVER_VARIANT: Stage.DESIGN,
    Activity.PAGE_ILLUSTRATION: Stage.STORY,
    Activity.PDF_EXPORT: Stage.EXPORT,
}


def normalize_identifier(value: str | Enum) -> str:
    """Return the plain string form of a stage or activity identifier."""
    if isinstance(value, Enum):
        value = value.value
    text = str(value).strip()
    if not text:
        raise ValueError("Stage and activity identifiers must be non-empty strings.")
    return text
