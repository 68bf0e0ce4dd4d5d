"""
Prompt construction utilities for storybook image generation.
"""

from __future__ import annotations

import re
from typing import Mapping, Sequence

DEFAULT_STYLE = "digital watercolor"
DEFAULT_PALETTE = "vibrant colors"

NEGATIVE_PROMPT = (
    "identity drift, age change, plastic skin, uncanny valley, harsh shadows, blown highlights, "
    "excessive stylization, obscured face, cluttered background, watermark, text, logo"
)

COVER_TEMPLATE = (
    "Storybook cover illustration for a children's book titled \"{story}\". "
    "Art style: {style}. Color palette: {palette}. "
    "Leave clear space in the upper third for the title lettering."
)

THUMBNAIL_TEMPLATE = (
    "Character portrait of {name} for a children's storybook. {description} "
    "Art style: {style}. Centered, friendly expression, plain soft background."
)

_PLACEHOLDER_RE = re.compile(r"\{([a-z_]+)\}")


def render_template(template: str, values: Mapping[str, str | None]) -> str:
    """
    Substitute ``{placeholder}`` markers; unknown placeholders are left untouched.
    """
    if not template or not template.strip():
        raise ValueError("Prompt template must be a non-empty string.")

    def _replace(match: re.Match[str]) -> str:
        value = values.get(match.group(1))
        return str(value).strip() if value is not None else match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template).strip()


def build_character_thumbnail_prompt(
    name: str,
    description: str | None = None,
    *,
    style: str | None = None,
    template: str | None = None,
) -> str:
    if not name or not name.strip():
        raise ValueError("Character name must be a non-empty string.")
    return render_template(
        template or THUMBNAIL_TEMPLATE,
        {
            "name": name.strip(),
            "description": (description or "").strip(),
            "style": style or DEFAULT_STYLE,
        },
    )


def build_cover_prompt(
    title: str,
    *,
    style: str | None = None,
    palette: str | None = None,
    template: str | None = None,
    characters: Sequence[str] | Mapping[str, str] | None = None,
) -> str:
    if not title or not title.strip():
        raise ValueError("Story title must be a non-empty string.")
    prompt = render_template(
        template or COVER_TEMPLATE,
        {"story": title.strip(), "style": style or DEFAULT_STYLE, "palette": palette or DEFAULT_PALETTE},
    )
    cast_lines = _normalize_note_input(characters)
    if cast_lines:
        prompt = prompt + "\n\n" + _format_bullet_section("CHARACTERS ON THE COVER", cast_lines)
    return prompt


def build_cover_variant_prompt(style_prompt: str) -> str:
    """Wrap a style instruction so the provider restyles an existing cover."""
    if not style_prompt or not style_prompt.strip():
        raise ValueError("Style prompt must be a non-empty string.")
    return f"""# COVER TRANSFORMATION

## Transformation instructions
Apply the following stylistic transformation to the cover:

{style_prompt.strip()}

## Important considerations

- **Keep the composition** and every character recognizable
- **Adapt colors and textures** to the requested style
- **Preserve the magic** and appeal for a young audience"""


def build_page_prompt(
    scene_description: str,
    *,
    characters: Sequence[str] | Mapping[str, str] | None = None,
    style: str | None = None,
    palette: str | None = None,
    continuity_notes: Sequence[str] | None = None,
) -> str:
    """
    Build the structured prompt for one story page illustration.

    Parameters
    ----------
    scene_description:
        Narrative description of the scene that should be rendered.
    characters:
        Recurring characters and their traits; rendered as a continuity section.
    style:
        Visual style shared by every page of the book.
    palette:
        Optional color palette guidance.
    continuity_notes:
        Carry-over cues from earlier pages to maintain continuity across the story.
    """
    if not scene_description or not scene_description.strip():
        raise ValueError("scene_description must be a non-empty string.")

    prompt = f"""TASK
Create a high-definition storybook illustration for one page of a children's book.

SCENE
- {scene_description.strip()}
- The characters remain the clear focal point; the background supports the narrative.

ART DIRECTION
- Style: {style or DEFAULT_STYLE}.
- Palette: {palette or DEFAULT_PALETTE}.
- Wholesome, uplifting, imaginative mood. No real-world logos or text.

RENDERING QUALITY
- Print-ready detail suitable for a large-format book page."""

    extra_sections: list[str] = []

    cast_lines = _normalize_note_input(characters)
    if cast_lines:
        extra_sections.append(_format_bullet_section("CHARACTER CONTINUITY", cast_lines))

    continuity_lines = _normalize_note_input(continuity_notes)
    if continuity_lines:
        extra_sections.append(_format_bullet_section("CONTINUITY NOTES", continuity_lines))

    if extra_sections:
        prompt = prompt + "\n\n" + "\n\n".join(extra_sections)

    return prompt


def _normalize_note_input(
    value: str | Sequence[str] | Mapping[str, str] | None,
) -> list[str]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        items = [f"{key}: {details}" for key, details in value.items()]
    elif isinstance(value, str):
        items = [value]
    else:
        items = [str(item) for item in value]

    lines: list[str] = []
    for item in items:
        for raw in item.replace("\r", "\n").split("\n"):
            cleaned = raw.strip(" \t-•")
            if cleaned:
                lines.append(cleaned)
    return lines


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
