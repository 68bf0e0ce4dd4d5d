"""
Asset services: one entry point per image activity of the storefront.

Each service renders its prompt, gathers reference images, runs the call
through :class:`~storyforge.pipeline.orchestrator.GenerationOrchestrator`,
stores the produced asset under a deterministic key, and writes the resulting
URL onto the owning character, story, or page.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Sequence

import requests

from ..ai_generation.base import GenerationRequest, ReferenceImage
from ..ai_generation.images import fetch_reference_images
from ..ai_generation.prompting import (
    build_character_thumbnail_prompt,
    build_cover_prompt,
    build_cover_variant_prompt,
    build_page_prompt,
)
from ..common.activities import Activity
from ..common.errors import ErrorKind, GenerationError
from ..common.settings import Settings
from ..storage.assets import LocalAssetStore
from ..storage.models import Character, Story
from ..storage.repository import CharacterRepository, StoryRepository
from .feature_flags import FeatureFlagMatrix
from .orchestrator import GenerationOrchestrator
from .wizard import WizardService, WizardStage

logger = logging.getLogger(__name__)

ReferenceFetcher = Callable[[Iterable[tuple[str, str]]], Sequence[ReferenceImage]]


class AssetGenerationService:
    """
    Generates and stores the images attached to characters and stories.

    Parameters
    ----------
    orchestrator:
        Shared orchestrator; every provider call goes through it.
    settings:
        Supplies the provider configuration for each activity.
    characters, stories:
        Repositories for the rows the produced URLs are written onto.
    store:
        Destination for generated assets.
    fetch_references:
        Optional override for downloading ``(name, url)`` reference images.
    """

    def __init__(
        self,
        *,
        orchestrator: GenerationOrchestrator,
        settings: Settings,
        characters: CharacterRepository,
        stories: StoryRepository,
        store: LocalAssetStore,
        fetch_references: ReferenceFetcher | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._settings = settings
        self._characters = characters
        self._stories = stories
        self._store = store
        self._wizard = WizardService(stories)
        if fetch_references is None:
            http = session or requests.Session()

            def fetch_references(sources: Iterable[tuple[str, str]]) -> Sequence[ReferenceImage]:
                return fetch_reference_images(
                    sources,
                    session=http,
                    timeout=settings.request_timeout,
                    local_loader=store.load,
                )

        self._fetch_references = fetch_references

    def generate_character_thumbnail(
        self,
        *,
        character_id: str,
        user_id: str | None = None,
        style: str | None = None,
    ) -> str:
        flags = self._gate(Activity.CHARACTER_THUMBNAIL)
        character = self._require_character(character_id)
        prompt = build_character_thumbnail_prompt(
            character.name, character.description, style=style
        )
        sources = []
        if character.reference_image_url:
            sources.append((character.name, character.reference_image_url))

        url = self._generate_and_store(
            activity=Activity.CHARACTER_THUMBNAIL,
            user_id=user_id or character.user_id,
            prompt=prompt,
            references=self._fetch_references(sources) if sources else (),
            key=f"thumbnails/{character_id}.png",
            input_summary={"character_id": character_id},
            flags=flags,
        )
        self._characters.set_thumbnail_url(character_id, url)
        return url

    def generate_cover(
        self,
        *,
        story_id: str,
        user_id: str | None = None,
        style: str | None = None,
        palette: str | None = None,
        template: str | None = None,
    ) -> str:
        flags = self._gate(Activity.COVER)
        story = self._require_story(story_id)
        self._wizard.require_completed(story_id, WizardStage.CHARACTERS)
        cast = self._stories.characters_for(story_id)

        prompt = build_cover_prompt(
            story.title,
            style=style,
            palette=palette,
            template=template,
            characters=_cast_notes(cast),
        )
        url = self._generate_and_store(
            activity=Activity.COVER,
            user_id=user_id or story.user_id,
            prompt=prompt,
            references=self._fetch_references(_cast_sources(cast)),
            key=f"covers/{story_id}.png",
            input_summary={"story_id": story_id, "characters": len(cast)},
            flags=flags,
        )
        self._stories.set_cover_url(story_id, url)
        return url

    def generate_cover_variant(
        self,
        *,
        story_id: str,
        style_key: str,
        style_prompt: str,
        user_id: str | None = None,
    ) -> str:
        """Restyle the existing cover; the base cover stays untouched."""
        flags = self._gate(Activity.COVER_VARIANT)
        story = self._require_story(story_id)
        if not story.cover_url:
            raise GenerationError(
                ErrorKind.INVALID_INPUT,
                f"Story {story_id} has no cover to restyle.",
            )
        if not style_key or not style_key.strip():
            raise GenerationError(ErrorKind.INVALID_INPUT, "A style key is required.")
        try:
            prompt = build_cover_variant_prompt(style_prompt)
        except ValueError as exc:
            raise GenerationError(ErrorKind.INVALID_INPUT, str(exc)) from exc

        style_key = style_key.strip()
        return self._generate_and_store(
            activity=Activity.COVER_VARIANT,
            user_id=user_id or story.user_id,
            prompt=prompt,
            references=self._fetch_references([(story.title or story_id, story.cover_url)]),
            key=f"covers/{story_id}_{style_key}.png",
            input_summary={"story_id": story_id, "style": style_key},
            flags=flags,
        )

    def generate_page_illustration(
        self,
        *,
        page_id: str,
        user_id: str | None = None,
        style: str | None = None,
        palette: str | None = None,
        continuity_notes: Sequence[str] | None = None,
    ) -> str:
        flags = self._gate(Activity.PAGE_ILLUSTRATION)
        page = self._stories.get_page(page_id)
        if page is None:
            raise GenerationError(ErrorKind.INVALID_INPUT, f"Story page not found: {page_id}")
        story = self._require_story(page.story_id)
        self._wizard.require_completed(story.id, WizardStage.CHARACTERS)
        cast = self._stories.characters_for(story.id)

        scene = page.text.strip() or story.title
        try:
            prompt = build_page_prompt(
                scene,
                characters=_cast_notes(cast),
                style=style,
                palette=palette,
                continuity_notes=continuity_notes,
            )
        except ValueError as exc:
            raise GenerationError(ErrorKind.INVALID_INPUT, str(exc)) from exc

        url = self._generate_and_store(
            activity=Activity.PAGE_ILLUSTRATION,
            user_id=user_id or story.user_id,
            prompt=prompt,
            references=self._fetch_references(_cast_sources(cast)),
            key=f"story-images/{story.id}/{page.page_number}.png",
            input_summary={"story_id": story.id, "page": page.page_number},
            flags=flags,
        )
        self._stories.set_page_image(page_id, url, prompt=prompt)
        return url

    def _generate_and_store(
        self,
        *,
        activity: Activity,
        user_id: str | None,
        prompt: str,
        references: Sequence[ReferenceImage],
        key: str,
        input_summary: dict,
        flags: FeatureFlagMatrix,
    ) -> str:
        request = GenerationRequest(
            activity=activity.value,
            stage=activity.default_stage.value,
            prompt=prompt,
            provider=self._settings.provider_for(activity),
            user_id=user_id,
            reference_images=tuple(references),
            input_summary=input_summary,
        )
        result = self._orchestrator.generate(request, flags=flags)
        url = self._store.save_generated(key, result.asset_url)
        logger.info("Stored %s asset at %s", activity.value, key)
        return url

    def _gate(self, activity: Activity) -> FeatureFlagMatrix:
        return self._orchestrator.check_enabled(activity.default_stage.value, activity.value)

    def _require_character(self, character_id: str) -> Character:
        character = self._characters.get(character_id)
        if character is None:
            raise GenerationError(ErrorKind.INVALID_INPUT, f"Character not found: {character_id}")
        return character

    def _require_story(self, story_id: str) -> Story:
        story = self._stories.get(story_id)
        if story is None:
            raise GenerationError(ErrorKind.INVALID_INPUT, f"Story not found: {story_id}")
        return story


def _cast_notes(cast: Sequence[Character]) -> dict[str, str]:
    return {
        character.name: character.description or "as shown in the reference image"
        for character in cast
    }


def _cast_sources(cast: Sequence[Character]) -> list[tuple[str, str]]:
    sources: list[tuple[str, str]] = []
    for character in cast:
        url = character.thumbnail_url or character.reference_image_url
        if url:
            sources.append((character.name, url))
    return sources
