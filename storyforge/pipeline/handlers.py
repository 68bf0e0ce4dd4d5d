"""
Inbound request handling for asset generation.

Maps a request payload such as::

    {"activity": "cover", "story_id": "s-1", "user_id": "u-1", "style": "watercolor"}

to the matching :class:`AssetGenerationService` call and returns either
``{"asset_url": ...}`` or ``{"error": {"kind": ..., "message": ...}}``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from ..common.activities import Activity
from ..common.errors import ErrorKind, GenerationError, USER_MESSAGES, WizardPreconditionError
from .assets import AssetGenerationService

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS: dict[Activity, tuple[str, ...]] = {
    Activity.CHARACTER_THUMBNAIL: ("character_id",),
    Activity.COVER: ("story_id",),
    Activity.COVER_VARIANT: ("story_id", "style_key", "style_prompt"),
    Activity.PAGE_ILLUSTRATION: ("page_id",),
}


class GenerationRequestHandler:
    def __init__(self, service: AssetGenerationService) -> None:
        self._service = service
        self._dispatch: dict[Activity, Callable[[Mapping[str, Any]], str]] = {
            Activity.CHARACTER_THUMBNAIL: self._character_thumbnail,
            Activity.COVER: self._cover,
            Activity.COVER_VARIANT: self._cover_variant,
            Activity.PAGE_ILLUSTRATION: self._page_illustration,
        }

    def handle(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        try:
            activity = self._parse_activity(payload)
            missing = [name for name in _REQUIRED_FIELDS[activity] if not payload.get(name)]
            if missing:
                raise GenerationError(
                    ErrorKind.INVALID_INPUT,
                    f"Missing required field(s): {', '.join(missing)}",
                )
            asset_url = self._dispatch[activity](payload)
        except GenerationError as exc:
            logger.warning("Generation request failed (%s): %s", exc.kind.value, exc.message)
            return {"error": exc.to_dict()}
        except WizardPreconditionError as exc:
            logger.info("Generation request rejected: %s", exc)
            return {"error": {"kind": ErrorKind.INVALID_INPUT.value, "message": str(exc)}}
        except Exception:
            logger.exception("Unexpected failure while handling generation request")
            return {
                "error": {
                    "kind": ErrorKind.UNKNOWN.value,
                    "message": USER_MESSAGES[ErrorKind.UNKNOWN],
                }
            }
        return {"asset_url": asset_url}

    @staticmethod
    def _parse_activity(payload: Mapping[str, Any]) -> Activity:
        raw = payload.get("activity")
        try:
            activity = Activity(raw)
        except ValueError as exc:
            raise GenerationError(ErrorKind.INVALID_INPUT, f"Unsupported activity: {raw!r}") from exc
        if activity not in _REQUIRED_FIELDS:
            raise GenerationError(ErrorKind.INVALID_INPUT, f"Unsupported activity: {raw!r}")
        return activity

    def _character_thumbnail(self, payload: Mapping[str, Any]) -> str:
        return self._service.generate_character_thumbnail(
            character_id=payload["character_id"],
            user_id=payload.get("user_id"),
            style=payload.get("style"),
        )

    def _cover(self, payload: Mapping[str, Any]) -> str:
        return self._service.generate_cover(
            story_id=payload["story_id"],
            user_id=payload.get("user_id"),
            style=payload.get("style"),
            palette=payload.get("palette"),
        )

    def _cover_variant(self, payload: Mapping[str, Any]) -> str:
        return self._service.generate_cover_variant(
            story_id=payload["story_id"],
            style_key=payload["style_key"],
            style_prompt=payload["style_prompt"],
            user_id=payload.get("user_id"),
        )

    def _page_illustration(self, payload: Mapping[str, Any]) -> str:
        return self._service.generate_page_illustration(
            page_id=payload["page_id"],
            user_id=payload.get("user_id"),
            style=payload.get("style"),
            palette=payload.get("palette"),
            continuity_notes=payload.get("continuity_notes"),
        )
