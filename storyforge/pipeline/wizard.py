"""
Four-stage story creation wizard used as a precondition oracle for generation.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from ..common.errors import WizardPreconditionError
from ..storage.repository import StoryRepository

logger = logging.getLogger(__name__)

MIN_CHARACTERS = 3


class WizardStage(str, Enum):
    CHARACTERS = "characters"
    STORY = "story"
    DESIGN = "design"
    PREVIEW = "preview"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)


class StageStatus(str, Enum):
    NOT_STARTED = "not_started"
    DRAFT = "draft"
    COMPLETED = "completed"


STAGE_ORDER: tuple[WizardStage, ...] = (
    WizardStage.CHARACTERS,
    WizardStage.STORY,
    WizardStage.DESIGN,
    WizardStage.PREVIEW,
)


@dataclass
class StageState:
    status: StageStatus = StageStatus.NOT_STARTED
    characters_assigned: int = 0


@dataclass
class WizardState:
    stages: dict[WizardStage, StageState] = field(
        default_factory=lambda: {stage: StageState() for stage in STAGE_ORDER}
    )

    def status(self, stage: WizardStage | str) -> StageStatus:
        return self.stages[WizardStage(stage)].status

    @property
    def characters_assigned(self) -> int:
        return self.stages[WizardStage.CHARACTERS].characters_assigned

    def is_completed(self, stage: WizardStage | str) -> bool:
        return self.status(stage) is StageStatus.COMPLETED

    def to_dict(self) -> dict[str, dict[str, Any]]:
        payload: dict[str, dict[str, Any]] = {}
        for stage in STAGE_ORDER:
            entry: dict[str, Any] = {"status": self.stages[stage].status.value}
            if stage is WizardStage.CHARACTERS:
                entry["characters_assigned"] = self.stages[stage].characters_assigned
            payload[stage.value] = entry
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "WizardState":
        state = cls()
        if not payload:
            return state
        for stage in STAGE_ORDER:
            entry = payload.get(stage.value)
            if not isinstance(entry, Mapping):
                continue
            try:
                status = StageStatus(entry.get("status", StageStatus.NOT_STARTED.value))
            except ValueError as exc:
                raise ValueError(f"Invalid status for stage '{stage.value}': {entry.get('status')!r}") from exc
            state.stages[stage] = StageState(
                status=status,
                characters_assigned=int(entry.get("characters_assigned", 0) or 0),
            )
        return state


def assign_character(state: WizardState) -> WizardState:
    """Count one more character on the characters stage and open it as a draft."""
    updated = copy.deepcopy(state)
    characters = updated.stages[WizardStage.CHARACTERS]
    if characters.status is StageStatus.COMPLETED:
        raise WizardPreconditionError("The characters stage is already completed.")
    characters.characters_assigned += 1
    if characters.status is StageStatus.NOT_STARTED:
        characters.status = StageStatus.DRAFT
    return updated


def advance(state: WizardState, stage: WizardStage | str) -> WizardState:
    """
    Complete ``stage`` and open the next one as a draft.

    Requires the previous stage to be completed and the stage's own precondition
    (at least three characters for the first stage). Never regresses any stage.
    """
    stage = WizardStage(stage)
    position = stage.position

    if position > 0:
        previous = STAGE_ORDER[position - 1]
        if not state.is_completed(previous):
            raise WizardPreconditionError(
                f"The {previous.value} stage must be completed before advancing {stage.value}."
            )
    if state.is_completed(stage):
        raise WizardPreconditionError(f"The {stage.value} stage is already completed.")
    if stage is WizardStage.CHARACTERS and state.characters_assigned < MIN_CHARACTERS:
        raise WizardPreconditionError(
            f"At least {MIN_CHARACTERS} characters must be assigned "
            f"(currently {state.characters_assigned})."
        )

    updated = copy.deepcopy(state)
    updated.stages[stage].status = StageStatus.COMPLETED
    if position + 1 < len(STAGE_ORDER):
        following = updated.stages[STAGE_ORDER[position + 1]]
        if following.status is StageStatus.NOT_STARTED:
            following.status = StageStatus.DRAFT
    return updated


ACTIONS = {
    "assign_character": assign_character,
    "advance_characters": lambda state: advance(state, WizardStage.CHARACTERS),
    "advance_story": lambda state: advance(state, WizardStage.STORY),
    "advance_design": lambda state: advance(state, WizardStage.DESIGN),
    "advance_preview": lambda state: advance(state, WizardStage.PREVIEW),
}


def apply_action(state: WizardState, action: str) -> WizardState:
    try:
        handler = ACTIONS[action]
    except KeyError as exc:
        raise WizardPreconditionError(f"Unknown wizard action: {action}") from exc
    updated = handler(state)
    logger.debug("[wizard] %s -> %s", action, updated.to_dict())
    return updated


def resume_stage(state: WizardState) -> WizardStage:
    """Stage a returning user should land on: the first draft, else characters."""
    for stage in STAGE_ORDER:
        if state.status(stage) is StageStatus.DRAFT:
            return stage
    return WizardStage.CHARACTERS


def require_completed(state: WizardState, stage: WizardStage | str) -> None:
    stage = WizardStage(stage)
    if not state.is_completed(stage):
        raise WizardPreconditionError(f"The {stage.value} stage is not completed yet.")


class WizardService:
    """Loads and persists wizard state on the story row."""

    def __init__(self, stories: StoryRepository) -> None:
        self._stories = stories

    def load(self, story_id: str) -> WizardState:
        return WizardState.from_dict(self._stories.get_wizard_state(story_id))

    def apply(self, story_id: str, action: str) -> WizardState:
        state = apply_action(self.load(story_id), action)
        self._stories.set_wizard_state(story_id, state.to_dict())
        return state

    def resume(self, story_id: str) -> WizardStage:
        return resume_stage(self.load(story_id))

    def require_completed(self, story_id: str, stage: WizardStage | str) -> None:
        require_completed(self.load(story_id), stage)
