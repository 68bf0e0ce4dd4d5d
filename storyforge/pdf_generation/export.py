"""
Orchestrated PDF export of a single story.
"""

from __future__ import annotations

import logging

from ..ai_generation.base import GenerationResult
from ..common.activities import Activity, Stage
from ..common.errors import ErrorKind, GenerationError
from ..pipeline.orchestrator import GenerationOrchestrator
from ..storage.assets import LocalAssetStore
from ..storage.repository import StoryRepository
from .builder import StorybookPDFBuilder

logger = logging.getLogger(__name__)

PDF_MODEL = "reportlab"


class StoryPdfExporter:
    """
    Render a story to PDF and store it at ``exports/{story_id}.pdf``.

    The render runs through :meth:`GenerationOrchestrator.execute` under stage
    ``export`` and activity ``pdf_export``, so it is gated, tracked in flight and
    measured like any image generation. Writing the URL onto the story is left
    to the caller.
    """

    def __init__(
        self,
        *,
        orchestrator: GenerationOrchestrator,
        stories: StoryRepository,
        store: LocalAssetStore,
        builder: StorybookPDFBuilder | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._stories = stories
        self._store = store
        self._builder = builder or StorybookPDFBuilder(local_loader=store.load)

    def export(self, story_id: str, user_id: str) -> str:
        """Return the public URL of the freshly exported PDF."""
        story = self._stories.get(story_id, include_pages=True)
        if story is None or story.user_id != user_id:
            raise GenerationError(ErrorKind.INVALID_INPUT, f"Story not found: {story_id}")

        key = f"exports/{story_id}.pdf"

        def call() -> GenerationResult:
            document = self._builder.render(story)
            return GenerationResult(asset_url=self._store.save_bytes(key, document))

        result = self._orchestrator.execute(
            stage=Stage.EXPORT.value,
            activity=Activity.PDF_EXPORT.value,
            user_id=user_id,
            model=PDF_MODEL,
            call=call,
            input_summary={"story_id": story_id, "pages": len(story.pages)},
        )
        logger.info("Exported story %s to %s", story_id, key)
        return result.asset_url
