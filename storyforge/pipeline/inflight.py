"""
Advisory record of generation calls currently executing.

This is a dashboard signal, not a lock: nothing prevents two calls for the same
(user, activity), and a crash between ``start`` and ``end`` leaves an orphan row
that :meth:`InFlightRegistry.purge_stale` can clean up.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from ..storage.models import InFlightRecord
from ..storage.repository import InFlightRepository

logger = logging.getLogger(__name__)


class InFlightRegistry:
    def __init__(
        self,
        repository: InFlightRepository,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repository = repository
        self._now = now

    def start(
        self,
        user_id: str | None,
        stage: str,
        activity: str,
        model: str,
        input_summary: Mapping[str, Any] | None = None,
    ) -> bool:
        """Register a call. Returns False (after logging) if the write failed."""
        record = InFlightRecord(
            user_id=user_id,
            stage=stage,
            activity=activity,
            model=model,
            input_summary=dict(input_summary or {}),
            created_at=self._now(),
        )
        try:
            self._repository.insert(record)
        except Exception as exc:
            logger.error("[inflight] failed to insert: %s", exc)
            return False
        return True

    def end(self, user_id: str | None, activity: str) -> bool:
        """Remove the (user, activity) records. Anonymous calls have nothing to remove."""
        if not user_id:
            return True
        try:
            self._repository.delete(user_id, activity)
        except Exception as exc:
            logger.error("[inflight] failed to delete: %s", exc)
            return False
        return True

    def active(
        self,
        *,
        user_id: str | None = None,
        activity: str | None = None,
    ) -> list[InFlightRecord]:
        try:
            return self._repository.list(user_id=user_id, activity=activity)
        except Exception as exc:
            logger.error("[inflight] failed to list: %s", exc)
            return []

    def purge_stale(self, max_age: timedelta) -> int:
        """Delete records older than ``max_age``; returns the number removed."""
        cutoff = self._now() - max_age
        try:
            removed = self._repository.delete_older_than(cutoff)
        except Exception as exc:
            logger.error("[inflight] failed to purge: %s", exc)
            return 0
        if removed:
            logger.info("[inflight] purged %d stale records older than %s", removed, cutoff.isoformat())
        return removed
