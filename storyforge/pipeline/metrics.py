"""
Append-only sink for generation outcomes plus rolling-window summaries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from ..storage.models import MetricRecord
from ..storage.repository import MetricsRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivitySummary:
    activity: str
    total: int
    errors: int
    avg_latency_ms: float
    tokens_in: int
    tokens_out: int

    @property
    def error_rate(self) -> float:
        return self.errors / self.total if self.total else 0.0


class MetricsSink:
    """
    Writes one :class:`MetricRecord` per orchestrated call.

    A failed write is logged and dropped: a metrics outage never turns a successful
    generation into a reported failure.
    """

    def __init__(
        self,
        repository: MetricsRepository,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._repository = repository
        self._now = now

    def record(self, record: MetricRecord) -> bool:
        try:
            self._repository.insert(record)
        except Exception as exc:
            logger.error("[metrics] failed to insert metric: %s", exc)
            return False
        return True

    def summary(
        self,
        window: timedelta = timedelta(hours=24),
        *,
        activity: str | None = None,
    ) -> list[ActivitySummary]:
        """Volume, error rate, latency and token totals per activity over ``window``."""
        since = self._now() - window
        rows = self._repository.aggregate(since=since, activity=activity)
        return [
            ActivitySummary(
                activity=row["activity"],
                total=int(row["total"] or 0),
                errors=int(row["errors"] or 0),
                avg_latency_ms=float(row["avg_latency_ms"] or 0.0),
                tokens_in=int(row["tokens_in"] or 0),
                tokens_out=int(row["tokens_out"] or 0),
            )
            for row in rows
        ]
