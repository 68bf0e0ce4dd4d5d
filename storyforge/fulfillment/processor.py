"""
Post-purchase fulfillment: export a PDF for every story in a paid order.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from ..common.errors import ErrorKind, FulfillmentError, GenerationError
from ..pdf_generation.export import StoryPdfExporter
from ..storage.models import ORDER_PAID, Order, OrderItem
from ..storage.repository import OrderRepository, StoryRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]

DEFAULT_BATCH_SIZE = 3
DEFAULT_ITEM_TIMEOUT = 30.0
DEFAULT_BATCH_DELAY = 2.0
DEFAULT_LEASE_SECONDS = 300.0


class ItemStatus(str, Enum):
    EXPORTED = "exported"
    ALREADY_EXPORTED = "already_exported"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class ItemOutcome:
    """Settled result of one order item; a failure never hides its siblings."""

    story_id: str
    status: ItemStatus
    pdf_url: str | None = None
    error_kind: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (ItemStatus.EXPORTED, ItemStatus.ALREADY_EXPORTED)


@dataclass
class FulfillmentReport:
    order_id: str
    total: int
    outcomes: list[ItemOutcome] = field(default_factory=list)
    completed: bool = False
    already_fulfilled: bool = False

    @property
    def successes(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failures(self) -> list[ItemOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is ItemStatus.FAILED]

    @property
    def in_progress(self) -> list[ItemOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is ItemStatus.IN_PROGRESS]

    def pdf_urls(self) -> dict[str, str]:
        return {outcome.story_id: outcome.pdf_url for outcome in self.outcomes if outcome.pdf_url}


@dataclass
class _PendingItem:
    item: OrderItem
    token: str
    abandoned: threading.Event = field(default_factory=threading.Event)


class FulfillmentProcessor:
    """
    Generates the PDFs of a paid order in small concurrent batches.

    Parameters
    ----------
    orders, stories:
        Repositories for the order being fulfilled and its stories.
    exporter:
        Produces one PDF per story through the generation orchestrator.
    batch_size:
        Number of exports launched together; batches run strictly one after another.
    item_timeout:
        Seconds each export in a batch may take before it is reported as ``timeout``.
    batch_delay:
        Pause between consecutive batches.
    lease_seconds:
        Lifetime of the per-story export lease that keeps concurrent runs from
        exporting the same story twice.
    """

    def __init__(
        self,
        *,
        orders: OrderRepository,
        stories: StoryRepository,
        exporter: StoryPdfExporter,
        batch_size: int = DEFAULT_BATCH_SIZE,
        item_timeout: float = DEFAULT_ITEM_TIMEOUT,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if item_timeout <= 0:
            raise ValueError("item_timeout must be > 0")
        self._orders = orders
        self._stories = stories
        self._exporter = exporter
        self.batch_size = batch_size
        self.item_timeout = item_timeout
        self.batch_delay = batch_delay
        self.lease_seconds = lease_seconds
        self._sleep = sleep
        self._clock = clock

    def process_order(
        self,
        order_id: str,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> FulfillmentReport:
        order = self._orders.get(order_id)
        if order is None:
            raise FulfillmentError(f"Order not found: {order_id}")
        if order.is_fulfilled:
            logger.info("Order %s is already fulfilled; nothing to do.", order_id)
            return FulfillmentReport(
                order_id=order_id,
                total=len(order.items),
                completed=True,
                already_fulfilled=True,
            )
        if not order.is_paid:
            raise FulfillmentError(f"Order {order_id} is not paid (status '{order.status}').")
        if not order.items:
            raise FulfillmentError(f"Order {order_id} has no items to fulfill.")

        report = FulfillmentReport(order_id=order_id, total=len(order.items))
        self._notify(progress_callback, "order:started", order_id=order_id, items=report.total)

        pending = self._claim_items(order, report)
        batches = [
            pending[start:start + self.batch_size]
            for start in range(0, len(pending), self.batch_size)
        ]
        for index, batch in enumerate(batches):
            if index:
                self._sleep(self.batch_delay)
            self._notify(
                progress_callback,
                "batch:started",
                batch=index + 1,
                batches=len(batches),
                stories=[entry.item.story_id for entry in batch],
            )
            for outcome in self._run_batch(order, batch):
                report.outcomes.append(outcome)
                self._notify(
                    progress_callback,
                    "item:settled",
                    story_id=outcome.story_id,
                    status=outcome.status.value,
                    error_kind=outcome.error_kind,
                )

        if report.successes == report.total:
            self._orders.mark_fulfilled(order_id)
            report.completed = True
            logger.info("Order %s fulfilled (%d stories).", order_id, report.total)
        else:
            logger.warning(
                "Order %s partially fulfilled: %d/%d succeeded, %d in progress elsewhere.",
                order_id,
                report.successes,
                report.total,
                len(report.in_progress),
            )

        self._notify(
            progress_callback,
            "order:finished",
            order_id=order_id,
            completed=report.completed,
            successes=report.successes,
            total=report.total,
        )
        return report

    def handle_order_change(self, change: Mapping[str, Any]) -> FulfillmentReport | None:
        """
        React to an order update from the change feed.

        Accepts ``{"new": {...}, "old": {...}}`` payloads (or a bare row) and runs
        :meth:`process_order` when the new row is ``paid`` and not yet fulfilled.
        """
        row = change.get("new", change)
        if not isinstance(row, Mapping):
            return None
        if row.get("status") != ORDER_PAID or not row.get("id"):
            return None
        if row.get("fulfillment_status") not in (None, "", "pending"):
            return None
        return self.process_order(str(row["id"]))

    def _claim_items(self, order: Order, report: FulfillmentReport) -> list[_PendingItem]:
        pending: list[_PendingItem] = []
        for item in order.items:
            story = self._stories.get(item.story_id)
            if story is None:
                report.outcomes.append(
                    ItemOutcome(
                        story_id=item.story_id,
                        status=ItemStatus.FAILED,
                        error_kind=ErrorKind.INVALID_INPUT.value,
                        message="Story not found.",
                    )
                )
                continue
            if story.has_pdf:
                report.outcomes.append(
                    ItemOutcome(story.id, ItemStatus.ALREADY_EXPORTED, pdf_url=story.pdf_url)
                )
                continue

            token = uuid.uuid4().hex
            if self._stories.claim_export(item.story_id, token, lease_seconds=self.lease_seconds):
                pending.append(_PendingItem(item=item, token=token))
            else:
                logger.info("Story %s is being exported by another run.", item.story_id)
                report.outcomes.append(ItemOutcome(item.story_id, ItemStatus.IN_PROGRESS))
        return pending

    def _run_batch(self, order: Order, batch: Sequence[_PendingItem]) -> list[ItemOutcome]:
        if not batch:
            return []
        executor = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="fulfillment")
        try:
            futures = [
                (entry, executor.submit(self._export_item, order, entry))
                for entry in batch
            ]
            deadline = self._clock() + self.item_timeout
            outcomes: list[ItemOutcome] = []
            for entry, future in futures:
                remaining = max(0.0, deadline - self._clock())
                try:
                    outcomes.append(future.result(timeout=remaining))
                except FutureTimeout:
                    entry.abandoned.set()
                    logger.warning(
                        "Export of story %s exceeded %.1fs; reporting timeout.",
                        entry.item.story_id,
                        self.item_timeout,
                    )
                    outcomes.append(
                        ItemOutcome(
                            story_id=entry.item.story_id,
                            status=ItemStatus.FAILED,
                            error_kind=ErrorKind.TIMEOUT.value,
                            message=f"Export did not finish within {self.item_timeout}s.",
                        )
                    )
                except Exception as exc:
                    logger.exception("Export job for story %s crashed", entry.item.story_id)
                    outcomes.append(
                        ItemOutcome(
                            story_id=entry.item.story_id,
                            status=ItemStatus.FAILED,
                            error_kind=ErrorKind.UNKNOWN.value,
                            message=str(exc),
                        )
                    )
            return outcomes
        finally:
            # Abandoned jobs keep running; they still persist their PDF and release the lease.
            executor.shutdown(wait=False)

    def _export_item(self, order: Order, entry: _PendingItem) -> ItemOutcome:
        story_id = entry.item.story_id
        try:
            pdf_url = self._exporter.export(story_id, order.user_id)
            if not self._stories.set_pdf_url(story_id, pdf_url, user_id=order.user_id):
                raise GenerationError(
                    ErrorKind.INVALID_INPUT,
                    f"Story {story_id} does not belong to user {order.user_id}.",
                )
        except GenerationError as exc:
            logger.error("Export of story %s failed (%s): %s", story_id, exc.kind.value, exc.message)
            return ItemOutcome(story_id, ItemStatus.FAILED, error_kind=exc.kind.value, message=exc.message)
        except Exception as exc:
            logger.exception("Unexpected failure exporting story %s", story_id)
            return ItemOutcome(
                story_id,
                ItemStatus.FAILED,
                error_kind=ErrorKind.UNKNOWN.value,
                message=str(exc),
            )
        finally:
            self._release(story_id, entry.token)

        if entry.abandoned.is_set():
            logger.info("Late completion: story %s exported after its timeout.", story_id)
        return ItemOutcome(story_id, ItemStatus.EXPORTED, pdf_url=pdf_url)

    def _release(self, story_id: str, token: str) -> None:
        try:
            self._stories.release_export(story_id, token)
        except Exception:
            logger.exception("Could not release export lease for story %s", story_id)

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)
