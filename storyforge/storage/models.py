"""
Records persisted by the generation subsystem and the external rows it touches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

ORDER_PAID = "paid"
FULFILLMENT_COMPLETED = "completed"


@dataclass(frozen=True)
class MetricRecord:
    """Immutable outcome of one orchestrated generation call.

    The whole retry sequence of a call produces a single record carrying the final
    outcome. Rows are append-only and never updated.
    """

    activity: str
    model: str
    timestamp: datetime
    latency_ms: int
    outcome: str
    error_kind: str | None = None
    tokens_in: int = 0
    tokens_out: int = 0
    cached_tokens_in: int = 0
    cached_tokens_out: int = 0
    user_id: str | None = None
    attempts: int = 1
    metadata: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.outcome not in ("success", "error"):
            raise ValueError("outcome must be 'success' or 'error'")


@dataclass(frozen=True)
class InFlightRecord:
    user_id: str | None
    stage: str
    activity: str
    model: str
    input_summary: Mapping[str, Any]
    created_at: datetime


@dataclass
class Character:
    id: str
    user_id: str
    name: str
    description: str = ""
    reference_image_url: str | None = None
    thumbnail_url: str | None = None


@dataclass
class StoryPage:
    id: str
    story_id: str
    page_number: int
    text: str = ""
    image_url: str | None = None
    prompt: str | None = None


@dataclass
class Story:
    id: str
    user_id: str
    title: str = ""
    status: str = "draft"
    cover_url: str | None = None
    pdf_url: str | None = None
    pdf_generated_at: datetime | None = None
    wizard_state: Mapping[str, Any] | None = None
    pages: list[StoryPage] = field(default_factory=list)

    @property
    def has_pdf(self) -> bool:
        return bool(self.pdf_url)


@dataclass(frozen=True)
class OrderItem:
    order_id: str
    story_id: str


@dataclass
class Order:
    id: str
    user_id: str
    status: str
    fulfillment_status: str | None = None
    fulfilled_at: datetime | None = None
    items: list[OrderItem] = field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.status == ORDER_PAID

    @property
    def is_fulfilled(self) -> bool:
        return self.fulfillment_status == FULFILLMENT_COMPLETED
