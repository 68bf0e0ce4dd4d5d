"""
Batch fulfillment of paid orders.
"""

from .processor import (
    DEFAULT_BATCH_DELAY,
    DEFAULT_BATCH_SIZE,
    DEFAULT_ITEM_TIMEOUT,
    FulfillmentProcessor,
    FulfillmentReport,
    ItemOutcome,
    ItemStatus,
)

__all__ = [
    "DEFAULT_BATCH_DELAY",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_ITEM_TIMEOUT",
    "FulfillmentProcessor",
    "FulfillmentReport",
    "ItemOutcome",
    "ItemStatus",
]
