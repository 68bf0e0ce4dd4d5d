"""
Persistence for generation bookkeeping, story and order rows, and generated assets.
"""

from .assets import LocalAssetStore, decode_data_url
from .db import get_connection, initialize_schema
from .models import (
    Character,
    InFlightRecord,
    MetricRecord,
    Order,
    OrderItem,
    Story,
    StoryPage,
)
from .repository import (
    CharacterRepository,
    InFlightRepository,
    MetricsRepository,
    OrderRepository,
    SettingsRepository,
    StoryRepository,
)

__all__ = [
    "Character",
    "CharacterRepository",
    "InFlightRecord",
    "InFlightRepository",
    "LocalAssetStore",
    "MetricRecord",
    "MetricsRepository",
    "Order",
    "OrderItem",
    "OrderRepository",
    "SettingsRepository",
    "Story",
    "StoryPage",
    "StoryRepository",
    "decode_data_url",
    "get_connection",
    "initialize_schema",
]
