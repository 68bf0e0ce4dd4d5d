"""
Wiring of the generation and fulfillment components from :class:`Settings`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Mapping

from .ai_generation.base import ImageProvider
from .ai_generation.factory import ProviderRegistry
from .common.settings import Settings
from .fulfillment.processor import FulfillmentProcessor
from .pdf_generation.builder import StorybookPDFBuilder
from .pdf_generation.export import StoryPdfExporter
from .pipeline.assets import AssetGenerationService
from .pipeline.feature_flags import FeatureFlagGate
from .pipeline.handlers import GenerationRequestHandler
from .pipeline.inflight import InFlightRegistry
from .pipeline.metrics import MetricsSink
from .pipeline.orchestrator import GenerationOrchestrator, RetryPolicy
from .pipeline.wizard import WizardService
from .storage.assets import LocalAssetStore
from .storage.db import initialize_schema
from .storage.repository import (
    CharacterRepository,
    InFlightRepository,
    MetricsRepository,
    OrderRepository,
    SettingsRepository,
    StoryRepository,
)


@dataclass
class Runtime:
    settings: Settings
    flag_gate: FeatureFlagGate
    inflight: InFlightRegistry
    metrics: MetricsSink
    orchestrator: GenerationOrchestrator
    characters: CharacterRepository
    stories: StoryRepository
    orders: OrderRepository
    store: LocalAssetStore
    wizard: WizardService
    assets: AssetGenerationService
    handler: GenerationRequestHandler
    exporter: StoryPdfExporter
    fulfillment: FulfillmentProcessor


def build_runtime(
    settings: Settings,
    *,
    providers: Mapping[str, ImageProvider] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    create_schema: bool = True,
) -> Runtime:
    """
    Assemble every component against one database and asset root.

    ``providers`` pre-registers adapters by kind; the rest are built lazily from
    ``settings`` on first use.
    """
    db_path = settings.db_path
    if create_schema:
        initialize_schema(db_path)

    flag_gate = FeatureFlagGate(SettingsRepository(db_path))
    inflight = InFlightRegistry(InFlightRepository(db_path))
    metrics = MetricsSink(MetricsRepository(db_path))
    orchestrator = GenerationOrchestrator(
        flag_gate=flag_gate,
        inflight=inflight,
        metrics=metrics,
        providers=ProviderRegistry(settings, providers=providers, sleep=sleep),
        retry_policy=RetryPolicy(settings.retry_attempts, settings.retry_delay),
        sleep=sleep,
    )

    characters = CharacterRepository(db_path)
    stories = StoryRepository(db_path)
    orders = OrderRepository(db_path)
    store = LocalAssetStore(
        settings.asset_root,
        base_url=settings.asset_base_url,
        request_timeout=settings.request_timeout,
    )

    assets = AssetGenerationService(
        orchestrator=orchestrator,
        settings=settings,
        characters=characters,
        stories=stories,
        store=store,
    )
    exporter = StoryPdfExporter(
        orchestrator=orchestrator,
        stories=stories,
        store=store,
        builder=StorybookPDFBuilder(
            request_timeout=settings.request_timeout,
            local_loader=store.load,
        ),
    )
    fulfillment = FulfillmentProcessor(
        orders=orders,
        stories=stories,
        exporter=exporter,
        batch_size=settings.fulfillment_batch_size,
        item_timeout=settings.fulfillment_item_timeout,
        batch_delay=settings.fulfillment_batch_delay,
        lease_seconds=settings.export_lease_seconds,
        sleep=sleep,
    )

    return Runtime(
        settings=settings,
        flag_gate=flag_gate,
        inflight=inflight,
        metrics=metrics,
        orchestrator=orchestrator,
        characters=characters,
        stories=stories,
        orders=orders,
        store=store,
        wizard=WizardService(stories),
        assets=assets,
        handler=GenerationRequestHandler(assets),
        exporter=exporter,
        fulfillment=fulfillment,
    )
