"""
Shared fixtures: a fresh SQLite database and a fully wired orchestrator.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from storyforge.ai_generation.factory import ProviderRegistry
from storyforge.pipeline.feature_flags import FeatureFlagGate
from storyforge.pipeline.inflight import InFlightRegistry
from storyforge.pipeline.metrics import MetricsSink
from storyforge.pipeline.orchestrator import GenerationOrchestrator
from storyforge.storage.db import initialize_schema
from storyforge.storage.repository import (
    InFlightRepository,
    MetricsRepository,
    SettingsRepository,
)

from fakes import FakeClock, ScriptedProvider


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "storyforge.db")
    initialize_schema(path)
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def orchestrator(db_path, provider, clock):
    return GenerationOrchestrator(
        flag_gate=FeatureFlagGate(SettingsRepository(db_path)),
        inflight=InFlightRegistry(InFlightRepository(db_path)),
        metrics=MetricsSink(MetricsRepository(db_path)),
        providers=ProviderRegistry(providers={"openai": provider, "flux": provider}),
        sleep=clock.sleep,
        clock=clock,
        now=lambda: datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
    )
