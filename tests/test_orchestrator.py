"""
Unit tests for the generation orchestrator.

Covers the feature flag gate, in-flight bookkeeping, bounded retry, single metric
per call, and reference image truncation.
"""

import logging
from unittest.mock import Mock

import pytest

from storyforge.ai_generation.base import GenerationRequest, GenerationResult, ReferenceImage
from storyforge.ai_generation.factory import ProviderRegistry
from storyforge.common.errors import ActivityDisabledError, ErrorKind, GenerationError
from storyforge.pipeline.feature_flags import FeatureFlagGate
from storyforge.pipeline.inflight import InFlightRegistry
from storyforge.pipeline.metrics import MetricsSink
from storyforge.pipeline.orchestrator import (
    GenerationOrchestrator,
    RetryPolicy,
    select_reference_images,
)
from storyforge.storage.repository import (
    InFlightRepository,
    MetricsRepository,
    SettingsRepository,
)

from fakes import FLUX_CONFIG, OPENAI_CONFIG, PNG_DATA_URL, ScriptedProvider


def make_request(config=OPENAI_CONFIG, references=(), user_id="user-1"):
    return GenerationRequest(
        activity="cover",
        stage="story",
        prompt="A brave fox on a hill",
        provider=config,
        user_id=user_id,
        reference_images=tuple(references),
        input_summary={"story_id": "story-1"},
    )


class TestFeatureGate:
    """Disabled activities never reach the provider."""

    def test_disabled_activity_makes_no_provider_call(self, db_path, orchestrator, provider):
        FeatureFlagGate(SettingsRepository(db_path)).set_enabled("story", "cover", False)

        with pytest.raises(ActivityDisabledError) as excinfo:
            orchestrator.generate(make_request())

        assert excinfo.value.kind is ErrorKind.DISABLED
        assert provider.calls == []
        assert MetricsRepository(db_path).fetch() == []
        assert InFlightRepository(db_path).list() == []

    def test_other_activities_stay_enabled(self, db_path, orchestrator, provider):
        FeatureFlagGate(SettingsRepository(db_path)).set_enabled("story", "page_illustration", False)

        result = orchestrator.generate(make_request())

        assert result.asset_url == PNG_DATA_URL
        assert len(provider.calls) == 1

    def test_flag_read_failure_treats_activity_as_enabled(self, db_path, provider, clock):
        settings_repo = Mock()
        settings_repo.get_value.side_effect = RuntimeError("settings table unavailable")
        orchestrator = GenerationOrchestrator(
            flag_gate=FeatureFlagGate(settings_repo),
            inflight=InFlightRegistry(InFlightRepository(db_path)),
            metrics=MetricsSink(MetricsRepository(db_path)),
            providers=ProviderRegistry(providers={"openai": provider}),
            sleep=clock.sleep,
            clock=clock,
        )

        orchestrator.generate(make_request())

        assert len(provider.calls) == 1


class TestInFlightTracking:
    """An in-flight row exists while the provider runs and is gone afterwards."""

    def test_inflight_row_exists_during_call_only(self, db_path, clock):
        repository = InFlightRepository(db_path)
        seen_during_call = []
        provider = ScriptedProvider(
            on_call=lambda: seen_during_call.extend(repository.list(user_id="user-1"))
        )
        orchestrator = GenerationOrchestrator(
            flag_gate=FeatureFlagGate(SettingsRepository(db_path)),
            inflight=InFlightRegistry(repository),
            metrics=MetricsSink(MetricsRepository(db_path)),
            providers=ProviderRegistry(providers={"openai": provider}),
            sleep=clock.sleep,
            clock=clock,
        )

        orchestrator.generate(make_request())

        assert len(seen_during_call) == 1
        assert seen_during_call[0].activity == "cover"
        assert seen_during_call[0].stage == "story"
        assert seen_during_call[0].input_summary["story_id"] == "story-1"
        assert repository.list(user_id="user-1") == []

    def test_inflight_row_removed_after_failure(self, db_path, orchestrator, provider):
        provider.outcomes = [GenerationError(ErrorKind.INVALID_INPUT, "bad prompt")]

        with pytest.raises(GenerationError):
            orchestrator.generate(make_request())

        assert InFlightRepository(db_path).list() == []

    def test_inflight_failure_does_not_block_generation(self, db_path, provider, clock):
        inflight_repo = Mock()
        inflight_repo.insert.side_effect = RuntimeError("insert failed")
        inflight_repo.delete.side_effect = RuntimeError("delete failed")
        orchestrator = GenerationOrchestrator(
            flag_gate=FeatureFlagGate(SettingsRepository(db_path)),
            inflight=InFlightRegistry(inflight_repo),
            metrics=MetricsSink(MetricsRepository(db_path)),
            providers=ProviderRegistry(providers={"openai": provider}),
            sleep=clock.sleep,
            clock=clock,
        )

        result = orchestrator.generate(make_request())

        assert result.asset_url == PNG_DATA_URL


class TestRetryAndMetrics:
    """Bounded retry for transient kinds; exactly one metric per call."""

    def test_success_records_one_metric_with_tokens(self, db_path, orchestrator, provider):
        provider.outcomes = [GenerationResult(asset_url=PNG_DATA_URL, tokens_in=120, tokens_out=30)]

        orchestrator.generate(make_request())

        metrics = MetricsRepository(db_path).fetch()
        assert len(metrics) == 1
        assert metrics[0].outcome == "success"
        assert metrics[0].error_kind is None
        assert metrics[0].tokens_in == 120
        assert metrics[0].tokens_out == 30
        assert metrics[0].attempts == 1
        assert metrics[0].model == "gpt-image-1"
        assert metrics[0].user_id == "user-1"

    def test_transient_errors_are_retried_until_success(self, db_path, orchestrator, provider, clock):
        provider.outcomes = [
            GenerationError(ErrorKind.RATE_LIMITED, "slow down"),
            GenerationError(ErrorKind.SERVICE_UNAVAILABLE, "502"),
        ]

        result = orchestrator.generate(make_request())

        assert result.asset_url == PNG_DATA_URL
        assert len(provider.calls) == 3
        assert clock.sleeps == [2.0, 2.0]
        metrics = MetricsRepository(db_path).fetch()
        assert len(metrics) == 1
        assert metrics[0].outcome == "success"
        assert metrics[0].attempts == 3

    def test_retry_gives_up_after_three_attempts(self, db_path, orchestrator, provider, clock):
        provider.outcomes = [GenerationError(ErrorKind.RATE_LIMITED, "slow down") for _ in range(5)]

        with pytest.raises(GenerationError) as excinfo:
            orchestrator.generate(make_request())

        assert excinfo.value.kind is ErrorKind.RATE_LIMITED
        assert len(provider.calls) == 3
        assert clock.sleeps == [2.0, 2.0]
        metrics = MetricsRepository(db_path).fetch()
        assert len(metrics) == 1
        assert metrics[0].outcome == "error"
        assert metrics[0].error_kind == "rate_limited"
        assert metrics[0].attempts == 3
        assert metrics[0].metadata == {"error": "slow down"}

    @pytest.mark.parametrize(
        "kind",
        [ErrorKind.INVALID_INPUT, ErrorKind.TIMEOUT, ErrorKind.UNKNOWN],
    )
    def test_non_transient_errors_are_not_retried(self, db_path, orchestrator, provider, clock, kind):
        provider.outcomes = [GenerationError(kind, "nope")]

        with pytest.raises(GenerationError) as excinfo:
            orchestrator.generate(make_request())

        assert excinfo.value.kind is kind
        assert len(provider.calls) == 1
        assert clock.sleeps == []
        assert MetricsRepository(db_path).fetch()[0].error_kind == kind.value

    def test_unexpected_exception_is_classified_unknown(self, orchestrator, provider):
        provider.outcomes = [KeyError("data")]

        with pytest.raises(GenerationError) as excinfo:
            orchestrator.generate(make_request())

        assert excinfo.value.kind is ErrorKind.UNKNOWN
        assert isinstance(excinfo.value.__cause__, KeyError)
        assert len(provider.calls) == 1

    def test_latency_sums_every_attempt(self, db_path, clock):
        provider = ScriptedProvider(
            [GenerationError(ErrorKind.SERVICE_UNAVAILABLE, "503")],
            on_call=lambda: clock.advance(0.25),
        )
        orchestrator = GenerationOrchestrator(
            flag_gate=FeatureFlagGate(SettingsRepository(db_path)),
            inflight=InFlightRegistry(InFlightRepository(db_path)),
            metrics=MetricsSink(MetricsRepository(db_path)),
            providers=ProviderRegistry(providers={"openai": provider}),
            sleep=clock.sleep,
            clock=clock,
        )

        orchestrator.generate(make_request())

        assert MetricsRepository(db_path).fetch()[0].latency_ms == 500

    def test_metric_write_failure_does_not_fail_call(self, db_path, provider, clock):
        metrics_repo = Mock()
        metrics_repo.insert.side_effect = RuntimeError("disk full")
        orchestrator = GenerationOrchestrator(
            flag_gate=FeatureFlagGate(SettingsRepository(db_path)),
            inflight=InFlightRegistry(InFlightRepository(db_path)),
            metrics=MetricsSink(metrics_repo),
            providers=ProviderRegistry(providers={"openai": provider}),
            sleep=clock.sleep,
            clock=clock,
        )

        result = orchestrator.generate(make_request())

        assert result.asset_url == PNG_DATA_URL
        metrics_repo.insert.assert_called_once()

    def test_retry_policy_rejects_invalid_values(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        with pytest.raises(ValueError):
            RetryPolicy(delay_seconds=-1)


class TestReferenceImages:
    """References are ordered by entity name and truncated to the provider limit."""

    def test_select_reference_images_orders_by_name(self):
        images = [ReferenceImage(name, b"x") for name in ("Zoe", "Ana", "Max")]

        kept, dropped = select_reference_images(images, 2)

        assert [image.name for image in kept] == ["Ana", "Max"]
        assert [image.name for image in dropped] == ["Zoe"]

    def test_single_reference_provider_receives_first_by_name(self, orchestrator, provider, caplog):
        references = [ReferenceImage(name, b"x") for name in ("Zoe", "Ana", "Max")]

        with caplog.at_level(logging.WARNING, logger="storyforge.pipeline.orchestrator"):
            orchestrator.generate(make_request(config=FLUX_CONFIG, references=references))

        assert [image.name for image in provider.calls[0]["references"]] == ["Ana"]
        assert "Dropping 2 reference image(s)" in caplog.text

    def test_references_within_limit_are_all_sent(self, orchestrator, provider):
        references = [ReferenceImage(name, b"x") for name in ("Bo", "Al")]

        orchestrator.generate(make_request(references=references))

        assert [image.name for image in provider.calls[0]["references"]] == ["Al", "Bo"]


class TestExecute:
    """Non-image activities run through the same contract."""

    def test_execute_records_metric_for_custom_call(self, db_path, orchestrator):
        result = orchestrator.execute(
            stage="export",
            activity="pdf_export",
            user_id="user-9",
            model="reportlab",
            call=lambda: GenerationResult(asset_url="file:///tmp/book.pdf"),
        )

        assert result.asset_url == "file:///tmp/book.pdf"
        metric = MetricsRepository(db_path).fetch(activity="pdf_export")[0]
        assert metric.model == "reportlab"
        assert metric.outcome == "success"

    def test_execute_uses_provided_flag_snapshot(self, orchestrator):
        from storyforge.pipeline.feature_flags import FeatureFlagMatrix

        flags = FeatureFlagMatrix({"export": {"pdf_export": False}})
        call = Mock()

        with pytest.raises(ActivityDisabledError):
            orchestrator.execute(
                stage="export",
                activity="pdf_export",
                user_id="user-9",
                model="reportlab",
                call=call,
                flags=flags,
            )
        call.assert_not_called()
