"""
Single choke point for every asset generation call.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from ..ai_generation.base import GenerationRequest, GenerationResult, ReferenceImage
from ..ai_generation.factory import ProviderRegistry
from ..common.activities import normalize_identifier
from ..common.errors import ActivityDisabledError, ErrorKind, GenerationError
from ..storage.models import MetricRecord
from .feature_flags import FeatureFlagGate, FeatureFlagMatrix
from .inflight import InFlightRegistry
from .metrics import MetricsSink

logger = logging.getLogger(__name__)

ProviderCall = Callable[[], GenerationResult]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a fixed delay, applied to transient error kinds only."""

    max_attempts: int = 3
    delay_seconds: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")

    def should_retry(self, error: GenerationError, attempt: int) -> bool:
        return error.retryable and attempt < self.max_attempts


@dataclass
class _CallStats:
    attempts: int = 0
    latency_ms: int = 0


def select_reference_images(
    images: Sequence[ReferenceImage],
    limit: int,
) -> tuple[list[ReferenceImage], list[ReferenceImage]]:
    """
    Order references by entity name and keep at most ``limit`` of them.

    Returns ``(kept, dropped)``. The ordering is stable so repeated calls with the
    same inputs send the same references.
    """
    ordered = sorted(images, key=lambda image: image.name)
    return ordered[:limit], ordered[limit:]


class GenerationOrchestrator:
    """
    Runs a provider call through the gate, in-flight, retry, and metrics steps.

    1. Feature flag gate: a disabled (stage, activity) raises ``disabled`` before
       anything else happens.
    2. In-flight registration (failures are logged, never fatal).
    3. Provider call, retried for ``rate_limited``/``service_unavailable`` only.
    4. Exactly one metric for the whole retry sequence.
    5. In-flight release, whether the call succeeded or raised.
    """

    def __init__(
        self,
        *,
        flag_gate: FeatureFlagGate,
        inflight: InFlightRegistry,
        metrics: MetricsSink,
        providers: ProviderRegistry,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._flag_gate = flag_gate
        self._inflight = inflight
        self._metrics = metrics
        self._providers = providers
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._now = now

    def generate(
        self,
        request: GenerationRequest,
        *,
        flags: FeatureFlagMatrix | None = None,
    ) -> GenerationResult:
        """Generate one image asset described by ``request``."""
        config = request.provider
        references, dropped = select_reference_images(
            request.reference_images, config.reference_limit
        )
        if dropped:
            logger.warning(
                "Dropping %d reference image(s) for %s (provider limit %d): %s",
                len(dropped),
                request.activity,
                config.reference_limit,
                ", ".join(image.name for image in dropped),
            )

        summary: dict[str, Any] = dict(request.input_summary)
        summary.setdefault("reference_images", [image.name for image in references])
        prompt = request.prompt

        def call() -> GenerationResult:
            provider = self._providers.get(config)
            return provider.generate(prompt, references, config)

        return self.execute(
            stage=request.stage,
            activity=request.activity,
            user_id=request.user_id,
            model=config.model,
            input_summary=summary,
            call=call,
            flags=flags,
        )

    def check_enabled(
        self,
        stage: str,
        activity: str,
        *,
        flags: FeatureFlagMatrix | None = None,
    ) -> FeatureFlagMatrix:
        """Take one flag snapshot and raise ``disabled`` if the pair is switched off."""
        stage = normalize_identifier(stage)
        activity = normalize_identifier(activity)
        matrix = flags if flags is not None else self._flag_gate.snapshot()
        if not matrix.is_enabled(stage, activity):
            logger.info("Activity %s.%s is disabled; skipping provider call.", stage, activity)
            raise ActivityDisabledError(stage, activity)
        return matrix

    def execute(
        self,
        *,
        stage: str,
        activity: str,
        user_id: str | None,
        model: str,
        call: ProviderCall,
        input_summary: Mapping[str, Any] | None = None,
        flags: FeatureFlagMatrix | None = None,
    ) -> GenerationResult:
        """
        Run ``call`` under the full orchestration contract.

        Used directly by non-image activities such as PDF export.
        """
        stage = normalize_identifier(stage)
        activity = normalize_identifier(activity)
        self.check_enabled(stage, activity, flags=flags)

        self._inflight.start(user_id, stage, activity, model, input_summary)
        stats = _CallStats()
        try:
            result = self._call_with_retry(call, stats, activity=activity)
        except GenerationError as exc:
            self._record_metric(
                activity=activity,
                model=model,
                user_id=user_id,
                stats=stats,
                error=exc,
            )
            raise
        else:
            self._record_metric(
                activity=activity,
                model=model,
                user_id=user_id,
                stats=stats,
                result=result,
            )
            return result
        finally:
            self._inflight.end(user_id, activity)

    def _call_with_retry(
        self,
        call: ProviderCall,
        stats: _CallStats,
        *,
        activity: str,
    ) -> GenerationResult:
        policy = self.retry_policy
        while True:
            stats.attempts += 1
            started = self._clock()
            try:
                return call()
            except GenerationError as exc:
                error = exc
            except Exception as exc:
                error = GenerationError(ErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__)
                error.__cause__ = exc
            finally:
                stats.latency_ms += int((self._clock() - started) * 1000)

            if not policy.should_retry(error, stats.attempts):
                raise error

            logger.warning(
                "Retry attempt %d/%d for %s after %s. Retrying in %ss...",
                stats.attempts + 1,
                policy.max_attempts,
                activity,
                error.kind.value,
                policy.delay_seconds,
            )
            self._sleep(policy.delay_seconds)

    def _record_metric(
        self,
        *,
        activity: str,
        model: str,
        user_id: str | None,
        stats: _CallStats,
        result: GenerationResult | None = None,
        error: GenerationError | None = None,
    ) -> None:
        metadata: dict[str, Any] | None = None
        if error is not None:
            metadata = {"error": error.message}
        elif result is not None and result.provider_job_id:
            metadata = {"job_id": result.provider_job_id}

        self._metrics.record(
            MetricRecord(
                activity=activity,
                model=model,
                timestamp=self._now(),
                latency_ms=stats.latency_ms,
                outcome="error" if error is not None else "success",
                error_kind=error.kind.value if error is not None else None,
                tokens_in=result.tokens_in if result else 0,
                tokens_out=result.tokens_out if result else 0,
                cached_tokens_in=result.cached_tokens_in if result else 0,
                cached_tokens_out=result.cached_tokens_out if result else 0,
                user_id=user_id,
                attempts=stats.attempts,
                metadata=metadata,
            )
        )
