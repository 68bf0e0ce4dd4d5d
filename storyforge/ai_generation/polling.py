"""
Submit-then-poll adapter shared by asynchronous image backends.
"""

from __future__ import annotations

import logging
import time
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from ..common.errors import ErrorKind, GenerationError
from .base import GenerationResult, ImageProvider, ProviderConfig, ReferenceImage

logger = logging.getLogger(__name__)

DEFAULT_MAX_POLL_ATTEMPTS = 20
DEFAULT_POLL_INTERVAL = 1.5


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_pending(self) -> bool:
        return self in (JobStatus.QUEUED, JobStatus.PROCESSING)


@dataclass(frozen=True)
class PollResult:
    status: JobStatus
    result_url: str | None = None
    message: str | None = None


class PollingImageProvider(ImageProvider):
    """
    Generic submit/poll loop.

    Subclasses implement :meth:`submit` and :meth:`poll`; :meth:`generate` submits
    once, then polls at most ``max_attempts`` times with ``poll_interval`` seconds
    between attempts. The loop never waits on its caller: it ends on ``ready``,
    ``failed``, ``cancelled``, or when the attempt ceiling is reached.
    """

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    @abstractmethod
    def submit(
        self,
        prompt: str,
        reference_image: ReferenceImage | None,
        config: ProviderConfig,
    ) -> str:
        """Create the remote job and return its identifier."""

    @abstractmethod
    def poll(self, job_id: str, config: ProviderConfig) -> PollResult:
        """Fetch the current job status."""

    def finalize(self, result_url: str, config: ProviderConfig) -> str:
        """Hook for post-processing a ready result (e.g. inlining it)."""
        return result_url

    def generate(
        self,
        prompt: str,
        reference_images: Sequence[ReferenceImage],
        config: ProviderConfig,
    ) -> GenerationResult:
        if not prompt or not prompt.strip():
            raise GenerationError(ErrorKind.INVALID_INPUT, "Prompt must be a non-empty string.")

        started = self._clock()
        reference = reference_images[0] if reference_images else None
        job_id = self.submit(prompt, reference, config)
        logger.info("[%s] submitted job %s model=%s", self.kind, job_id, config.model)

        for attempt in range(1, self.max_attempts + 1):
            result = self.poll(job_id, config)

            if result.status is JobStatus.READY:
                if not result.result_url:
                    raise GenerationError(
                        ErrorKind.UNKNOWN, f"Job {job_id} is ready but returned no result."
                    )
                asset_url = self.finalize(result.result_url, config)
                logger.info("[%s] job %s ready after %d polls", self.kind, job_id, attempt)
                return GenerationResult(
                    asset_url=asset_url,
                    latency_ms=int((self._clock() - started) * 1000),
                    provider_job_id=job_id,
                )

            if not result.status.is_pending:
                raise GenerationError(
                    ErrorKind.UNKNOWN,
                    f"Job {job_id} ended with status '{result.status.value}'"
                    + (f": {result.message}" if result.message else "."),
                )

            if attempt < self.max_attempts:
                self._sleep(self.poll_interval)

        raise GenerationError(
            ErrorKind.TIMEOUT,
            f"Job {job_id} did not finish after {self.max_attempts} polls.",
        )
