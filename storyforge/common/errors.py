"""
Error taxonomy shared by providers, the orchestrator, and fulfillment.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification attached to every generation failure."""

    DISABLED = "disabled"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INVALID_INPUT = "invalid_input"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.SERVICE_UNAVAILABLE})

USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.DISABLED: "This feature is temporarily unavailable.",
    ErrorKind.RATE_LIMITED: "The illustration service is busy. Please try again in a moment.",
    ErrorKind.SERVICE_UNAVAILABLE: "The illustration service is not responding. Please try again later.",
    ErrorKind.INVALID_INPUT: "The request could not be processed. Please review the prompt or image.",
    ErrorKind.TIMEOUT: "The illustration took too long to generate. Please try again.",
    ErrorKind.UNKNOWN: "Something went wrong while generating the illustration.",
}


class GenerationError(RuntimeError):
    """
    Raised when an asset could not be generated.

    The ``kind`` is assigned once, by the layer that first observes the failure,
    and is passed up unchanged.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def user_message(self) -> str:
        """Message that is safe to show to end users."""
        if self.kind in (ErrorKind.INVALID_INPUT, ErrorKind.DISABLED):
            return self.message or USER_MESSAGES[self.kind]
        return USER_MESSAGES[self.kind]

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "message": self.user_message()}

    def __repr__(self) -> str:
        return f"GenerationError(kind={self.kind.value!r}, message={self.message!r})"


class ActivityDisabledError(GenerationError):
    """The feature flag for a (stage, activity) pair is switched off."""

    def __init__(self, stage: str, activity: str) -> None:
        super().__init__(
            ErrorKind.DISABLED,
            f"Activity '{activity}' is disabled for stage '{stage}'.",
        )
        self.stage = stage
        self.activity = activity

    def user_message(self) -> str:
        return USER_MESSAGES[ErrorKind.DISABLED]


class WizardPreconditionError(ValueError):
    """A wizard transition or a generation precondition was not satisfied."""


class FulfillmentError(RuntimeError):
    """An order cannot be fulfilled in its current state."""


class ConfigurationError(ValueError):
    """Settings or provider configuration are missing or malformed."""


def classify_status(status_code: int) -> ErrorKind:
    """
    Map an HTTP status from a provider into the error taxonomy.
    """
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (500, 502, 503, 504, 529):
        return ErrorKind.SERVICE_UNAVAILABLE
    if status_code in (400, 404, 413, 415, 422):
        return ErrorKind.INVALID_INPUT
    return ErrorKind.UNKNOWN
