"""
Provider-agnostic contract shared by every image generation backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

PROVIDER_OPENAI = "openai"
PROVIDER_FLUX = "flux"
PROVIDER_REPLICATE = "replicate"

SUPPORTED_PROVIDERS = (PROVIDER_OPENAI, PROVIDER_FLUX, PROVIDER_REPLICATE)

# Reference image ceilings documented by each backend.
DEFAULT_MAX_REFERENCE_IMAGES: dict[str, int] = {
    PROVIDER_OPENAI: 16,
    PROVIDER_FLUX: 1,
    PROVIDER_REPLICATE: 1,
}


def infer_provider_kind(endpoint: str) -> str:
    lowered = endpoint.lower()
    if "bfl.ai" in lowered:
        return PROVIDER_FLUX
    if "replicate" in lowered:
        return PROVIDER_REPLICATE
    return PROVIDER_OPENAI


@dataclass(frozen=True)
class ReferenceImage:
    """Binary reference image attached to a generation request."""

    name: str
    data: bytes = field(repr=False)
    mime_type: str = "image/png"

    @property
    def extension(self) -> str:
        subtype = self.mime_type.split("/", 1)[-1].lower()
        return "jpg" if subtype == "jpeg" else subtype


@dataclass(frozen=True)
class ProviderConfig:
    """
    Target backend for a generation activity.

    ``kind`` selects the adapter. When empty it is inferred from the endpoint, so a
    configuration row that only changes the endpoint switches providers.
    """

    endpoint: str
    model: str
    kind: str = ""
    size: str = "1024x1024"
    quality: str = "high"
    max_reference_images: int | None = None
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.endpoint or not self.endpoint.strip():
            raise ValueError("Provider endpoint must be a non-empty string.")
        if not self.model or not self.model.strip():
            raise ValueError("Provider model must be a non-empty string.")
        kind = (self.kind or infer_provider_kind(self.endpoint)).strip().lower()
        if kind not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported provider '{self.kind}'. Supported providers: {', '.join(SUPPORTED_PROVIDERS)}."
            )
        object.__setattr__(self, "kind", kind)
        if self.max_reference_images is not None and self.max_reference_images < 0:
            raise ValueError("max_reference_images must be >= 0")

    @property
    def reference_limit(self) -> int:
        if self.max_reference_images is not None:
            return self.max_reference_images
        return DEFAULT_MAX_REFERENCE_IMAGES[self.kind]

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ProviderConfig":
        allowed = {"endpoint", "model", "kind", "size", "quality", "max_reference_images", "options"}
        unknown = set(payload) - allowed
        if unknown:
            raise ValueError(f"Unknown provider keys: {sorted(unknown)}")
        if "endpoint" not in payload or "model" not in payload:
            raise ValueError("Provider entries require 'endpoint' and 'model'.")

        max_refs = payload.get("max_reference_images")
        options = payload.get("options") or {}
        if not isinstance(options, Mapping):
            raise ValueError("'options' must be a mapping.")
        return cls(
            endpoint=str(payload["endpoint"]).strip(),
            model=str(payload["model"]).strip(),
            kind=str(payload.get("kind") or "").strip(),
            size=str(payload.get("size") or "1024x1024"),
            quality=str(payload.get("quality") or "high"),
            max_reference_images=int(max_refs) if max_refs is not None else None,
            options=dict(options),
        )


@dataclass(frozen=True)
class GenerationRequest:
    """
    Everything needed for one orchestrated generation call.

    Lives only for the duration of the call; only the metric row outlives it.
    """

    activity: str
    stage: str
    prompt: str
    provider: ProviderConfig
    user_id: str | None = None
    reference_images: Sequence[ReferenceImage] = ()
    input_summary: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of a provider call as consumed by the orchestrator."""

    asset_url: str
    latency_ms: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    cached_tokens_in: int = 0
    cached_tokens_out: int = 0
    success: bool = True
    error_kind: str | None = None
    provider_job_id: str | None = None


class ImageProvider(ABC):
    """Single generation contract implemented by the synchronous and polling adapters."""

    kind: str = ""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        reference_images: Sequence[ReferenceImage],
        config: ProviderConfig,
    ) -> GenerationResult:
        """Produce one asset or raise :class:`~storyforge.common.errors.GenerationError`."""
