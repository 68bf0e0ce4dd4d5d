"""
Provider selection by configuration.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Callable, Mapping

from .base import PROVIDER_FLUX, PROVIDER_OPENAI, PROVIDER_REPLICATE, ImageProvider, ProviderConfig
from .flux_service import FluxKontextProvider
from .openai_service import OpenAIImageProvider
from .replicate_service import ReplicateImageGenerator

if TYPE_CHECKING:
    from ..common.settings import Settings


def build_provider(
    kind: str,
    settings: "Settings",
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ImageProvider:
    """Instantiate the adapter registered for ``kind``."""
    if kind == PROVIDER_OPENAI:
        return OpenAIImageProvider(
            api_key=settings.openai_api_key,
            request_timeout=settings.request_timeout,
        )
    if kind == PROVIDER_FLUX:
        return FluxKontextProvider(
            api_key=settings.bfl_api_key,
            request_timeout=settings.request_timeout,
            max_attempts=settings.poll_attempts,
            poll_interval=settings.poll_interval,
            sleep=sleep,
        )
    if kind == PROVIDER_REPLICATE:
        return ReplicateImageGenerator(
            api_token=settings.replicate_api_token,
            max_attempts=settings.poll_attempts,
            poll_interval=settings.poll_interval,
            sleep=sleep,
        )
    raise ValueError(f"Unsupported provider kind: {kind!r}")


class ProviderRegistry:
    """
    Lazily builds one adapter per provider kind and hands it out by configuration.

    ``providers`` pre-registers instances (e.g. fakes in tests); any other kind is
    built from ``settings`` on first use.
    """

    def __init__(
        self,
        settings: "Settings | None" = None,
        *,
        providers: Mapping[str, ImageProvider] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._providers: dict[str, ImageProvider] = dict(providers or {})
        self._sleep = sleep
        self._lock = threading.Lock()

    def get(self, config: ProviderConfig) -> ImageProvider:
        with self._lock:
            provider = self._providers.get(config.kind)
            if provider is None:
                if self._settings is None:
                    raise ValueError(f"No provider registered for kind '{config.kind}'.")
                provider = build_provider(config.kind, self._settings, sleep=self._sleep)
                self._providers[config.kind] = provider
            return provider
