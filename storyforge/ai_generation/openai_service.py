"""
Synchronous image generation against OpenAI-compatible ``images`` endpoints.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Mapping, Sequence

import requests

from ..common.errors import ErrorKind, GenerationError, classify_status
from .base import PROVIDER_OPENAI, GenerationResult, ImageProvider, ProviderConfig, ReferenceImage

logger = logging.getLogger(__name__)


class OpenAIImageProvider(ImageProvider):
    """
    Single request/response adapter.

    With reference images the request is sent as multipart form data (one ``image[]``
    part per reference); without them a JSON body is posted. The response carries the
    asset either inline (``b64_json``) or as a hosted ``url``.

    Parameters
    ----------
    api_key:
        OpenAI API key. Falls back to ``OPENAI_API_KEY`` environment variable.
    session:
        Optional pre-configured :class:`requests.Session`. Mainly useful for testing.
    request_timeout:
        Seconds to wait for the provider before classifying the call as unavailable.
    """

    kind = PROVIDER_OPENAI

    def __init__(
        self,
        *,
        api_key: str | None = None,
        session: requests.Session | None = None,
        request_timeout: float = 120.0,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._session = session or requests.Session()
        self.request_timeout = request_timeout

    def generate(
        self,
        prompt: str,
        reference_images: Sequence[ReferenceImage],
        config: ProviderConfig,
    ) -> GenerationResult:
        if not self._api_key:
            raise GenerationError(
                ErrorKind.UNKNOWN,
                "OpenAI API key is required. Set OPENAI_API_KEY or pass api_key.",
            )
        if not prompt or not prompt.strip():
            raise GenerationError(ErrorKind.INVALID_INPUT, "Prompt must be a non-empty string.")

        payload = self._build_payload(prompt, config)
        headers = {"Authorization": f"Bearer {self._api_key}"}

        logger.info(
            "[openai] request endpoint=%s model=%s files=%d",
            config.endpoint,
            config.model,
            len(reference_images),
        )
        logger.debug("[openai] prompt length=%d", len(prompt))

        started = time.monotonic()
        try:
            if reference_images:
                files = [
                    ("image[]", (f"image_{index}.{image.extension}", image.data, image.mime_type))
                    for index, image in enumerate(reference_images)
                ]
                form = {key: str(value) for key, value in payload.items()}
                response = self._session.post(
                    config.endpoint,
                    headers=headers,
                    data=form,
                    files=files,
                    timeout=self.request_timeout,
                )
            else:
                response = self._session.post(
                    config.endpoint,
                    headers=headers,
                    json=payload,
                    timeout=self.request_timeout,
                )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise GenerationError(
                ErrorKind.SERVICE_UNAVAILABLE, f"OpenAI request failed: {exc}"
            ) from exc
        except requests.RequestException as exc:
            raise GenerationError(ErrorKind.UNKNOWN, f"OpenAI request failed: {exc}") from exc

        latency_ms = int((time.monotonic() - started) * 1000)
        data = _safe_json(response)

        if not response.ok:
            message = _error_message(data) or response.reason or f"HTTP {response.status_code}"
            kind = classify_status(response.status_code)
            logger.warning(
                "[openai] request failed status=%s kind=%s", response.status_code, kind.value
            )
            raise GenerationError(kind, message, status_code=response.status_code)

        return _parse_result(data, latency_ms=latency_ms, mime_type=_output_mime(config))

    @staticmethod
    def _build_payload(prompt: str, config: ProviderConfig) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": config.model,
            "prompt": prompt,
            "size": config.size,
            "quality": config.quality,
            "n": 1,
        }
        # Provider-specific knobs (e.g., background, output_format) come from configuration.
        payload.update(config.options)
        return payload


def _output_mime(config: ProviderConfig) -> str:
    output_format = str(config.options.get("output_format", "png")).lower()
    return "image/jpeg" if output_format in ("jpg", "jpeg") else f"image/{output_format}"


def _safe_json(response: requests.Response) -> Mapping[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, Mapping) else {}


def _error_message(data: Mapping[str, Any]) -> str | None:
    error = data.get("error")
    if isinstance(error, Mapping):
        message = error.get("message")
        return str(message) if message else None
    if isinstance(error, str):
        return error
    return None


def _parse_result(data: Mapping[str, Any], *, latency_ms: int, mime_type: str) -> GenerationResult:
    usage = data.get("usage") or {}
    tokens_in = int(usage.get("input_tokens") or usage.get("prompt_tokens") or 0)
    tokens_out = int(usage.get("output_tokens") or usage.get("completion_tokens") or 0)
    cached_in = int((usage.get("input_tokens_details") or {}).get("cached_tokens") or 0)
    cached_out = int((usage.get("output_tokens_details") or {}).get("cached_tokens") or 0)

    items = data.get("data") or []
    first = items[0] if items and isinstance(items[0], Mapping) else {}

    if first.get("b64_json"):
        asset_url = f"data:{mime_type};base64,{first['b64_json']}"
    elif first.get("url"):
        asset_url = str(first["url"])
    else:
        raise GenerationError(ErrorKind.UNKNOWN, "OpenAI response did not include an image.")

    return GenerationResult(
        asset_url=asset_url,
        latency_ms=latency_ms,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        cached_tokens_in=cached_in,
        cached_tokens_out=cached_out,
    )
