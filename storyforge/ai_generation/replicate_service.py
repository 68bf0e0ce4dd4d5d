"""
Integration with Replicate predictions for storybook image generation.
"""

from __future__ import annotations

import io
import logging
import os
from typing import Any, BinaryIO, Callable

import replicate
from replicate.exceptions import ReplicateError

from ..common.errors import ErrorKind, GenerationError, classify_status
from .base import PROVIDER_REPLICATE, ProviderConfig, ReferenceImage
from .polling import JobStatus, PollingImageProvider, PollResult
from .prompting import NEGATIVE_PROMPT

logger = logging.getLogger(__name__)


def _build_instant_id_input(
    *,
    prompt: str,
    negative_prompt: str,
    image_input: BinaryIO | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "negative_prompt": negative_prompt,
        "output_format": "png",
        "sdxl_weights": "protovision-xl-high-fidel",
        "guidance_scale": 5,
    }
    if image_input is not None:
        payload["image"] = image_input
    return payload


def _build_flux_kontext_input(
    *,
    prompt: str,
    negative_prompt: str,
    image_input: BinaryIO | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "negative_prompt": negative_prompt,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": True,
        "aspect_ratio": "1:1",
    }
    if image_input is not None:
        payload["input_image"] = image_input
    return payload


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "zsxkib/instant-id": _build_instant_id_input,
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
}

_STATUS_MAP: dict[str, JobStatus] = {
    "starting": JobStatus.QUEUED,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.READY,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.CANCELLED,
}


def build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: str,
    negative_prompt: str,
    image_input: BinaryIO | None,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(_MODEL_INPUT_BUILDERS))
        raise GenerationError(
            ErrorKind.INVALID_INPUT,
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}.",
        )

    return builder(
        prompt=prompt,
        negative_prompt=negative_prompt,
        image_input=image_input,
    )


def first_output_url(output: Any) -> str | None:
    """Most image models return a URL or a list of URLs; take the first one."""
    if output is None:
        return None
    if isinstance(output, str):
        return output
    if isinstance(output, (list, tuple)):
        for item in output:
            url = first_output_url(item)
            if url:
                return url
        return None
    url = getattr(output, "url", None)
    return str(url) if url else str(output)


class ReplicateImageGenerator(PollingImageProvider):
    """
    Polling adapter around Replicate predictions.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    kind = PROVIDER_REPLICATE

    def __init__(
        self,
        *,
        api_token: str | None = None,
        client: replicate.Client | None = None,
        **poll_kwargs: Any,
    ) -> None:
        super().__init__(**poll_kwargs)
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )
        self._client = client or replicate.Client(api_token=self._api_token)

    def submit(
        self,
        prompt: str,
        reference_image: ReferenceImage | None,
        config: ProviderConfig,
    ) -> str:
        image_input = None
        if reference_image is not None:
            image_input = io.BytesIO(reference_image.data)
            image_input.name = f"{reference_image.name}.{reference_image.extension}"

        options = dict(config.options)
        negative_prompt = str(options.pop("negative_prompt", NEGATIVE_PROMPT))
        replicate_input = build_replicate_input_payload(
            model_identifier=config.model,
            prompt=prompt,
            negative_prompt=negative_prompt,
            image_input=image_input,
        )
        # Allow configuration to tweak model-specific knobs (e.g., guidance_scale, seed).
        replicate_input.update(options)

        try:
            if ":" in config.model:
                version = config.model.split(":", maxsplit=1)[1]
                prediction = self._client.predictions.create(version=version, input=replicate_input)
            else:
                prediction = self._client.models.predictions.create(
                    model=config.model, input=replicate_input
                )
        except ReplicateError as exc:
            raise _classify_replicate_error(exc) from exc
        return str(prediction.id)

    def poll(self, job_id: str, config: ProviderConfig) -> PollResult:
        try:
            prediction = self._client.predictions.get(job_id)
        except ReplicateError as exc:
            raise _classify_replicate_error(exc) from exc

        status = _STATUS_MAP.get(str(prediction.status).lower(), JobStatus.FAILED)
        result_url = first_output_url(prediction.output) if status is JobStatus.READY else None
        message = str(prediction.error) if getattr(prediction, "error", None) else None
        return PollResult(status=status, result_url=result_url, message=message)


def _classify_replicate_error(exc: ReplicateError) -> GenerationError:
    status = getattr(exc, "status", None)
    kind = classify_status(int(status)) if status else ErrorKind.UNKNOWN
    logger.warning("[replicate] request failed status=%s kind=%s", status, kind.value)
    return GenerationError(kind, str(exc), status_code=int(status) if status else None)
