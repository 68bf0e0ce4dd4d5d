"""
Black Forest Labs (FLUX Kontext) adapter built on the submit/poll loop.
"""

from __future__ import annotations

import base64
import logging
import os
from typing import Any, Mapping
from urllib.parse import urlsplit

import requests

from ..common.errors import ErrorKind, GenerationError, classify_status
from .base import PROVIDER_FLUX, ProviderConfig, ReferenceImage
from .polling import JobStatus, PollingImageProvider, PollResult

logger = logging.getLogger(__name__)

_STATUS_MAP: dict[str, JobStatus] = {
    "pending": JobStatus.QUEUED,
    "queued": JobStatus.QUEUED,
    "processing": JobStatus.PROCESSING,
    "ready": JobStatus.READY,
    "error": JobStatus.FAILED,
    "failed": JobStatus.FAILED,
    "content moderated": JobStatus.FAILED,
    "request moderated": JobStatus.FAILED,
    "task not found": JobStatus.FAILED,
    "cancelled": JobStatus.CANCELLED,
    "canceled": JobStatus.CANCELLED,
}


def map_flux_status(raw: Any) -> JobStatus:
    return _STATUS_MAP.get(str(raw or "").strip().lower(), JobStatus.FAILED)


class FluxKontextProvider(PollingImageProvider):
    """
    Submit a prompt (and optionally one inline reference image), then poll ``get_result``.

    Parameters
    ----------
    api_key:
        BFL API key. Falls back to ``BFL_API_KEY`` environment variable.
    inline_result:
        Download the ready image and return it as a data URL. Hosted result URLs from
        BFL expire quickly, so callers that persist late should keep this enabled.
    """

    kind = PROVIDER_FLUX

    def __init__(
        self,
        *,
        api_key: str | None = None,
        session: requests.Session | None = None,
        request_timeout: float = 60.0,
        inline_result: bool = True,
        **poll_kwargs: Any,
    ) -> None:
        super().__init__(**poll_kwargs)
        self._api_key = api_key or os.getenv("BFL_API_KEY")
        self._session = session or requests.Session()
        self.request_timeout = request_timeout
        self.inline_result = inline_result

    def submit(
        self,
        prompt: str,
        reference_image: ReferenceImage | None,
        config: ProviderConfig,
    ) -> str:
        payload: dict[str, Any] = {"prompt": prompt}
        if reference_image is not None:
            payload["input_image"] = base64.b64encode(reference_image.data).decode("ascii")
        payload.update({key: value for key, value in config.options.items() if key != "result_endpoint"})

        logger.debug("[flux] submit prompt length=%d has_image=%s", len(prompt), reference_image is not None)
        data = self._request("POST", config.endpoint, json=payload)
        job_id = data.get("id")
        if not job_id:
            raise GenerationError(ErrorKind.UNKNOWN, "FLUX did not return a job id.")
        return str(job_id)

    def poll(self, job_id: str, config: ProviderConfig) -> PollResult:
        data = self._request("GET", self._result_endpoint(config), params={"id": job_id})
        status = map_flux_status(data.get("status"))
        result = data.get("result") or {}
        result_url = result.get("sample") if isinstance(result, Mapping) else None
        message = None if status is not JobStatus.FAILED else str(data.get("status"))
        return PollResult(status=status, result_url=result_url, message=message)

    def finalize(self, result_url: str, config: ProviderConfig) -> str:
        if not self.inline_result:
            return result_url
        try:
            response = self._session.get(result_url, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise GenerationError(
                ErrorKind.SERVICE_UNAVAILABLE, f"Could not download FLUX result: {exc}"
            ) from exc
        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    @staticmethod
    def _result_endpoint(config: ProviderConfig) -> str:
        override = config.options.get("result_endpoint") if config.options else None
        if override:
            return str(override)
        parts = urlsplit(config.endpoint)
        return f"{parts.scheme}://{parts.netloc}/v1/get_result"

    def _request(self, method: str, url: str, **kwargs: Any) -> Mapping[str, Any]:
        if not self._api_key:
            raise GenerationError(
                ErrorKind.UNKNOWN, "BFL API key is required. Set BFL_API_KEY or pass api_key."
            )
        headers = {"x-key": self._api_key, "accept": "application/json"}
        try:
            response = self._session.request(
                method, url, headers=headers, timeout=self.request_timeout, **kwargs
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise GenerationError(ErrorKind.SERVICE_UNAVAILABLE, f"FLUX request failed: {exc}") from exc
        except requests.RequestException as exc:
            raise GenerationError(ErrorKind.UNKNOWN, f"FLUX request failed: {exc}") from exc

        if not response.ok:
            raise GenerationError(
                classify_status(response.status_code),
                f"FLUX returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError(ErrorKind.UNKNOWN, "FLUX returned a non-JSON response.") from exc
        return data if isinstance(data, Mapping) else {}
