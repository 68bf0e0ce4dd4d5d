"""
Downloading reference images that accompany a generation request.
"""

from __future__ import annotations

import mimetypes
from typing import Callable, Iterable
from urllib.parse import urlsplit

import requests

from ..common.errors import ErrorKind, GenerationError, classify_status
from .base import ReferenceImage

_EXTENSION_MIME = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


def guess_mime_type(url: str, content_type: str | None = None) -> str:
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime.startswith("image/"):
            return mime
    path = urlsplit(url).path
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    if extension in _EXTENSION_MIME:
        return _EXTENSION_MIME[extension]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "image/png"


def fetch_reference_images(
    sources: Iterable[tuple[str, str]],
    *,
    session: requests.Session | None = None,
    timeout: float = 30.0,
    local_loader: Callable[[str], bytes | None] | None = None,
) -> list[ReferenceImage]:
    """
    Download ``(name, url)`` pairs into :class:`ReferenceImage` objects.

    ``name`` is the owning entity's name; the orchestrator uses it to order and
    truncate references deterministically. ``local_loader`` is tried first so
    assets already in our own store are read without an HTTP round trip.
    """
    http = session or requests.Session()
    images: list[ReferenceImage] = []
    for name, url in sources:
        data = local_loader(url) if local_loader is not None else None
        if data is not None:
            images.append(ReferenceImage(name=name, data=data, mime_type=guess_mime_type(url)))
            continue
        try:
            response = http.get(url, timeout=timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise GenerationError(
                ErrorKind.SERVICE_UNAVAILABLE,
                f"Could not download reference image for '{name}': {exc}",
            ) from exc
        except requests.RequestException as exc:
            raise GenerationError(
                ErrorKind.INVALID_INPUT,
                f"Invalid reference image URL for '{name}': {exc}",
            ) from exc

        if not response.ok:
            kind = classify_status(response.status_code)
            if kind is ErrorKind.UNKNOWN:
                kind = ErrorKind.INVALID_INPUT
            raise GenerationError(
                kind,
                f"Could not download reference image for '{name}': HTTP {response.status_code}",
                status_code=response.status_code,
            )

        images.append(
            ReferenceImage(
                name=name,
                data=response.content,
                mime_type=guess_mime_type(url, response.headers.get("content-type")),
            )
        )
    return images
