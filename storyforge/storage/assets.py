"""
Storage bucket for generated assets.
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit
from urllib.request import url2pathname

import requests

from ..common.errors import ErrorKind, GenerationError

logger = logging.getLogger(__name__)


def decode_data_url(data_url: str) -> tuple[bytes, str]:
    """Split a ``data:<mime>;base64,<payload>`` URL into bytes and mime type."""
    header, _, payload = data_url.partition(",")
    if not header.startswith("data:") or not payload:
        raise ValueError("Malformed data URL.")
    mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    if ";base64" not in header:
        raise ValueError("Only base64 data URLs are supported.")
    try:
        return base64.b64decode(payload, validate=True), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Data URL payload is not valid base64.") from exc


class LocalAssetStore:
    """
    Filesystem-backed bucket that mirrors the hosted storage layout.

    Parameters
    ----------
    root:
        Directory under which objects are written.
    base_url:
        Public URL prefix for the bucket. When omitted, ``file://`` URLs are returned.
    request_timeout:
        Timeout in seconds for downloading hosted provider outputs.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        base_url: str | None = None,
        session: requests.Session | None = None,
        request_timeout: float = 60.0,
    ) -> None:
        self.root = Path(root).expanduser()
        self.base_url = base_url.rstrip("/") if base_url else None
        self._session = session or requests.Session()
        self.request_timeout = request_timeout

    def public_url(self, key: str) -> str:
        key = self._normalize_key(key)
        if self.base_url:
            return f"{self.base_url}/{key}"
        return (self.root / key).resolve().as_uri()

    def save_bytes(self, key: str, data: bytes) -> str:
        """Write (or overwrite) an object and return its public URL."""
        key = self._normalize_key(key)
        target = self.root / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("Stored asset %s (%d bytes)", key, len(data))
        return self.public_url(key)

    def save_generated(self, key: str, asset_url: str) -> str:
        """
        Persist a provider output, which is either an inline data URL or a hosted URL.
        """
        if asset_url.startswith("data:"):
            try:
                data, _ = decode_data_url(asset_url)
            except ValueError as exc:
                raise GenerationError(ErrorKind.UNKNOWN, str(exc)) from exc
            return self.save_bytes(key, data)
        return self.save_bytes(key, self.download(asset_url))

    def download(self, url: str) -> bytes:
        try:
            response = self._session.get(url, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise GenerationError(
                ErrorKind.SERVICE_UNAVAILABLE,
                f"Could not download generated asset: {exc}",
            ) from exc
        return response.content

    def load(self, url: str) -> bytes | None:
        """
        Read an object this store produced straight from disk.

        Handles both ``file://`` URLs under ``root`` and URLs under ``base_url``.
        Returns None for foreign URLs and for objects that are not on disk.
        """
        path = self._local_path(url)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()

    def _local_path(self, url: str) -> Path | None:
        if self.base_url and url.startswith(self.base_url + "/"):
            try:
                return self.root / self._normalize_key(url[len(self.base_url) + 1:])
            except ValueError:
                return None
        parts = urlsplit(url)
        if parts.scheme != "file":
            return None
        path = Path(url2pathname(parts.path)).resolve()
        try:
            path.relative_to(self.root.resolve())
        except ValueError:
            return None
        return path

    @staticmethod
    def _normalize_key(key: str) -> str:
        path = PurePosixPath(key.strip().lstrip("/"))
        if not path.parts or ".." in path.parts:
            raise ValueError(f"Invalid asset key: {key!r}")
        return str(path)
