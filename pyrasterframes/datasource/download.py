from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlparse

import requests

from engine.config import download_timeout_s

logger = logging.getLogger(__name__)


def download_bytes(uri: str, *, timeout: float | None = None) -> bytes:
    """
    Fetch the full content of an `http(s)://` or `file://` URI.

    Plain paths are read as local files. HTTP errors raise `requests.HTTPError`.
    """
    parsed = urlparse(str(uri))
    scheme = (parsed.scheme or "").lower()
    if scheme in {"http", "https"}:
        logger.debug("Downloading %s", uri)
        response = requests.get(str(uri), timeout=timeout or download_timeout_s())
        response.raise_for_status()
        return response.content
    if scheme == "file":
        return Path(parsed.path).read_bytes()
    if scheme == "" or len(scheme) == 1:
        # Bare paths, including Windows drive letters.
        return Path(str(uri)).read_bytes()
    raise ValueError(f"Unsupported URI scheme for download: {scheme!r}")
