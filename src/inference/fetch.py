"""
Fetch a model artifact by URI in chunks, reporting fractional progress.

Supported: plain paths, file:// URIs and http(s):// URLs.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from .errors import ModelLoadError

ProgressFn = Callable[[float], None]


def fetch_model(
    uri: str,
    chunk_size: int = 1 << 20,
    timeout: float = 30.0,
    on_progress: Optional[ProgressFn] = None,
) -> bytes:
    """
    Read the whole artifact into memory.

    Args:
        uri: Path or URL of the model file.
        chunk_size: Bytes per read.
        timeout: HTTP connect/read timeout in seconds.
        on_progress: Called with the fetched fraction in [0, 1].

    Raises:
        ModelLoadError: If the artifact cannot be read or is empty.
    """
    parsed = urlparse(uri)
    scheme = parsed.scheme.lower()

    if scheme in ("http", "https"):
        payload = _fetch_http(uri, chunk_size, timeout, on_progress)
    elif scheme == "file":
        payload = _read_file(url2pathname(parsed.path), chunk_size, on_progress)
    elif scheme == "" or len(scheme) == 1:
        # len(scheme) == 1 is a Windows drive letter, e.g. C:\models\yolo.onnx
        payload = _read_file(uri, chunk_size, on_progress)
    else:
        raise ModelLoadError(f"Unsupported model URI scheme: {parsed.scheme}")

    if not payload:
        raise ModelLoadError(f"Model artifact is empty: {uri}")
    return payload


def _read_file(path: str, chunk_size: int, on_progress: Optional[ProgressFn]) -> bytes:
    try:
        total = os.path.getsize(path)
        chunks = []
        done = 0
        with open(path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                chunks.append(chunk)
                done += len(chunk)
                if on_progress and total:
                    on_progress(done / total)
    except OSError as e:
        raise ModelLoadError(f"Failed to read model file {path}: {e}") from e

    logging.debug(f"Read {done} bytes from {path}")
    return b"".join(chunks)


def _fetch_http(url: str, chunk_size: int, timeout: float, on_progress: Optional[ProgressFn]) -> bytes:
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            total = int(response.headers.get("content-length") or 0)
            chunks = []
            done = 0
            for chunk in response.iter_content(chunk_size=chunk_size):
                if not chunk:
                    continue
                chunks.append(chunk)
                done += len(chunk)
                if on_progress and total:
                    on_progress(min(done / total, 1.0))
    except requests.RequestException as e:
        raise ModelLoadError(f"Failed to fetch model from {url}: {e}") from e

    logging.debug(f"Fetched {done} bytes from {url}")
    return b"".join(chunks)
