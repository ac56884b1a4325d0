"""Client for a remote single-shot `/api/convert` endpoint."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional

import requests

from .reels_engine.errors import ConversionFailed

logger = logging.getLogger(__name__)


def convert_remote(
    endpoint: str,
    image_path: str | Path,
    duration: Optional[float] = None,
    timeout: float = 120.0,
) -> bytes:
    """POST one image as multipart field `image` and return the MP4 bytes."""
    path = Path(image_path)
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    data = {"duration": f"{duration:g}"} if duration is not None else None

    logger.info(f"Uploading {path.name} to {endpoint}")
    try:
        with open(path, "rb") as f:
            resp = requests.post(endpoint, files={"image": (path.name, f, mime)}, data=data, timeout=(5, timeout))
    except requests.RequestException as e:
        raise ConversionFailed(f"Request to {endpoint} failed: {e}") from e

    if resp.status_code != 200:
        raise ConversionFailed(f"Remote conversion failed ({resp.status_code}): {resp.text[:500]}")
    if not resp.headers.get("Content-Type", "").startswith("video/mp4"):
        raise ConversionFailed(f"Unexpected content type: {resp.headers.get('Content-Type')}")
    return resp.content
