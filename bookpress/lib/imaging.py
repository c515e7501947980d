# bookpress/lib/imaging.py
from __future__ import annotations

import base64
import os
import re
from typing import Optional, Tuple

import requests

from bookpress.config import config
from bookpress.logger import get_logger

log = get_logger(__name__)

_DATAURL_RE = re.compile(r"^data:([\w/+.-]+);base64,(.*)$", re.IGNORECASE | re.DOTALL)


def sniff_mime(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    # WEBP: RIFF....WEBP
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "application/octet-stream"


def to_data_url(data: bytes, mime: Optional[str] = None) -> str:
    return f"data:{mime or sniff_mime(data)};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """Returns (bytes, content_type) for a data: URL."""
    m = _DATAURL_RE.match(data_url.strip())
    if not m:
        raise ValueError("not a base64 data URL")
    payload = "".join(m.group(2).split())
    payload += "=" * ((-len(payload)) % 4)
    data = base64.b64decode(payload)
    return data, m.group(1).lower()


def _looks_like_raw_base64(s: str) -> bool:
    if len(s) < 200:
        return False
    return bool(re.fullmatch(r"[A-Za-z0-9+/=\s]+", s))


def load_image_bytes(ref: str, *, timeout: Optional[float] = None) -> bytes:
    """
    Turn an image reference into bytes:
    - data URL or raw base64: decode
    - gs://bucket/key: download from GCS
    - http(s) URL: fetch
    - existing local path: read
    """
    if not ref:
        raise ValueError("empty image reference")
    ref = ref.strip()
    if ref.startswith("data:"):
        return decode_data_url(ref)[0]
    if ref.startswith("gs://"):
        from bookpress.lib.gcs_inventory import download_gcs_object_to_bytes
        return download_gcs_object_to_bytes(ref)
    if ref.startswith(("http://", "https://")):
        resp = requests.get(ref, timeout=timeout or config.provider_timeout_seconds)
        resp.raise_for_status()
        return resp.content
    if os.path.exists(ref):
        with open(ref, "rb") as f:
            return f.read()
    if _looks_like_raw_base64(ref):
        return base64.b64decode("".join(ref.split()))
    raise ValueError(f"unsupported image reference: {ref[:60]}")


def write_bytes_atomic(path: str, data: bytes) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".part"
    with open(tmp, "wb") as f:
        f.write(data)
    os.replace(tmp, path)
    return path
