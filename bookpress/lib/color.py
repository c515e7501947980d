# bookpress/lib/color.py
from __future__ import annotations

import io
import os
from typing import Optional

from PIL import Image, ImageCms, UnidentifiedImageError

from bookpress.lib.results import Err, Ok, Result
from bookpress.logger import get_logger

log = get_logger(__name__)


def validate_icc_profile(path: Optional[str]) -> Result[str]:
    if not path:
        return Err("no ICC profile configured")
    if not os.path.exists(path):
        return Err(f"ICC profile not found: {path}")
    try:
        profile = ImageCms.getOpenProfile(path)
        desc = ImageCms.getProfileDescription(profile).strip()
    except (ImageCms.PyCMSError, OSError) as e:
        return Err(f"unreadable ICC profile {path}: {e}")
    return Ok(desc or os.path.basename(path))


def convert_to_cmyk_tiff(image_bytes: bytes, icc_profile_path: str) -> Result[bytes]:
    """RGB artwork -> LZW-compressed CMYK TIFF using the press profile."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as im:
            rgb = im.convert("RGB")
        srgb = ImageCms.createProfile("sRGB")
        press = ImageCms.getOpenProfile(icc_profile_path)
        cmyk = ImageCms.profileToProfile(
            rgb,
            srgb,
            press,
            renderingIntent=ImageCms.Intent.PERCEPTUAL,
            outputMode="CMYK",
        )
        buf = io.BytesIO()
        cmyk.save(
            buf,
            format="TIFF",
            compression="tiff_lzw",
            dpi=(300, 300),
            icc_profile=press.tobytes(),
        )
        return Ok(buf.getvalue())
    except (UnidentifiedImageError, ImageCms.PyCMSError, OSError, ValueError) as e:
        return Err(f"CMYK conversion failed: {e}")
