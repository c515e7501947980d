# bookpress/lib/bleed.py
"""
Print geometry for page artwork: unit conversion, bleed extension and
dimension checks. Everything here is pure Pillow work on in-memory buffers.

Operations that touch image data return `Ok`/`Err` instead of raising so a
stage can decide per page whether a failure is fatal.
"""
from __future__ import annotations

import io
import math
from collections import Counter
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from bookpress.lib.results import Err, Ok, Result
from bookpress.logger import get_logger

log = get_logger(__name__)

DPI = 300
MM_PER_INCH = 25.4
TRIM_MM = 200.0
BLEED_MM = 3.0
SAFE_MARGIN_MM = 6.0
# 206 mm trim-with-bleed square at 300 DPI
PRINT_SIZE_PX = 2433
FALLBACK_EDGE_COLOR = "#d0d0d0"
NEAR_WHITE = 240


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def mm_to_pixels(mm: float, dpi: int = DPI) -> int:
    return _round_half_up(mm * dpi / MM_PER_INCH)


def pixels_to_mm(px: float, dpi: int = DPI) -> float:
    return px / (dpi / MM_PER_INCH)


def calculate_bleed_dimensions(trim_mm: float = TRIM_MM, bleed_mm: float = BLEED_MM, dpi: int = DPI) -> dict:
    trimmed = mm_to_pixels(trim_mm, dpi)
    bleed = mm_to_pixels(bleed_mm, dpi)
    return {
        "trimmed_px": trimmed,
        "bleed_px": bleed,
        "total_px": trimmed + 2 * bleed,
        "total_mm": trim_mm + 2 * bleed_mm,
    }


def calculate_safe_area(trim_mm: float = TRIM_MM, margin_mm: float = SAFE_MARGIN_MM, dpi: int = DPI) -> dict:
    """Rectangle (in trimmed-page pixels) that critical content must stay inside."""
    trimmed = mm_to_pixels(trim_mm, dpi)
    margin = mm_to_pixels(margin_mm, dpi)
    return {"x": margin, "y": margin, "width": trimmed - 2 * margin, "height": trimmed - 2 * margin}


@dataclass(frozen=True)
class BleedOptions:
    bleed_percent: float = 3.5
    target_width: int = PRINT_SIZE_PX
    target_height: int = PRINT_SIZE_PX
    edge_sample_size: int = 10


@dataclass(frozen=True)
class BleedOutput:
    image_bytes: bytes
    width: int
    height: int
    original_width: int
    original_height: int
    bleed_percent: float
    edge_color: str


@dataclass(frozen=True)
class DimensionCheck:
    valid: bool
    message: str


def _open_rgb(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as im:
        im.load()
        if im.mode in ("RGBA", "LA", "P"):
            rgba = im.convert("RGBA")
            flat = Image.new("RGB", rgba.size, (255, 255, 255))
            flat.paste(rgba, mask=rgba.getchannel("A"))
            return flat
        return im.convert("RGB")


def _hex(rgb: Tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb[:3])


def hex_to_rgb(value: str) -> Tuple[int, int, int]:
    v = value.lstrip("#")
    if len(v) == 3:
        v = "".join(c * 2 for c in v)
    return int(v[0:2], 16), int(v[2:4], 16), int(v[4:6], 16)


def _edge_color(img: Image.Image, sample_size: int) -> str:
    w, h = img.size
    thick_y = max(1, min(sample_size, h // 4))
    thick_x = max(1, min(sample_size, w // 4))
    regions = [
        (0, 0, w, thick_y),              # top
        (0, h - thick_y, w, h),          # bottom
        (0, 0, thick_x, h),              # left
        (w - thick_x, 0, w, h),          # right
    ]
    buckets: Counter = Counter()
    for box in regions:
        strip = img.crop(box)
        for count, rgb in strip.getcolors(maxcolors=strip.width * strip.height) or []:
            r, g, b = rgb[:3]
            if r > NEAR_WHITE and g > NEAR_WHITE and b > NEAR_WHITE:
                continue
            buckets[_hex(rgb)] += count
    if not buckets:
        return FALLBACK_EDGE_COLOR
    return buckets.most_common(1)[0][0]


def detect_dominant_edge_color(image: Union[bytes, Image.Image], sample_size: int = 10) -> str:
    """
    Most frequent non-near-white colour along the four borders, as #rrggbb.
    Falls back to a neutral grey (never white) when nothing qualifies or the
    image cannot be read.
    """
    try:
        img = image.convert("RGB") if isinstance(image, Image.Image) else _open_rgb(image)
        return _edge_color(img, sample_size)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        log.warning(f"edge colour detection failed, using fallback: {e}")
        return FALLBACK_EDGE_COLOR


def _encode_png(img: Image.Image, dpi: int = DPI) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG", dpi=(dpi, dpi))
    return buf.getvalue()


def apply_bleed_processing(image_bytes: bytes, options: Optional[BleedOptions] = None) -> Result[BleedOutput]:
    """
    Shrink the artwork by `bleed_percent`, pad it with the dominant edge
    colour and land on exactly target_width x target_height.
    """
    opts = options or BleedOptions()
    meta = {"bleed_percent": opts.bleed_percent}
    if not 0 <= opts.bleed_percent < 100:
        return Err(f"bleed_percent must be in [0, 100), got {opts.bleed_percent}", meta)
    if opts.target_width <= 0 or opts.target_height <= 0:
        return Err(f"invalid target size {opts.target_width}x{opts.target_height}", meta)

    try:
        src = _open_rgb(image_bytes)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        return Err(f"could not determine image dimensions: {e}", meta)

    ow, oh = src.size
    if not ow or not oh:
        return Err("could not determine image dimensions", meta)

    shrink = (100 - opts.bleed_percent) / 100
    sw = max(1, _round_half_up(ow * shrink))
    sh = max(1, _round_half_up(oh * shrink))
    shrunk = src.resize((sw, sh), Image.LANCZOS)

    edge = _edge_color(src, opts.edge_sample_size)
    pad_w = max(0, opts.target_width - sw)
    pad_h = max(0, opts.target_height - sh)
    left, top = pad_w // 2, pad_h // 2

    canvas = Image.new("RGB", (sw + pad_w, sh + pad_h), hex_to_rgb(edge))
    canvas.paste(shrunk, (left, top))
    if canvas.size != (opts.target_width, opts.target_height):
        # source larger than the target: fill the exact print size
        canvas = canvas.resize((opts.target_width, opts.target_height), Image.LANCZOS)

    return Ok(BleedOutput(
        image_bytes=_encode_png(canvas),
        width=opts.target_width,
        height=opts.target_height,
        original_width=ow,
        original_height=oh,
        bleed_percent=opts.bleed_percent,
        edge_color=edge,
    ), meta)


def upscale_to_print_dimensions(image_bytes: bytes, width: int, height: int) -> Result[bytes]:
    """Resize artwork up to `width`x`height` when it comes back from a provider smaller."""
    try:
        img = _open_rgb(image_bytes)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        return Err(f"could not read image: {e}")
    ow, oh = img.size
    meta = {"original_width": ow, "original_height": oh}
    if ow >= width and oh >= height:
        return Ok(image_bytes, meta)
    return Ok(_encode_png(img.resize((width, height), Image.LANCZOS)), meta)


def validate_print_dimensions(
    width: int,
    height: int,
    expected_width: int = PRINT_SIZE_PX,
    expected_height: int = PRINT_SIZE_PX,
    tolerance: int = 5,
) -> DimensionCheck:
    if abs(width - expected_width) <= tolerance and abs(height - expected_height) <= tolerance:
        return DimensionCheck(True, f"{width}x{height} within {tolerance}px of {expected_width}x{expected_height}")
    return DimensionCheck(
        False,
        f"{width}x{height} outside {tolerance}px tolerance of {expected_width}x{expected_height}",
    )
