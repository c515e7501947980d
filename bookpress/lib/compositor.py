# bookpress/lib/compositor.py
"""
Page composition: overlay placement, text wrapping and compositing the
text band onto bled artwork, plus the fixed extra pages of a book
(dedication and promo).
"""
from __future__ import annotations

import io
import math
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from bookpress.lib.bleed import PRINT_SIZE_PX, hex_to_rgb
from bookpress.lib.results import Err, Ok, Result
from bookpress.logger import get_logger

log = get_logger(__name__)

OVERLAY_MARGIN = 50
OVERLAY_WIDTH_RATIO = 0.8
OVERLAY_HEIGHT_RATIO = 0.3
OVERLAY_MAX_HEIGHT_RATIO = 0.45
MAX_TEXT_THRESHOLD = 450
MIN_FONT_SIZE = 24

STANDARD_POSITIONS = ("b", "t", "tl", "tr", "bl", "br")
MAX_POSITIONS = ("topMAX", "bottomMAX")

_ALIASES = {
    "bottom": "b",
    "top": "t",
    "top_left": "tl",
    "top_right": "tr",
    "bottom_left": "bl",
    "bottom_right": "br",
}
# asset file names under V2/
_ASSET_NAMES = {
    "b": "bottom",
    "t": "top",
    "tl": "top_left",
    "tr": "top_right",
    "bl": "bottom_left",
    "br": "bottom_right",
}


def normalize_position(position: str) -> str:
    """Accept short codes, long names and *MAX anchors; anything else is `b`."""
    p = (position or "").strip()
    if p in STANDARD_POSITIONS or p in MAX_POSITIONS:
        return p
    if p in _ALIASES:
        return _ALIASES[p]
    lowered = p.lower()
    for name in MAX_POSITIONS:
        if lowered == name.lower():
            return name
    if lowered in STANDARD_POSITIONS:
        return lowered
    return _ALIASES.get(lowered, "b")


@dataclass(frozen=True)
class OverlayCoordinates:
    position: str
    x: int
    y: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.x + self.width, self.y + self.height


def calculate_overlay_coordinates(
    position: str,
    canvas_width: int = PRINT_SIZE_PX,
    canvas_height: int = PRINT_SIZE_PX,
) -> OverlayCoordinates:
    pos = normalize_position(position)
    width = math.floor(canvas_width * OVERLAY_WIDTH_RATIO)
    ratio = OVERLAY_MAX_HEIGHT_RATIO if pos in MAX_POSITIONS else OVERLAY_HEIGHT_RATIO
    height = math.floor(canvas_height * ratio)

    centered_x = math.floor((canvas_width - width) / 2)
    right_x = canvas_width - width - OVERLAY_MARGIN
    top_y = OVERLAY_MARGIN
    bottom_y = canvas_height - height - OVERLAY_MARGIN

    table: Dict[str, Tuple[int, int]] = {
        "b": (centered_x, bottom_y),
        "t": (centered_x, top_y),
        "bl": (OVERLAY_MARGIN, bottom_y),
        "br": (right_x, bottom_y),
        "tl": (OVERLAY_MARGIN, top_y),
        "tr": (right_x, top_y),
        "topMAX": (centered_x, top_y),
        "bottomMAX": (centered_x, bottom_y),
    }
    x, y = table[pos]
    return OverlayCoordinates(pos, x, y, width, height)


_ROTATION = ("b", "t", "bl", "br")


def analyze_optimal_overlay_position(text_length: int, page_index: int = 0) -> str:
    """
    Deterministic anchor choice: long text gets a tall band, alternating
    bottom/top across spreads; short text rotates over the standard anchors.
    """
    if text_length > MAX_TEXT_THRESHOLD:
        return "bottomMAX" if page_index % 2 == 0 else "topMAX"
    return _ROTATION[page_index % len(_ROTATION)]


# (image_bytes, text, page_index) -> position
OverlayStrategy = Callable[[bytes, str, int], str]


def deterministic_strategy(image_bytes: bytes, text: str, page_index: int) -> str:
    return analyze_optimal_overlay_position(len(text), page_index)


def _slug(value: str) -> str:
    s = re.sub(r"[^a-z0-9]+", "-", (value or "").strip().lower()).strip("-")
    return s or "default"


def overlay_path(asset_root: Union[str, Path], reading_age: str, position: str) -> str:
    pos = normalize_position(position)
    base = Path(asset_root) / "overlays" / _slug(reading_age)
    if pos in MAX_POSITIONS:
        return str(base / "MAX" / f"{pos}.png")
    return str(base / "V2" / f"{_ASSET_NAMES[pos]}.png")


@dataclass(frozen=True)
class TextConfig:
    font_family: str = "Arial"
    font_size: int = 100
    line_spacing: int = 110
    text_color: str = "#000000"
    text_width_percent: float = 80
    border_percent: float = 5

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "TextConfig":
        known = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def scaled(self, factor: float) -> "TextConfig":
        d = asdict(self)
        d["font_size"] = max(MIN_FONT_SIZE, int(self.font_size * factor))
        d["line_spacing"] = max(MIN_FONT_SIZE, int(self.line_spacing * factor))
        return TextConfig(**d)


@dataclass
class PageCompositionOptions:
    base_image: bytes
    text: str
    position: Union[str, OverlayCoordinates] = "b"
    overlay_path: Optional[str] = None     # None -> plain translucent band
    text_config: TextConfig = field(default_factory=TextConfig)


_font_cache: Dict[Tuple[str, int], ImageFont.ImageFont] = {}


def load_font(family: str, size: int):
    key = (family, size)
    if key in _font_cache:
        return _font_cache[key]
    font = None
    for candidate in (family, f"{family}.ttf", "DejaVuSans.ttf"):
        try:
            font = ImageFont.truetype(candidate, size)
            break
        except OSError:
            continue
    if font is None:
        font = ImageFont.load_default(size=size)
    _font_cache[key] = font
    return font


def _split_long_word(draw: ImageDraw.ImageDraw, word: str, font, max_width: float) -> List[str]:
    parts: List[str] = []
    cur = ""
    for ch in word:
        if cur and draw.textlength(cur + ch, font=font) > max_width:
            parts.append(cur)
            cur = ch
        else:
            cur += ch
    if cur:
        parts.append(cur)
    return parts


def wrap_text(draw: ImageDraw.ImageDraw, text: str, font, max_width: float) -> List[str]:
    """Greedy wrap on measured width; explicit newlines start a new line."""
    lines: List[str] = []
    for paragraph in text.splitlines() or [""]:
        line = ""
        for word in paragraph.split():
            candidate = f"{line} {word}" if line else word
            if draw.textlength(candidate, font=font) <= max_width:
                line = candidate
                continue
            if line:
                lines.append(line)
            if draw.textlength(word, font=font) > max_width:
                chunks = _split_long_word(draw, word, font, max_width)
                lines.extend(chunks[:-1])
                line = chunks[-1]
            else:
                line = word
        lines.append(line)
    return lines


def _text_region(width: int, height: int, cfg: TextConfig) -> Tuple[int, int, int, int]:
    x = int(width * ((100 - cfg.text_width_percent) / 200))
    y = int(height * (cfg.border_percent / 100))
    region_w = int(width * cfg.text_width_percent / 100)
    region_h = height - 2 * y
    return x, y, region_w, region_h


def _draw_block(
    layer: Image.Image,
    text: str,
    cfg: TextConfig,
    region: Tuple[int, int, int, int],
    *,
    center: bool = True,
) -> Tuple[List[str], int]:
    """
    Draw wrapped text inside `region`, shrinking the font until it fits.
    Returns the drawn lines and how many lines were dropped because even
    MIN_FONT_SIZE could not fit them; nothing is drawn outside `region`.
    """
    x, y, region_w, region_h = region
    draw = ImageDraw.Draw(layer)
    current = cfg
    while True:
        font = load_font(current.font_family, current.font_size)
        lines = wrap_text(draw, text, font, region_w)
        block_h = current.line_spacing * (len(lines) - 1) + current.font_size
        if block_h <= region_h or current.font_size <= MIN_FONT_SIZE:
            break
        current = current.scaled(0.9)
    dropped = 0
    if block_h > region_h:
        room = 0 if region_h < current.font_size else (region_h - current.font_size) // current.line_spacing + 1
        dropped = len(lines) - room
        lines = lines[:room]
    fill = hex_to_rgb(current.text_color)
    for i, line in enumerate(lines):
        lx = x
        if center:
            lx = x + max(0, int((region_w - draw.textlength(line, font=font)) / 2))
        draw.text((lx, y + i * current.line_spacing), line, font=font, fill=fill)
    return lines, dropped


def render_overlay_with_text(
    size: Tuple[int, int],
    text: str,
    cfg: TextConfig,
    asset: Optional[Image.Image] = None,
) -> Tuple[Image.Image, List[str], int]:
    w, h = size
    if asset is not None:
        layer = asset.convert("RGBA").resize((w, h), Image.LANCZOS)
    else:
        layer = Image.new("RGBA", (w, h), (0, 0, 0, 0))
        ImageDraw.Draw(layer).rounded_rectangle(
            (0, 0, w - 1, h - 1), radius=max(8, h // 10), fill=(255, 255, 255, 215)
        )
    lines, dropped = _draw_block(layer, text, cfg, _text_region(w, h, cfg))
    return layer, lines, dropped


def compose_page(options: PageCompositionOptions) -> Result[bytes]:
    try:
        with Image.open(io.BytesIO(options.base_image)) as im:
            base = im.convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        return Err(f"unreadable base image: {e}")

    coords = options.position
    if not isinstance(coords, OverlayCoordinates):
        coords = calculate_overlay_coordinates(coords, base.width, base.height)

    asset = None
    if options.overlay_path is not None:
        if not os.path.exists(options.overlay_path):
            return Err(f"overlay asset not found: {options.overlay_path}", {"position": coords.position})
        try:
            with Image.open(options.overlay_path) as ov:
                asset = ov.convert("RGBA")
        except (UnidentifiedImageError, OSError) as e:
            return Err(f"unreadable overlay asset {options.overlay_path}: {e}")

    layer, lines, dropped = render_overlay_with_text((coords.width, coords.height), options.text, options.text_config, asset)
    base.alpha_composite(layer, dest=(coords.x, coords.y))

    buf = io.BytesIO()
    base.convert("RGB").save(buf, format="PNG", dpi=(300, 300))
    meta = {"position": coords.position, "lines": len(lines)}
    if dropped:
        meta["truncated_lines"] = dropped
    return Ok(buf.getvalue(), meta)


def ensure_even_page_count(n: int) -> int:
    return n if n % 2 == 0 else n + 1


def _png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG", dpi=(300, 300))
    return buf.getvalue()


def create_dedication_page(
    dedication: str,
    cfg: Optional[TextConfig] = None,
    width: int = PRINT_SIZE_PX,
    height: int = PRINT_SIZE_PX,
) -> bytes:
    cfg = cfg or TextConfig()
    page = Image.new("RGB", (width, height), (255, 255, 255))
    _draw_block(page, "This book is dedicated to:", cfg, (0, int(height * 0.2), width, cfg.font_size * 2))
    _draw_block(page, dedication, cfg, (int(width * 0.2), int(height * 0.3), int(width * 0.6), int(height * 0.6)))
    return _png(page)


def create_promo_page(
    url: str,
    cfg: Optional[TextConfig] = None,
    width: int = PRINT_SIZE_PX,
    height: int = PRINT_SIZE_PX,
) -> bytes:
    cfg = cfg or TextConfig()
    page = Image.new("RGB", (width, height), (255, 255, 255))
    text = f"Visit {url} for more personalized adventures!"
    _draw_block(page, text, cfg, (int(width * 0.1), int(height * 0.2), int(width * 0.8), int(height * 0.6)))
    return _png(page)


def book_page_count(story_pages: int, has_dedication: bool) -> int:
    """Interior pages as printed: dedication, story, promo, then even padding."""
    return ensure_even_page_count(story_pages + (1 if has_dedication else 0) + 1)


PAPER_THICKNESS_MM = 0.1
MIN_SPINE_PX = 100


def calculate_cover_spread_dimensions(page_count: int, cover_size: int = PRINT_SIZE_PX) -> dict:
    spine = max(MIN_SPINE_PX, math.floor(page_count * PAPER_THICKNESS_MM * 300 / 25.4))
    return {
        "cover_width": cover_size,
        "cover_height": cover_size,
        "spine_width": spine,
        "total_width": 2 * cover_size + spine,
        "total_height": cover_size,
    }


def compose_cover_spread(front: bytes, back: bytes, page_count: int, spine_color: str = "#ffffff") -> Result[bytes]:
    """back | spine | front on one canvas; covers are resized to the print size if needed."""
    dims = calculate_cover_spread_dimensions(page_count)
    size = (dims["cover_width"], dims["cover_height"])
    try:
        with Image.open(io.BytesIO(front)) as f, Image.open(io.BytesIO(back)) as b:
            front_img = f.convert("RGB").resize(size, Image.LANCZOS) if f.size != size else f.convert("RGB")
            back_img = b.convert("RGB").resize(size, Image.LANCZOS) if b.size != size else b.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError) as e:
        return Err(f"unreadable cover image: {e}")

    spread = Image.new("RGB", (dims["total_width"], dims["total_height"]), hex_to_rgb(spine_color))
    spread.paste(back_img, (0, 0))
    spread.paste(front_img, (dims["cover_width"] + dims["spine_width"], 0))
    return Ok(_png(spread), dims)
