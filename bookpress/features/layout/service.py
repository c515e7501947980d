# bookpress/features/layout/service.py
import io
import os
import re
from typing import List, Optional

from PIL import Image

from bookpress.lib.compositor import (
    MAX_POSITIONS,
    MAX_TEXT_THRESHOLD,
    OverlayStrategy,
    PageCompositionOptions,
    TextConfig,
    compose_page,
    create_dedication_page,
    create_promo_page,
    deterministic_strategy,
    normalize_position,
    overlay_path,
)
from bookpress.lib.imaging import to_data_url, write_bytes_atomic
from bookpress.lib.pdf import export_to_pdf
from bookpress.lib.providers.base import AnalyzeRequest, ImageStage
from bookpress.lib.providers.registry import ImageProviderRegistry
from bookpress.logger import get_logger
from bookpress.pipeline.errors import FatalStageError, StageError
from bookpress.pipeline.runner import StageContext
from bookpress.pipeline.stages import StageName

from .prompt import build_overlay_position_prompt

log = get_logger(__name__)

_POSITION_RE = re.compile(
    # apostrophes are not boundaries, so the t in "don't" is not a code
    r"(?<![\w'\u2019])(topMAX|bottomMAX|top_left|top_right|bottom_left|bottom_right|bottom|top|tl|tr|bl|br|b|t)(?![\w'\u2019])",
    re.IGNORECASE,
)
THUMBNAIL_PX = 768


def text_config_for(ctx: StageContext) -> TextConfig:
    """Configured defaults overlaid with the order's own text settings."""
    return TextConfig.from_dict({**ctx.settings.text_defaults, **(ctx.request.text_config or {})})


def reading_age_for(ctx: StageContext) -> str:
    profile = ctx.output(StageName.BRIEF_EXTRACT).get("profile", {})
    return profile.get("reading_age") or ctx.request.reading_age or ctx.settings.default_reading_age


def overlay_asset_for(ctx: StageContext, reading_age: str, position: str) -> Optional[str]:
    """Overlay artwork for the band, or None (plain band) when the asset set lacks it."""
    path = overlay_path(ctx.settings.asset_root, reading_age, position)
    if os.path.exists(path):
        return path
    log.warning(f"{ctx.log_prefix()} overlay asset missing, using plain band: {path}")
    return None


def parse_position(text: str, text_length: int) -> Optional[str]:
    """Placement code from a vision answer, first line preferred; long text is forced onto a MAX band."""
    lines = (text or "").strip().splitlines()
    m = _POSITION_RE.search(lines[0]) if lines else None
    if not m:
        m = _POSITION_RE.search(text or "")
    if not m:
        return None
    pos = normalize_position(m.group(1))
    if text_length > MAX_TEXT_THRESHOLD and pos not in MAX_POSITIONS:
        return "topMAX" if pos.startswith("t") else "bottomMAX"
    return pos


def _thumbnail(image_bytes: bytes) -> bytes:
    with Image.open(io.BytesIO(image_bytes)) as im:
        thumb = im.convert("RGB")
    thumb.thumbnail((THUMBNAIL_PX, THUMBNAIL_PX))
    buf = io.BytesIO()
    thumb.save(buf, format="PNG")
    return buf.getvalue()


def vision_strategy(images: ImageProviderRegistry, fallback: OverlayStrategy = deterministic_strategy) -> OverlayStrategy:
    """
    Overlay placement from the `overlay_position` vision stage. Any failure or
    unparseable answer uses `fallback` for that page.
    """
    def choose(image_bytes: bytes, text: str, page_index: int) -> str:
        if not text.strip():
            return fallback(image_bytes, text, page_index)
        try:
            resp = images.analyze(AnalyzeRequest(
                stage=ImageStage.OVERLAY_POSITION,
                image_urls=[to_data_url(_thumbnail(image_bytes), "image/png")],
                prompt=build_overlay_position_prompt(
                    text_length=len(text),
                    long_text=len(text) > MAX_TEXT_THRESHOLD,
                ),
            ))
        except Exception as e:
            log.warning(f"overlay placement for page {page_index + 1} fell back: {e}")
            return fallback(image_bytes, text, page_index)
        pos = parse_position(resp.output, len(text))
        if pos is None:
            log.warning(f"no placement in vision answer for page {page_index + 1}: {resp.output[:80]!r}")
            return fallback(image_bytes, text, page_index)
        return pos

    return choose


def compose_pdf(ctx: StageContext) -> dict:
    """
    layout.compose_pdf: overlay the story text on every prepared page and
    bind the interior PDF (dedication, story pages, promo, even padding).
    """
    req = ctx.request
    prepared = ctx.output(StageName.IMAGES_PREPRESS).get("pages", [])
    texts: List[str] = ctx.output(StageName.STORY_REASON).get("pages", [])
    if not prepared:
        raise StageError("no prepared pages to lay out")

    cfg = text_config_for(ctx)
    reading_age = reading_age_for(ctx)
    strategy = vision_strategy(ctx.images) if req.vision_overlay else deterministic_strategy

    pages: List[str] = []
    if req.dedication:
        pages.append(write_bytes_atomic(ctx.path("pages", "dedication.png"), create_dedication_page(req.dedication, cfg)))

    placements = []
    for index, entry in enumerate(prepared):
        page_no = entry["page"]
        text = texts[page_no - 1] if page_no - 1 < len(texts) else ""
        with open(os.path.join(ctx.workdir, entry["image"]), "rb") as f:
            base = f.read()

        position = strategy(base, text, index)
        res = compose_page(PageCompositionOptions(
            base_image=base,
            text=text,
            position=position,
            overlay_path=overlay_asset_for(ctx, reading_age, position),
            text_config=cfg,
        ))
        if not res.ok:
            raise FatalStageError(f"page {page_no} composition failed: {res.error}")
        pages.append(write_bytes_atomic(ctx.path("pages", f"page-{page_no}.png"), res.value))
        placement = {"page": page_no, "position": res.meta.get("position"), "lines": res.meta.get("lines")}
        if res.meta.get("truncated_lines"):
            log.warning(f"{ctx.log_prefix()} page {page_no} text truncated by {res.meta['truncated_lines']} lines")
            placement["truncated_lines"] = res.meta["truncated_lines"]
        placements.append(placement)

    pages.append(write_bytes_atomic(ctx.path("pages", "promo.png"), create_promo_page(ctx.settings.promo_url, cfg)))

    export = export_to_pdf(
        pages,
        ctx.path("inside-book.pdf"),
        ctx.settings.icc_profile_path or None,
        title=req.title,
    )
    if not export.ok:
        raise StageError(f"interior PDF export failed: {export.error}")

    log.info(f"{ctx.log_prefix()} inside-book.pdf with {export.value.page_count} pages (padded={export.value.padded})")
    return {
        "pdf": os.path.relpath(export.value.file_path, ctx.workdir),
        "page_count": export.value.page_count,
        "padded": export.value.padded,
        "icc_profile": export.value.icc_profile,
        "placements": placements,
    }
