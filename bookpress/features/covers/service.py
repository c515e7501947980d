# bookpress/features/covers/service.py
import os

from bookpress.lib.bleed import (
    BleedOptions,
    BleedOutput,
    apply_bleed_processing,
    calculate_bleed_dimensions,
    upscale_to_print_dimensions,
)
from bookpress.lib.compositor import (
    PageCompositionOptions,
    book_page_count,
    compose_cover_spread,
    compose_page,
)
from bookpress.lib.imaging import write_bytes_atomic
from bookpress.lib.pdf import export_to_pdf
from bookpress.lib.providers.base import ImageRequest, ImageStage
from bookpress.logger import get_logger
from bookpress.pipeline.errors import FatalStageError, StageError
from bookpress.pipeline.runner import StageContext
from bookpress.pipeline.stages import StageName

# overlay lookup and text settings are shared with the interior layout
from bookpress.features.layout.service import overlay_asset_for, reading_age_for, text_config_for

from .prompt import build_back_cover_prompt, build_front_cover_prompt

log = get_logger(__name__)

TITLE_SCALE = 1.6


def _generate(ctx: StageContext, stage: ImageStage, prompt: str) -> bytes:
    resp = ctx.images.generate(ImageRequest(stage=stage, prompt=prompt, width=1024, height=1024))
    log.info(f"{ctx.log_prefix()} {stage.value} via {resp.provider}/{resp.model}")
    return resp.image_bytes()


def _print_ready(ctx: StageContext, which: str, art: bytes) -> BleedOutput:
    trim = calculate_bleed_dimensions()["trimmed_px"]
    upscaled = upscale_to_print_dimensions(art, trim, trim)
    if not upscaled.ok:
        raise StageError(f"{which} cover: {upscaled.error}")
    bled = apply_bleed_processing(upscaled.value, BleedOptions(bleed_percent=ctx.request.bleed_percent))
    if not bled.ok:
        raise FatalStageError(f"{which} cover bleed failed: {bled.error}")
    return bled.value


def _with_band(ctx: StageContext, which: str, art: bytes, text: str, position: str, cfg) -> bytes:
    res = compose_page(PageCompositionOptions(
        base_image=art,
        text=text,
        position=position,
        overlay_path=overlay_asset_for(ctx, reading_age_for(ctx), position),
        text_config=cfg,
    ))
    if not res.ok:
        raise FatalStageError(f"{which} cover composition failed: {res.error}")
    return res.value


def compose_covers(ctx: StageContext) -> dict:
    """covers.compose: front and back art, title and blurb bands, and the wrap-around spread PDF."""
    story = ctx.output(StageName.STORY_REASON)
    profile = ctx.output(StageName.BRIEF_EXTRACT).get("profile", {})
    characters = ctx.output(StageName.IMAGES_ANALYZE_UPLOADS).get("characters", [])
    title = story.get("title") or ctx.request.title
    blurb = story.get("blurb") or ""
    style = profile.get("style", "")
    setting = profile.get("setting", "")

    front_art = _generate(ctx, ImageStage.COVER_FRONT, build_front_cover_prompt(
        title=title, characters=characters, setting=setting, style=style,
    ))
    back_art = _generate(ctx, ImageStage.COVER_BACK, build_back_cover_prompt(
        title=title, setting=setting, style=style,
    ))
    front = _print_ready(ctx, "front", front_art)
    back = _print_ready(ctx, "back", back_art)

    cfg = text_config_for(ctx)
    front_png = _with_band(ctx, "front", front.image_bytes, title, "t", cfg.scaled(TITLE_SCALE))
    back_png = _with_band(ctx, "back", back.image_bytes, blurb, "b", cfg) if blurb else back.image_bytes
    front_path = write_bytes_atomic(ctx.path("covers", "front.png"), front_png)
    back_path = write_bytes_atomic(ctx.path("covers", "back.png"), back_png)

    pages = book_page_count(len(story.get("pages", [])), bool(ctx.request.dedication))
    spread = compose_cover_spread(front_png, back_png, pages, spine_color=front.edge_color)
    if not spread.ok:
        raise FatalStageError(f"cover spread failed: {spread.error}")
    spread_path = write_bytes_atomic(ctx.path("covers", "spread.png"), spread.value)

    export = export_to_pdf(
        [spread.value],
        ctx.path("cover-spread.pdf"),
        ctx.settings.icc_profile_path or None,
        pad_to_even=False,
        title=f"{title} (cover)",
    )
    if not export.ok:
        raise StageError(f"cover PDF export failed: {export.error}")

    dims = spread.meta
    log.info(f"{ctx.log_prefix()} spread {dims['total_width']}x{dims['total_height']} spine {dims['spine_width']}px for {pages} pages")
    return {
        "front": os.path.relpath(front_path, ctx.workdir),
        "back": os.path.relpath(back_path, ctx.workdir),
        "spread": os.path.relpath(spread_path, ctx.workdir),
        "pdf": os.path.relpath(export.value.file_path, ctx.workdir),
        "spine_width": dims["spine_width"],
        "interior_pages": pages,
    }
