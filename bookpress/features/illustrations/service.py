# bookpress/features/illustrations/service.py
import concurrent.futures
import os
import re
from typing import Dict, List, Optional, Tuple

from bookpress.lib.bleed import (
    PRINT_SIZE_PX,
    BleedOptions,
    apply_bleed_processing,
    calculate_bleed_dimensions,
    upscale_to_print_dimensions,
    validate_print_dimensions,
)
from bookpress.lib.color import convert_to_cmyk_tiff, validate_icc_profile
from bookpress.lib.imaging import to_data_url, write_bytes_atomic
from bookpress.lib.providers.base import AnalyzeRequest, ImageRequest, ImageStage
from bookpress.logger import get_logger
from bookpress.pipeline.errors import FatalStageError, StageError
from bookpress.pipeline.runner import StageContext
from bookpress.pipeline.stages import StageName

from .prompt import build_interior_prompt, build_score_prompt

log = get_logger(__name__)

GENERATION_SIZE = 1024
_SCORE_RE = re.compile(r"Image\s+(\d+)\s*:\s*(\d+(?:\.\d+)?)\s*/\s*10", re.IGNORECASE)


def parse_scores(text: str, count: int) -> Dict[int, float]:
    """`Image N: S/10` lines -> {N: S}, ignoring indexes outside 1..count."""
    scores: Dict[int, float] = {}
    for m in _SCORE_RE.finditer(text or ""):
        idx = int(m.group(1))
        if 1 <= idx <= count and idx not in scores:
            scores[idx] = float(m.group(2))
    return scores


def pick_best(ctx: StageContext, page_text: str, candidates: List[bytes]) -> Tuple[int, Dict[int, float]]:
    """
    Index of the best candidate by vision score. Scoring is an annotation:
    when it fails or parses to nothing the first candidate is kept.
    """
    if len(candidates) < 2:
        return 0, {}
    try:
        resp = ctx.images.analyze(AnalyzeRequest(
            stage=ImageStage.VISION_SCORE,
            image_urls=[to_data_url(c) for c in candidates],
            prompt=build_score_prompt(page_text=page_text, count=len(candidates)),
        ))
    except Exception as e:
        log.warning(f"{ctx.log_prefix()} vision scoring unavailable, keeping first candidate: {e}")
        return 0, {}
    scores = parse_scores(resp.output, len(candidates))
    if not scores:
        log.warning(f"{ctx.log_prefix()} no scores in vision reply, keeping first candidate")
        return 0, {}
    best = max(scores, key=lambda i: (scores[i], -i))
    return best - 1, scores


def generate_batch(ctx: StageContext) -> dict:
    """images.generate_batch: N candidates per page, best one kept under interior/."""
    pages: List[str] = ctx.output(StageName.STORY_REASON).get("pages", [])
    if not pages:
        raise StageError("no story pages to illustrate")
    scenes = {s["page"]: s for s in ctx.output(StageName.STORY_SCENE_BREAKDOWN).get("scenes", [])}
    uploads = ctx.output(StageName.IMAGES_ANALYZE_UPLOADS)
    characters = uploads.get("characters", [])
    locations = uploads.get("locations", [])
    style = ctx.output(StageName.BRIEF_EXTRACT).get("profile", {}).get("style", "")
    per_page = max(1, ctx.settings.candidates_per_page)

    def _page(page_no: int, text: str) -> dict:
        prompt = build_interior_prompt(
            page_no=page_no,
            page_text=text,
            scene=scenes.get(page_no, {}),
            characters=characters,
            locations=locations,
            style=style,
        )
        candidates: List[bytes] = []
        served_by: Optional[str] = None
        for k in range(per_page):
            resp = ctx.images.generate(ImageRequest(
                stage=ImageStage.INTERIOR_PAGE,
                prompt=prompt if k == 0 else f"{prompt}\n\nVariation {k + 1}: try a different camera angle.",
                width=GENERATION_SIZE,
                height=GENERATION_SIZE,
            ))
            candidates.append(resp.image_bytes())
            served_by = f"{resp.provider}/{resp.model}"
        chosen, scores = pick_best(ctx, text, candidates)
        out = write_bytes_atomic(ctx.path("interior", f"page-{page_no}.png"), candidates[chosen])
        log.info(f"{ctx.log_prefix()} page {page_no}: candidate {chosen + 1}/{per_page} via {served_by}")
        return {
            "page": page_no,
            "image": os.path.relpath(out, ctx.workdir),
            "chosen": chosen + 1,
            "scores": {str(k): v for k, v in scores.items()},
            "served_by": served_by,
        }

    # interior pages are mandatory: the first failure fails the stage
    results: List[Optional[dict]] = [None] * len(pages)
    with concurrent.futures.ThreadPoolExecutor(max_workers=min(4, len(pages))) as ex:
        fut_map = {ex.submit(_page, i + 1, text): i for i, text in enumerate(pages)}
        for fut in concurrent.futures.as_completed(fut_map):
            i = fut_map[fut]
            try:
                results[i] = fut.result()
            except Exception as e:
                # queued pages are dropped; only those already running finish
                ex.shutdown(wait=False, cancel_futures=True)
                raise StageError(f"page {i + 1} illustration failed: {e}") from e

    return {"pages": results}


def prepress(ctx: StageContext) -> dict:
    """
    images.prepress: upscale, bleed and validate every interior page; optional
    CMYK TIFFs alongside when a press profile is configured.
    """
    interior = ctx.output(StageName.IMAGES_GENERATE_BATCH).get("pages", [])
    if not interior:
        raise StageError("no interior illustrations to prepare")
    dims = calculate_bleed_dimensions()
    trim_px = dims["trimmed_px"]

    cmyk_profile = None
    if ctx.settings.convert_cmyk:
        icc = validate_icc_profile(ctx.settings.icc_profile_path)
        if icc.ok:
            cmyk_profile = ctx.settings.icc_profile_path
        else:
            log.warning(f"{ctx.log_prefix()} CMYK conversion skipped: {icc.error}")

    options = BleedOptions(bleed_percent=ctx.request.bleed_percent)
    out_pages = []
    for entry in interior:
        page_no = entry["page"]
        with open(os.path.join(ctx.workdir, entry["image"]), "rb") as f:
            data = f.read()

        upscaled = upscale_to_print_dimensions(data, trim_px, trim_px)
        if not upscaled.ok:
            raise StageError(f"page {page_no}: {upscaled.error}")
        bled = apply_bleed_processing(upscaled.value, options)
        if not bled.ok:
            raise FatalStageError(f"page {page_no}: bleed failed: {bled.error}")
        out = bled.value

        check = validate_print_dimensions(out.width, out.height)
        if not check.valid:
            log.warning(f"{ctx.log_prefix()} page {page_no}: {check.message}")

        path = write_bytes_atomic(ctx.path("prepress", f"page-{page_no}.png"), out.image_bytes)
        record = {
            "page": page_no,
            "image": os.path.relpath(path, ctx.workdir),
            "width": out.width,
            "height": out.height,
            "edge_color": out.edge_color,
            "original": [out.original_width, out.original_height],
        }
        if cmyk_profile:
            tiff = convert_to_cmyk_tiff(out.image_bytes, cmyk_profile)
            if tiff.ok:
                tpath = write_bytes_atomic(ctx.path("prepress", "cmyk", f"page-{page_no}.tif"), tiff.value)
                record["cmyk"] = os.path.relpath(tpath, ctx.workdir)
            else:
                log.warning(f"{ctx.log_prefix()} page {page_no}: {tiff.error}")
        out_pages.append(record)

    log.info(f"{ctx.log_prefix()} {len(out_pages)} pages at {PRINT_SIZE_PX}px with {options.bleed_percent}% bleed")
    return {"pages": out_pages, "bleed_percent": options.bleed_percent}
