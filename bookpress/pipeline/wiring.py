# bookpress/pipeline/wiring.py
from __future__ import annotations

from typing import Dict, Optional

from fastapi import Request

from bookpress.config import Config
from bookpress.features.brief.service import extract_brief
from bookpress.features.covers.service import compose_covers
from bookpress.features.illustrations.service import generate_batch, prepress
from bookpress.features.layout.service import compose_pdf
from bookpress.features.printing.service import submit, track
from bookpress.features.story.service import reason_story, scene_breakdown
from bookpress.features.uploads.service import analyze_uploads
from bookpress.lib.jobs import JobStore
from bookpress.lib.providers.factory import build_image_registry, build_text_registry
from bookpress.lib.providers.registry import ImageProviderRegistry, TextProviderRegistry
from bookpress.pipeline.queue import CloudTasksQueue, LocalQueue
from bookpress.pipeline.runner import StageHandler, StagePipeline
from bookpress.pipeline.stages import StageName

STAGE_HANDLERS: Dict[StageName, StageHandler] = {
    StageName.BRIEF_EXTRACT: extract_brief,
    StageName.STORY_REASON: reason_story,
    StageName.IMAGES_ANALYZE_UPLOADS: analyze_uploads,
    StageName.STORY_SCENE_BREAKDOWN: scene_breakdown,
    StageName.IMAGES_GENERATE_BATCH: generate_batch,
    StageName.IMAGES_PREPRESS: prepress,
    StageName.COVERS_COMPOSE: compose_covers,
    StageName.LAYOUT_COMPOSE_PDF: compose_pdf,
    StageName.PRINT_SUBMIT: submit,
    StageName.PRINT_TRACK: track,
}


def build_queue(cfg: Config):
    if cfg.queue_backend == "cloud_tasks":
        return CloudTasksQueue(cfg.public_base_url)
    return LocalQueue()


def build_pipeline(
    cfg: Config,
    *,
    store: Optional[JobStore] = None,
    queue=None,
    text: Optional[TextProviderRegistry] = None,
    images: Optional[ImageProviderRegistry] = None,
) -> StagePipeline:
    """Assemble the pipeline from config; any piece can be passed in (tests swap in fakes)."""
    return StagePipeline(
        store=store or JobStore(),
        queue=queue if queue is not None else build_queue(cfg),
        handlers=STAGE_HANDLERS,
        text=text or build_text_registry(cfg),
        images=images or build_image_registry(cfg),
        settings=cfg,
    )


def get_pipeline(request: Request) -> StagePipeline:
    return request.app.state.pipeline
