# bookpress/pipeline/stages.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bookpress.lib.jobs import utcnow


class StageName(str, Enum):
    BRIEF_EXTRACT = "brief.extract"
    STORY_REASON = "story.reason"
    IMAGES_ANALYZE_UPLOADS = "images.analyze_uploads"
    STORY_SCENE_BREAKDOWN = "story.scene_breakdown"
    IMAGES_GENERATE_BATCH = "images.generate_batch"
    IMAGES_PREPRESS = "images.prepress"
    COVERS_COMPOSE = "covers.compose"
    LAYOUT_COMPOSE_PDF = "layout.compose_pdf"
    PRINT_SUBMIT = "print.submit"
    PRINT_TRACK = "print.track"


STAGE_ORDER: List[StageName] = list(StageName)
FIRST_STAGE = STAGE_ORDER[0]


def next_stage(stage: StageName) -> Optional[StageName]:
    idx = STAGE_ORDER.index(StageName(stage))
    return STAGE_ORDER[idx + 1] if idx + 1 < len(STAGE_ORDER) else None


class StageJob(BaseModel):
    """One queue delivery: run `stage` for `story_id`."""
    story_id: str
    stage: StageName
    attempt: int = Field(default=1, ge=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    enqueued_at: str = Field(default_factory=utcnow)
