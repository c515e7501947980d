# bookpress/lib/providers/base.py
from __future__ import annotations

import base64
from enum import Enum
from typing import FrozenSet, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from bookpress.lib.retry import (
    IMAGE_GENERATION_POLICY,
    TEXT_GENERATION_POLICY,
    VISION_POLICY,
    RetryPolicy,
)


class TextStage(str, Enum):
    IMAGE_ANALYSIS_CHILD = "image_analysis_child"
    IMAGE_ANALYSIS_SUPPORT = "image_analysis_support"
    IMAGE_ANALYSIS_LOCATION = "image_analysis_location"
    STORY_PROFILE = "story_profile"
    STORY_OUTLINE = "story_outline"
    STORY_DRAFT = "story_draft"
    STORY_CRITIQUE = "story_critique"
    STORY_REVISION = "story_revision"
    STORY_POLISH = "story_polish"
    SCENE_BREAKDOWN = "scene_breakdown"


class ImageStage(str, Enum):
    COVER_FRONT = "cover_front"
    COVER_BACK = "cover_back"
    INTERIOR_PAGE = "interior_page"
    VISION_SCORE = "vision_score"
    OVERLAY_POSITION = "overlay_position"


class Capability(str, Enum):
    GENERATE = "generate"
    ANALYZE = "analyze"


# ---------- wire shapes ----------

class TextRequest(BaseModel):
    stage: TextStage
    prompt: str
    system: Optional[str] = None
    input_format: Literal["text", "json"] = "text"
    # optional reference images (data URLs or https) for vision-capable text models
    image_urls: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    temperature: float = 0.7


class TextResponse(BaseModel):
    output: str
    provider: str
    model: str


class ImageRequest(BaseModel):
    stage: ImageStage
    prompt: str
    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    aspect_ratio: Optional[Literal["square", "landscape", "portrait"]] = None
    model: Optional[str] = None

    def orientation(self) -> str:
        if self.aspect_ratio:
            return self.aspect_ratio
        if self.width and self.height:
            if self.width > self.height:
                return "landscape"
            if self.height > self.width:
                return "portrait"
        return "square"


class ImageResponse(BaseModel):
    image_url: Optional[str] = None
    image_base64: Optional[str] = None
    provider: str
    model: str
    revised_prompt: Optional[str] = None
    mime_type: Optional[str] = "image/png"

    @model_validator(mode="after")
    def _has_payload(self):
        if not (self.image_url or self.image_base64):
            raise ValueError("image response carries neither image_url nor image_base64")
        return self

    def image_bytes(self) -> bytes:
        if self.image_base64:
            return base64.b64decode(self.image_base64)
        from bookpress.lib.imaging import load_image_bytes
        return load_image_bytes(self.image_url)


class AnalyzeRequest(BaseModel):
    stage: ImageStage
    image_urls: List[str] = Field(min_length=1)
    prompt: str
    model: Optional[str] = None


class AnalyzeResponse(BaseModel):
    output: str
    provider: str
    model: str


# ---------- provider interfaces ----------

class TextProvider:
    """Anything that can answer a text stage."""
    name: str = "text"
    retry_policy: RetryPolicy = TEXT_GENERATION_POLICY

    def call(self, request: TextRequest) -> TextResponse:
        raise NotImplementedError


class ImageProvider:
    """
    Image generation and/or vision analysis. Subclasses advertise what they
    do through `capabilities`; the registry never calls a method whose
    capability is not listed.
    """
    name: str = "image"
    capabilities: FrozenSet[Capability] = frozenset({Capability.GENERATE})
    generate_policy: RetryPolicy = IMAGE_GENERATION_POLICY
    analyze_policy: RetryPolicy = VISION_POLICY

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def generate_image(self, request: ImageRequest) -> ImageResponse:
        raise NotImplementedError

    def analyze_images(self, request: AnalyzeRequest) -> AnalyzeResponse:
        raise NotImplementedError
