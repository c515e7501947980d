# bookpress/lib/providers/mock.py
"""
Deterministic offline providers. Used when no API keys are configured and
throughout the test suite.
"""
from __future__ import annotations

import base64
import hashlib
import io
import json
import re
from typing import Dict

from PIL import Image, ImageDraw

from bookpress.lib.providers.base import (
    AnalyzeRequest,
    AnalyzeResponse,
    Capability,
    ImageProvider,
    ImageRequest,
    ImageResponse,
    ImageStage,
    TextProvider,
    TextRequest,
    TextResponse,
    TextStage,
)

_PAGES_RE = re.compile(r"exactly (\d+) pages", re.IGNORECASE)

_SAMPLE_TEXT: Dict[TextStage, str] = {
    TextStage.IMAGE_ANALYSIS_CHILD: "A cheerful child with short curly brown hair, bright eyes and a wide grin, wearing a yellow raincoat.",
    TextStage.IMAGE_ANALYSIS_SUPPORT: "A friendly adult with glasses and a striped scarf, warm and protective.",
    TextStage.IMAGE_ANALYSIS_LOCATION: "A small green garden with a wooden fence, a red swing and tall sunflowers.",
    TextStage.STORY_OUTLINE: "Beginning: a curious discovery. Middle: a gentle challenge. End: a warm homecoming.",
    TextStage.STORY_DRAFT: "Draft story text.",
    TextStage.STORY_CRITIQUE: "Tighten the middle, keep sentences short, end on a cosy note.",
    TextStage.STORY_REVISION: "Revised story text.",
}

_SAMPLE_PROFILE = {
    "tone": "warm and playful",
    "setting": "a sunny garden at the edge of town",
    "themes": ["curiosity", "friendship"],
    "style": "soft watercolour picture-book illustration",
}


def _page_count(prompt: str, default: int = 4) -> int:
    m = _PAGES_RE.search(prompt)
    return int(m.group(1)) if m else default


class MockTextProvider(TextProvider):
    name = "mock"

    def call(self, request: TextRequest) -> TextResponse:
        stage = request.stage
        if stage == TextStage.STORY_PROFILE:
            output = json.dumps(_SAMPLE_PROFILE)
        elif stage == TextStage.STORY_POLISH:
            n = _page_count(request.prompt)
            output = "\n\n".join(
                f"Page {i} of the adventure: the hero takes one more brave little step." for i in range(1, n + 1)
            )
        elif stage == TextStage.SCENE_BREAKDOWN:
            n = _page_count(request.prompt)
            output = json.dumps({"scenes": [
                {"page": i, "setting": "a sunny garden", "characters": ["the hero"], "action": f"moment {i}"}
                for i in range(1, n + 1)
            ]})
        else:
            output = _SAMPLE_TEXT.get(stage, "ok")
        return TextResponse(output=output, provider=self.name, model=request.model or "mock-text")


def _colour_for(seed: str):
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    # keep away from near-white so edge detection has something to find
    return tuple(40 + b % 160 for b in digest[:3])


class MockImageProvider(ImageProvider):
    name = "mock"
    capabilities = frozenset({Capability.GENERATE, Capability.ANALYZE})

    def __init__(self, default_size: int = 512):
        self.default_size = default_size

    def generate_image(self, request: ImageRequest) -> ImageResponse:
        w = request.width or self.default_size
        h = request.height or self.default_size
        img = Image.new("RGB", (w, h), _colour_for(request.prompt))
        draw = ImageDraw.Draw(img)
        inset = max(2, min(w, h) // 6)
        draw.ellipse((inset, inset, w - inset, h - inset), fill=_colour_for(request.prompt[::-1]))
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return ImageResponse(
            image_base64=base64.b64encode(buf.getvalue()).decode("ascii"),
            provider=self.name,
            model=request.model or "mock-image",
            revised_prompt=request.prompt,
            mime_type="image/png",
        )

    def analyze_images(self, request: AnalyzeRequest) -> AnalyzeResponse:
        if request.stage == ImageStage.VISION_SCORE:
            lines = []
            for i, _ in enumerate(request.image_urls, start=1):
                lines += [f"Image {i}: {6 + (i % 4)}/10", "Strengths: clear focal point.", "Concerns: none.", ""]
            output = "\n".join(lines).strip()
        elif request.stage == ImageStage.OVERLAY_POSITION:
            output = "bottom\nThe lower third is open sky with even colour."
        else:
            output = "A bright, friendly picture with a clear subject in the centre."
        return AnalyzeResponse(output=output, provider=self.name, model=request.model or "mock-vision")
