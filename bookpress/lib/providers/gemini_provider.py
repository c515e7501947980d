# bookpress/lib/providers/gemini_provider.py
from __future__ import annotations

import base64
from typing import List

from google.genai import types

from bookpress.lib import gemini_client
from bookpress.lib.imaging import load_image_bytes, sniff_mime
from bookpress.lib.providers.base import (
    AnalyzeRequest,
    AnalyzeResponse,
    Capability,
    ImageProvider,
    ImageRequest,
    ImageResponse,
    TextProvider,
    TextRequest,
    TextResponse,
)
from bookpress.logger import get_logger

log = get_logger(__name__)

ASPECTS = {"square": "1:1", "landscape": "16:9", "portrait": "9:16"}


class _UsesGeminiClient:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or gemini_client.get_client()


class GeminiTextProvider(_UsesGeminiClient, TextProvider):
    name = "gemini"

    def call(self, request: TextRequest) -> TextResponse:
        cfg = types.GenerateContentConfig(
            system_instruction=request.system,
            temperature=request.temperature,
            response_mime_type="application/json" if request.input_format == "json" else None,
        )
        contents: list = [request.prompt]
        for url in request.image_urls:
            data = load_image_bytes(url)
            contents.insert(0, types.Part.from_bytes(data=data, mime_type=sniff_mime(data)))
        resp = self.client.models.generate_content(model=request.model, contents=contents, config=cfg)
        return TextResponse(output=(resp.text or "").strip(), provider=self.name, model=request.model)


class GeminiImageProvider(_UsesGeminiClient, ImageProvider):
    name = "gemini"
    capabilities = frozenset({Capability.GENERATE, Capability.ANALYZE})

    def generate_image(self, request: ImageRequest) -> ImageResponse:
        resp = self.client.models.generate_images(
            model=request.model,
            prompt=request.prompt,
            config=types.GenerateImagesConfig(
                number_of_images=1,
                aspect_ratio=ASPECTS[request.orientation()],
            ),
        )
        if not resp.generated_images:
            raise ValueError(f"gemini returned no image for {request.stage.value}")
        image = resp.generated_images[0].image
        return ImageResponse(
            image_base64=base64.b64encode(image.image_bytes).decode("ascii"),
            provider=self.name,
            model=request.model,
            mime_type=image.mime_type or "image/png",
        )

    def analyze_images(self, request: AnalyzeRequest) -> AnalyzeResponse:
        parts: List[types.Part] = []
        for url in request.image_urls:
            data = load_image_bytes(url)
            parts.append(types.Part.from_bytes(data=data, mime_type=sniff_mime(data)))
        resp = self.client.models.generate_content(model=request.model, contents=[*parts, request.prompt])
        return AnalyzeResponse(output=(resp.text or "").strip(), provider=self.name, model=request.model)
