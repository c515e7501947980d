# bookpress/lib/providers/openai_provider.py
from __future__ import annotations

from typing import Any, Dict, List

from bookpress.lib import openai_client
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
from bookpress.lib.retry import IMAGE_GENERATION_POLICY, VISION_POLICY
from bookpress.logger import get_logger

log = get_logger(__name__)

SIZES = {
    "square": "1024x1024",
    "landscape": "1792x1024",
    "portrait": "1024x1792",
}


class _UsesOpenAIClient:
    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        # resolved per call so tests can swap bookpress.lib.openai_client._client
        return self._client or openai_client.get_client()


class OpenAITextProvider(_UsesOpenAIClient, TextProvider):
    name = "openai"

    def call(self, request: TextRequest) -> TextResponse:
        messages: List[Dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        if request.image_urls:
            content: List[Dict[str, Any]] = [{"type": "text", "text": request.prompt}]
            content += [{"type": "image_url", "image_url": {"url": u}} for u in request.image_urls]
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": request.prompt})
        kwargs: Dict[str, Any] = {}
        if request.input_format == "json":
            kwargs["response_format"] = {"type": "json_object"}
        resp = self.client.chat.completions.create(
            model=request.model,
            temperature=request.temperature,
            messages=messages,
            **kwargs,
        )
        output = (resp.choices[0].message.content or "").strip()
        return TextResponse(output=output, provider=self.name, model=request.model)


class OpenAIImageProvider(_UsesOpenAIClient, ImageProvider):
    name = "openai"
    capabilities = frozenset({Capability.GENERATE, Capability.ANALYZE})
    generate_policy = IMAGE_GENERATION_POLICY
    analyze_policy = VISION_POLICY

    def generate_image(self, request: ImageRequest) -> ImageResponse:
        kwargs: Dict[str, Any] = dict(
            model=request.model,
            prompt=request.prompt,
            size=SIZES[request.orientation()],
            n=1,
        )
        if request.model.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"
        log.debug(f"openai image {request.stage.value} model={request.model} size={kwargs['size']}")
        resp = self.client.images.generate(**kwargs)
        item = resp.data[0]
        return ImageResponse(
            image_base64=getattr(item, "b64_json", None),
            image_url=getattr(item, "url", None),
            revised_prompt=getattr(item, "revised_prompt", None),
            provider=self.name,
            model=request.model,
            mime_type="image/png",
        )

    def analyze_images(self, request: AnalyzeRequest) -> AnalyzeResponse:
        content: List[Dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        for url in request.image_urls:
            content.append({"type": "image_url", "image_url": {"url": url}})
        resp = self.client.chat.completions.create(
            model=request.model,
            temperature=0.2,
            messages=[{"role": "user", "content": content}],
        )
        output = (resp.choices[0].message.content or "").strip()
        return AnalyzeResponse(output=output, provider=self.name, model=request.model)
