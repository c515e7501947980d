# bookpress/lib/providers/factory.py
from __future__ import annotations

from typing import Any, Dict

from bookpress.config import Config
from bookpress.lib.providers.base import ImageStage, TextStage
from bookpress.lib.providers.gemini_provider import GeminiImageProvider, GeminiTextProvider
from bookpress.lib.providers.mock import MockImageProvider, MockTextProvider
from bookpress.lib.providers.openai_provider import OpenAIImageProvider, OpenAITextProvider
from bookpress.lib.providers.registry import (
    ImageProviderRegistry,
    ProviderConfig,
    TextProviderRegistry,
)

_TEXT_STAGES = {s.value for s in TextStage}
_IMAGE_STAGES = {s.value for s in ImageStage}


def _overrides_for(cfg: Config, stages) -> Dict[str, Any]:
    return {stage: ov for stage, ov in cfg.provider_overrides.items() if stage in stages}


def text_provider_config(cfg: Config) -> ProviderConfig:
    return ProviderConfig.from_dict({
        "primary": cfg.text_primary,
        "fallback": cfg.text_fallback,
        "models": {
            "openai:default": cfg.openai_text_model,
            "gemini:default": cfg.gemini_text_model,
            "mock:default": "mock-text",
        },
        "overrides": _overrides_for(cfg, _TEXT_STAGES),
    })


def image_provider_config(cfg: Config) -> ProviderConfig:
    vision = {
        f"openai:{ImageStage.VISION_SCORE.value}": cfg.openai_vision_model,
        f"openai:{ImageStage.OVERLAY_POSITION.value}": cfg.openai_vision_model,
        f"gemini:{ImageStage.VISION_SCORE.value}": cfg.gemini_text_model,
        f"gemini:{ImageStage.OVERLAY_POSITION.value}": cfg.gemini_text_model,
    }
    return ProviderConfig.from_dict({
        "primary": cfg.image_primary,
        "fallback": cfg.image_fallback,
        "models": {
            "openai:default": cfg.openai_image_model,
            "gemini:default": cfg.gemini_image_model,
            "mock:default": "mock-image",
            **vision,
        },
        "overrides": _overrides_for(cfg, _IMAGE_STAGES),
    })


def build_text_registry(cfg: Config) -> TextProviderRegistry:
    registry = TextProviderRegistry(text_provider_config(cfg))
    registry.register("openai", OpenAITextProvider())
    registry.register("gemini", GeminiTextProvider())
    registry.register("mock", MockTextProvider())
    return registry


def build_image_registry(cfg: Config) -> ImageProviderRegistry:
    registry = ImageProviderRegistry(image_provider_config(cfg))
    registry.register("openai", OpenAIImageProvider())
    registry.register("gemini", GeminiImageProvider())
    registry.register("mock", MockImageProvider())
    return registry
