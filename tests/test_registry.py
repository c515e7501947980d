# tests/test_registry.py
import pytest

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
from bookpress.lib.providers.errors import CapabilityError, ProviderCallError, ProviderConfigurationError
from bookpress.lib.providers.registry import ImageProviderRegistry, ProviderConfig, TextProviderRegistry
from bookpress.lib.retry import RetryPolicy

FAST = RetryPolicy(max_attempts=2, initial_delay=0, max_delay=0, jitter=False)


class _Unavailable(Exception):
    status_code = 503


class _BadRequest(Exception):
    status_code = 400


class FakeText(TextProvider):
    retry_policy = FAST

    def __init__(self, name, fail_with=None):
        self.name = name
        self.fail_with = fail_with
        self.calls = []

    def call(self, request: TextRequest) -> TextResponse:
        self.calls.append(request)
        if self.fail_with is not None:
            raise self.fail_with("provider down")
        return TextResponse(output=f"{self.name} says hi", provider=self.name, model=request.model)


class GenerateOnly(ImageProvider):
    name = "painter"
    capabilities = frozenset({Capability.GENERATE})
    generate_policy = FAST

    def generate_image(self, request: ImageRequest) -> ImageResponse:
        return ImageResponse(image_base64="aGk=", provider=self.name, model=request.model)


class Seer(ImageProvider):
    name = "seer"
    capabilities = frozenset({Capability.ANALYZE})
    analyze_policy = FAST

    def analyze_images(self, request: AnalyzeRequest) -> AnalyzeResponse:
        return AnalyzeResponse(output="bottom", provider=self.name, model=request.model)


def _text_registry(cfg, **providers):
    reg = TextProviderRegistry(cfg)
    for name, p in providers.items():
        reg.register(name, p)
    return reg


def test_retryable_primary_failure_falls_back_with_override_model():
    cfg = ProviderConfig.from_dict({
        "primary": "openai",
        "fallback": "gemini",
        "models": {"default": "base-model", "story_draft": "draft-model"},
        "overrides": {"story_draft": {"model": "override-model"}},
    })
    primary = FakeText("openai", fail_with=_Unavailable)
    fallback = FakeText("gemini")
    reg = _text_registry(cfg, openai=primary, gemini=fallback)

    resp = reg.call(TextRequest(stage=TextStage.STORY_DRAFT, prompt="write"))

    assert resp.provider == "gemini"
    assert resp.model == "override-model"
    assert len(primary.calls) == FAST.max_attempts
    assert fallback.calls[0].model == "override-model"


def test_fatal_primary_error_does_not_fall_back():
    cfg = ProviderConfig(primary="openai", fallback="gemini", models={"default": "m"})
    fallback = FakeText("gemini")
    reg = _text_registry(cfg, openai=FakeText("openai", fail_with=_BadRequest), gemini=fallback)

    with pytest.raises(_BadRequest):
        reg.call(TextRequest(stage=TextStage.STORY_PROFILE, prompt="x"))
    assert fallback.calls == []


def test_all_candidates_failing_raises_aggregate_error():
    cfg = ProviderConfig(primary="a", fallback="b", models={"default": "m"})
    reg = _text_registry(cfg, a=FakeText("a", fail_with=_Unavailable), b=FakeText("b", fail_with=_Unavailable))

    with pytest.raises(ProviderCallError) as ei:
        reg.call(TextRequest(stage=TextStage.STORY_POLISH, prompt="x"))
    assert [name for name, _ in ei.value.failures] == ["a", "b"]
    assert isinstance(ei.value.last_error, _Unavailable)
    assert "story_polish" in str(ei.value)


def test_model_resolution_order():
    cfg = ProviderConfig.from_dict({
        "models": {
            "default": "global",
            "openai:default": "openai-default",
            "scene_breakdown": "per-stage",
            "openai:scene_breakdown": "openai-per-stage",
        },
        "overrides": {"story_outline": {"model": "override"}},
    })
    assert cfg.resolve_model("story_outline", "openai", requested="explicit") == "explicit"
    assert cfg.resolve_model("story_outline", "openai") == "override"
    assert cfg.resolve_model("scene_breakdown", "openai") == "openai-per-stage"
    assert cfg.resolve_model("scene_breakdown", "gemini") == "per-stage"
    assert cfg.resolve_model("story_draft", "openai") == "openai-default"
    assert cfg.resolve_model("story_draft", "gemini") == "global"


def test_missing_model_fails_before_dispatch():
    provider = FakeText("a")
    reg = _text_registry(ProviderConfig(primary="a"), a=provider)
    with pytest.raises(ProviderConfigurationError):
        reg.call(TextRequest(stage=TextStage.STORY_DRAFT, prompt="x"))
    assert provider.calls == []


def test_override_swaps_primary_for_one_stage():
    cfg = ProviderConfig.from_dict({
        "primary": "a",
        "models": {"default": "m"},
        "overrides": {"scene_breakdown": {"primary": "b"}},
    })
    reg = _text_registry(cfg, a=FakeText("a"), b=FakeText("b"))
    assert reg.call(TextRequest(stage=TextStage.SCENE_BREAKDOWN, prompt="x")).provider == "b"
    assert reg.call(TextRequest(stage=TextStage.STORY_DRAFT, prompt="x")).provider == "a"


def test_duplicate_fallback_is_dropped():
    cfg = ProviderConfig(primary="a", fallback="a")
    assert cfg.candidates("story_draft") == ["a"]


def test_configuration_errors_are_distinct():
    with pytest.raises(ProviderConfigurationError, match="No text providers"):
        TextProviderRegistry(ProviderConfig()).call(TextRequest(stage=TextStage.STORY_DRAFT, prompt="x"))

    reg = TextProviderRegistry(ProviderConfig(primary="ghost", models={"default": "m"}))
    with pytest.raises(ProviderConfigurationError, match="not registered"):
        reg.call(TextRequest(stage=TextStage.STORY_DRAFT, prompt="x"))


def test_capability_is_checked_before_dispatch():
    reg = ImageProviderRegistry(ProviderConfig(primary="painter", models={"default": "img"}))
    reg.register("painter", GenerateOnly())

    assert reg.generate(ImageRequest(stage=ImageStage.COVER_FRONT, prompt="p")).provider == "painter"
    with pytest.raises(CapabilityError):
        reg.analyze(AnalyzeRequest(stage=ImageStage.VISION_SCORE, image_urls=["data:image/png;base64,aGk="], prompt="rate"))


def test_capability_filter_skips_to_capable_fallback():
    reg = ImageProviderRegistry(ProviderConfig(primary="painter", fallback="seer", models={"default": "v"}))
    reg.register("painter", GenerateOnly())
    reg.register("seer", Seer())

    resp = reg.analyze(AnalyzeRequest(stage=ImageStage.OVERLAY_POSITION, image_urls=["x"], prompt="where"))
    assert resp.provider == "seer"
    assert resp.model == "v"


def test_register_rejects_wrong_provider_type():
    reg = ImageProviderRegistry(ProviderConfig())
    with pytest.raises(TypeError):
        reg.register("text", FakeText("text"))
