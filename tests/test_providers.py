# tests/test_providers.py
import base64
import dataclasses
import io
import json
from types import SimpleNamespace

import pytest
from PIL import Image

from bookpress.config import config
from bookpress.lib.providers.base import (
    AnalyzeRequest,
    ImageRequest,
    ImageResponse,
    ImageStage,
    TextRequest,
    TextStage,
)
from bookpress.lib.providers.factory import build_image_registry, build_text_registry, image_provider_config, text_provider_config
from bookpress.lib.providers.gemini_provider import GeminiImageProvider, GeminiTextProvider
from bookpress.lib.providers.mock import MockImageProvider, MockTextProvider
from bookpress.lib.providers.openai_provider import OpenAIImageProvider, OpenAITextProvider
from bookpress.lib.providers.registry import ImageProviderRegistry, ProviderConfig, TextProviderRegistry


def _png_b64(size=(8, 8)):
    buf = io.BytesIO()
    Image.new("RGB", size, (1, 2, 3)).save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


# ---------- OpenAI (client patched in conftest) ----------

def test_openai_text_json_mode(mock_openai):
    reg = TextProviderRegistry(ProviderConfig(primary="openai", models={"default": "gpt-test"}))
    reg.register("openai", OpenAITextProvider())

    resp = reg.call(TextRequest(stage=TextStage.STORY_PROFILE, prompt="profile please", system="be brief", input_format="json"))

    assert json.loads(resp.output) == {"ok": True}
    assert (resp.provider, resp.model) == ("openai", "gpt-test")
    sent = mock_openai["chat"][0]
    assert sent["model"] == "gpt-test"
    assert sent["response_format"] == {"type": "json_object"}
    assert sent["messages"][0] == {"role": "system", "content": "be brief"}


def test_openai_text_attaches_images(mock_openai):
    OpenAITextProvider().call(TextRequest(
        stage=TextStage.IMAGE_ANALYSIS_CHILD, prompt="describe", image_urls=["data:image/png;base64,aGk="], model="gpt-test",
    ))
    content = mock_openai["chat"][0]["messages"][-1]["content"]
    assert content[0] == {"type": "text", "text": "describe"}
    assert content[1]["image_url"]["url"] == "data:image/png;base64,aGk="
    assert "response_format" not in mock_openai["chat"][0]


def test_openai_image_generation(mock_openai):
    resp = OpenAIImageProvider().generate_image(ImageRequest(
        stage=ImageStage.COVER_BACK, prompt="a garden", width=1792, height=1024, model="dall-e-3",
    ))
    with Image.open(io.BytesIO(resp.image_bytes())) as im:
        assert im.format == "PNG"
    sent = mock_openai["images"][0]
    assert sent["size"] == "1792x1024"
    assert sent["response_format"] == "b64_json"


def test_openai_vision_analysis(mock_openai):
    resp = OpenAIImageProvider().analyze_images(AnalyzeRequest(
        stage=ImageStage.VISION_SCORE, image_urls=["data:image/png;base64,aGk=", "data:image/png;base64,aGk="], prompt="rate", model="gpt-4o",
    ))
    assert "Image 2: 9/10" in resp.output
    assert len(mock_openai["chat"][0]["messages"][0]["content"]) == 3


def test_openai_client_is_built_on_first_use(monkeypatch):
    from bookpress.lib import openai_client

    built = []

    class _Recorder:
        def __init__(self, **kwargs):
            built.append(kwargs)

    monkeypatch.setattr(openai_client, "_client", None)
    monkeypatch.setattr(openai_client, "OpenAI", _Recorder)
    # registering the backend must not need credentials
    OpenAITextProvider()
    assert built == []

    first = openai_client.get_client()

    assert openai_client.get_client() is first
    assert len(built) == 1
    assert built[0]["max_retries"] == 0


# ---------- Gemini (explicit fake client) ----------

class _FakeModels:
    def __init__(self, text="", images=None):
        self.text = text
        self.images = images
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(text=self.text)

    def generate_images(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(generated_images=self.images)


def test_gemini_text_with_json_and_images():
    models = _FakeModels(text='  {"tone": "calm"} ')
    provider = GeminiTextProvider(client=SimpleNamespace(models=models))

    resp = provider.call(TextRequest(
        stage=TextStage.IMAGE_ANALYSIS_LOCATION,
        prompt="describe",
        input_format="json",
        image_urls=[f"data:image/png;base64,{_png_b64()}"],
        model="gemini-test",
    ))

    assert resp.output == '{"tone": "calm"}'
    sent = models.calls[0]
    assert sent["config"].response_mime_type == "application/json"
    # image part first, prompt last
    assert sent["contents"][-1] == "describe"
    assert len(sent["contents"]) == 2


def test_gemini_image_generation_and_empty_result():
    raw = base64.b64decode(_png_b64())
    image = SimpleNamespace(image_bytes=raw, mime_type="image/png")
    models = _FakeModels(images=[SimpleNamespace(image=image)])
    provider = GeminiImageProvider(client=SimpleNamespace(models=models))

    resp = provider.generate_image(ImageRequest(stage=ImageStage.INTERIOR_PAGE, prompt="p", aspect_ratio="portrait", model="imagen"))

    assert resp.image_bytes() == raw
    assert models.calls[0]["config"].aspect_ratio == "9:16"

    empty = GeminiImageProvider(client=SimpleNamespace(models=_FakeModels(images=[])))
    with pytest.raises(ValueError, match="no image"):
        empty.generate_image(ImageRequest(stage=ImageStage.INTERIOR_PAGE, prompt="p", model="imagen"))


# ---------- mock + wiring ----------

def test_mock_text_follows_requested_page_count():
    mock = MockTextProvider()
    polished = mock.call(TextRequest(stage=TextStage.STORY_POLISH, prompt="Return exactly 5 pages.")).output
    assert len(polished.split("\n\n")) == 5
    scenes = json.loads(mock.call(TextRequest(stage=TextStage.SCENE_BREAKDOWN, prompt="There are exactly 3 pages.")).output)
    assert [s["page"] for s in scenes["scenes"]] == [1, 2, 3]


def test_mock_image_is_deterministic_and_sized():
    mock = MockImageProvider(default_size=32)
    a = mock.generate_image(ImageRequest(stage=ImageStage.COVER_FRONT, prompt="kite"))
    b = mock.generate_image(ImageRequest(stage=ImageStage.COVER_FRONT, prompt="kite"))
    assert a.image_base64 == b.image_base64
    with Image.open(io.BytesIO(a.image_bytes())) as im:
        assert im.size == (32, 32)


def test_image_response_needs_a_payload():
    with pytest.raises(ValueError):
        ImageResponse(provider="x", model="y")


def test_factory_splits_overrides_by_registry():
    cfg = dataclasses.replace(
        config,
        text_primary="mock",
        text_fallback="",
        image_primary="mock",
        image_fallback="openai",
        provider_overrides={"story_draft": {"model": "draft-x"}, "cover_front": {"primary": "gemini"}},
    )
    text_cfg = text_provider_config(cfg)
    image_cfg = image_provider_config(cfg)

    assert set(text_cfg.overrides) == {"story_draft"}
    assert set(image_cfg.overrides) == {"cover_front"}
    assert image_cfg.candidates("cover_front") == ["gemini", "openai"]
    assert image_cfg.resolve_model("vision_score", "openai") == cfg.openai_vision_model

    text = build_text_registry(cfg)
    images = build_image_registry(cfg)
    assert text.names() == ["gemini", "mock", "openai"]
    assert text.call(TextRequest(stage=TextStage.STORY_DRAFT, prompt="x")).model == "draft-x"
    assert images.generate(ImageRequest(stage=ImageStage.INTERIOR_PAGE, prompt="x", width=16, height=16)).provider == "mock"
