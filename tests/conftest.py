# tests/conftest.py
import base64
import dataclasses
import io
import os
import tempfile
from types import SimpleNamespace

# keep config side effects (output dir, provider choice) out of the source tree and off the network
os.environ.setdefault("OUTPUT_DIR", tempfile.mkdtemp(prefix="bookpress-tests-"))
os.environ.setdefault("QUEUE_BACKEND", "local")

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from bookpress.config import config
from bookpress.lib.jobs import JobStore
from bookpress.lib.providers.mock import MockImageProvider, MockTextProvider
from bookpress.lib.providers.registry import ImageProviderRegistry, ProviderConfig, TextProviderRegistry
from bookpress.main import app
from bookpress.pipeline.queue import LocalQueue
from bookpress.pipeline.wiring import build_pipeline


# -------- Utilities --------
def _png(size=(64, 64), color=(10, 120, 200)) -> bytes:
    im = Image.new("RGB", size, color)
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    """Factory for small solid-colour PNGs: png_bytes((w, h), (r, g, b))."""
    return _png


@pytest.fixture
def story_payload():
    return {
        "title": "Maya and the Moon Kite",
        "child": {"name": "Maya", "age": 5},
        "brief": "Maya loves kites and her grandpa. Bedtime story, gentle.",
        "reading_age": "3-5",
        "interests": ["kites", "stars"],
        "page_count": 2,
        "dedication": "For Maya, who flies highest.",
    }


# -------- Pipeline wiring --------
@pytest.fixture
def settings(tmp_path):
    return dataclasses.replace(
        config,
        asset_root=tmp_path / "assets",
        candidates_per_page=2,
        icc_profile_path="",
        convert_cmyk=False,
        upload_artifacts=False,
        print_api_url="",
        print_api_key="",
        partner_webhook_url="",
        partner_webhook_secret="",
        stage_max_attempts=3,
        print_track_max_polls=3,
    )


@pytest.fixture
def text_registry():
    reg = TextProviderRegistry(ProviderConfig(primary="mock", models={"default": "mock-text"}))
    reg.register("mock", MockTextProvider())
    return reg


@pytest.fixture
def image_registry():
    reg = ImageProviderRegistry(ProviderConfig(primary="mock", models={"default": "mock-image"}))
    reg.register("mock", MockImageProvider(default_size=64))
    return reg


@pytest.fixture
def local_queue():
    return LocalQueue(honor_delays=False)


@pytest.fixture
def pipeline(tmp_path, settings, local_queue, text_registry, image_registry):
    return build_pipeline(
        settings,
        store=JobStore(str(tmp_path / "jobs")),
        queue=local_queue,
        text=text_registry,
        images=image_registry,
    )


@pytest.fixture
def stage_ctx(tmp_path, settings, text_registry, image_registry, story_payload):
    """
    Build a StageContext for calling one stage handler directly:
    stage_ctx(stage, outputs={StageName: {...}}, request={...overrides}, **registries/settings)
    """
    from bookpress.pipeline.runner import StageContext
    from bookpress.pipeline.stages import StageJob, StageName
    from bookpress.schemas import StoryRequest

    def _make(stage, outputs=None, request=None, job_data=None, text=None, images=None, cfg=None):
        stage = StageName(stage)
        workdir = tmp_path / "work"
        workdir.mkdir(exist_ok=True)
        manifest = {"stages": {StageName(k).value: {"status": "done", "output": v} for k, v in (outputs or {}).items()}}
        return StageContext(
            story_id="story-1",
            stage=stage,
            job=StageJob(story_id="story-1", stage=stage, data=job_data or {}),
            workdir=str(workdir),
            request=StoryRequest(**{**story_payload, **(request or {})}),
            manifest=manifest,
            text=text or text_registry,
            images=images or image_registry,
            settings=cfg or settings,
        )
    return _make


# -------- Test client --------
@pytest.fixture
def client(pipeline):
    app.state.pipeline = pipeline
    app.state.start_workers = False
    with TestClient(app) as c:
        yield c
    app.state.pipeline = None


# -------- Mocks for OpenAI --------
class _MockImageData:
    def __init__(self, b64_json):
        self.b64_json = b64_json
        self.url = None
        self.revised_prompt = None

class _MockImagesResponse:
    def __init__(self, b64_json):
        self.data = [_MockImageData(b64_json)]

class _MockMessage:
    def __init__(self, content: str):
        self.content = content

class _MockChoice:
    def __init__(self, content: str):
        self.message = _MockMessage(content)

class _MockChatResponse:
    def __init__(self, content: str):
        self.choices = [_MockChoice(content)]


@pytest.fixture(autouse=True)
def mock_openai(monkeypatch):
    """
    Auto-mock the OpenAI client everywhere so tests don't hit the network.
    Calls are recorded on the fixture value for assertions.
    """
    from bookpress.lib import openai_client

    calls = {"images": [], "chat": []}

    def _fake_images_generate(**kwargs):
        calls["images"].append(kwargs)
        return _MockImagesResponse(base64.b64encode(_png((32, 32), (200, 80, 40))).decode("ascii"))

    def _fake_chat_create(**kwargs):
        calls["chat"].append(kwargs)
        if kwargs.get("response_format", {}).get("type") == "json_object":
            return _MockChatResponse('{"ok": true}')
        return _MockChatResponse("Image 1: 4/10\nImage 2: 9/10")

    fake = SimpleNamespace(
        images=SimpleNamespace(generate=_fake_images_generate),
        chat=SimpleNamespace(completions=SimpleNamespace(create=_fake_chat_create)),
    )
    monkeypatch.setattr(openai_client, "_client", fake)
    yield calls
