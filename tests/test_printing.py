# tests/test_printing.py
import dataclasses
import hashlib
import hmac
import json
import os

import pytest
import requests

from bookpress.features.printing import service
from bookpress.features.printing.service import SIGNATURE_HEADER, sign_payload, submit, track
from bookpress.pipeline.errors import FatalStageError, NeedsReview, Reschedule
from bookpress.pipeline.stages import StageName


class _Resp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class _FakeHttp:
    """Stands in for requests.post/get; replies are popped in order per method."""

    def __init__(self, post=(), get=()):
        self.replies = {"post": list(post), "get": list(get)}
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append(("post", url, kwargs))
        return self.replies["post"].pop(0)

    def get(self, url, **kwargs):
        self.calls.append(("get", url, kwargs))
        return self.replies["get"].pop(0)


@pytest.fixture
def http(monkeypatch):
    fake = _FakeHttp()
    monkeypatch.setattr(service.requests, "post", fake.post)
    monkeypatch.setattr(service.requests, "get", fake.get)
    return fake


@pytest.fixture
def vendor_settings(settings):
    return dataclasses.replace(
        settings,
        print_api_url="https://print.example/api/",
        print_api_key="secret-key",
        partner_webhook_url="https://partner.example/hooks",
        partner_webhook_secret="shh",
        public_base_url="https://books.example",
    )


def _artifact_outputs(workdir):
    for name in ("inside-book.pdf", "cover-spread.pdf"):
        with open(os.path.join(workdir, name), "wb") as f:
            f.write(b"%PDF-1.4\n")
    return {
        StageName.LAYOUT_COMPOSE_PDF: {"pdf": "inside-book.pdf", "page_count": 14},
        StageName.COVERS_COMPOSE: {"pdf": "cover-spread.pdf", "spine_width": 100},
    }


def _submit_ctx(stage_ctx, tmp_path, cfg):
    (tmp_path / "work").mkdir(exist_ok=True)
    return stage_ctx(StageName.PRINT_SUBMIT, outputs=_artifact_outputs(str(tmp_path / "work")), cfg=cfg)


def test_signature_is_hmac_sha256():
    body = b'{"event":"print.shipped"}'
    expected = hmac.new(b"shh", body, hashlib.sha256).hexdigest()
    assert sign_payload(body, "shh") == f"sha256={expected}"


def test_submit_places_order_and_notifies_partner(stage_ctx, tmp_path, vendor_settings, http):
    http.replies["post"] = [_Resp(201, {"id": "ord-9", "status": "received", "extra": "ignored"}), _Resp(204)]
    ctx = _submit_ctx(stage_ctx, tmp_path, vendor_settings)

    out = submit(ctx)

    assert out["order_id"] == "ord-9"
    assert out["handoff"] is False
    assert out["webhook_sent"] is True
    assert out["artifacts"]["inside-book.pdf"]["url"] == "https://books.example/api/v1/stories/story-1/artifacts/inside-book.pdf"

    method, url, kwargs = http.calls[0]
    assert url == "https://print.example/api/orders"
    assert kwargs["headers"]["Authorization"] == "Bearer secret-key"
    assert kwargs["json"]["page_count"] == 14
    assert kwargs["json"]["spine_width_px"] == 100

    _, hook_url, hook = http.calls[1]
    assert hook_url == "https://partner.example/hooks"
    assert hook["headers"][SIGNATURE_HEADER] == sign_payload(hook["data"], "shh")
    assert json.loads(hook["data"])["event"] == "print.submitted"


def test_redelivered_submit_reuses_order(stage_ctx, tmp_path, vendor_settings, http):
    http.replies["post"] = [_Resp(200, {"id": "ord-1"}), _Resp(200), _Resp(200)]
    ctx = _submit_ctx(stage_ctx, tmp_path, vendor_settings)

    first = submit(ctx)
    second = submit(ctx)

    assert first["order_id"] == second["order_id"] == "ord-1"
    order_posts = [c for c in http.calls if c[1].endswith("/orders")]
    assert len(order_posts) == 1


def test_interrupted_ack_write_leaves_no_order_file(stage_ctx, tmp_path, vendor_settings, http, monkeypatch):
    http.replies["post"] = [_Resp(200, {"id": "ord-1"}), _Resp(200, {"id": "ord-2"}), _Resp(200)]
    ctx = _submit_ctx(stage_ctx, tmp_path, vendor_settings)
    ack_path = ctx.path("print", "order.json")

    def _crash(src, dst):
        raise OSError("disk full")

    with monkeypatch.context() as m:
        m.setattr(os, "replace", _crash)
        with pytest.raises(OSError):
            submit(ctx)
    assert not os.path.exists(ack_path)

    # the redelivery is not poisoned by a half-written ack
    out = submit(ctx)
    assert out["order_id"] == "ord-2"
    with open(ack_path) as f:
        assert json.load(f)["id"] == "ord-2"


def test_vendor_rejection_is_fatal(stage_ctx, tmp_path, vendor_settings, http):
    http.replies["post"] = [_Resp(422, {"error": "bad pdf"})]
    ctx = _submit_ctx(stage_ctx, tmp_path, vendor_settings)
    with pytest.raises(FatalStageError, match="order submit"):
        submit(ctx)


def test_without_vendor_submit_is_a_handoff(stage_ctx, tmp_path, settings, http):
    ctx = _submit_ctx(stage_ctx, tmp_path, settings)

    out = submit(ctx)

    assert out["handoff"] is True
    assert out["order_id"] is None
    # no vendor and no webhook configured: nothing goes over the wire
    assert http.calls == []


def test_webhook_failure_does_not_fail_submit(stage_ctx, tmp_path, vendor_settings, http):
    http.replies["post"] = [_Resp(200, {"id": "ord-2"}), _Resp(400)]
    ctx = _submit_ctx(stage_ctx, tmp_path, vendor_settings)

    out = submit(ctx)

    assert out["order_id"] == "ord-2"
    assert out["webhook_sent"] is False


def test_missing_artifact_is_fatal(stage_ctx):
    ctx = stage_ctx(StageName.PRINT_SUBMIT, outputs={
        StageName.LAYOUT_COMPOSE_PDF: {"pdf": "inside-book.pdf", "page_count": 4},
        StageName.COVERS_COMPOSE: {"pdf": "cover-spread.pdf"},
    })
    with pytest.raises(FatalStageError, match="missing artifact"):
        submit(ctx)


def _track_ctx(stage_ctx, cfg, polls=0):
    submitted = {"order_id": "ord-9", "artifacts": {"inside-book.pdf": {"url": "https://x/in.pdf"}}}
    return stage_ctx(StageName.PRINT_TRACK, outputs={StageName.PRINT_SUBMIT: submitted}, job_data={"polls": polls}, cfg=cfg)


def test_track_reschedules_while_printing(stage_ctx, vendor_settings, http):
    http.replies["get"] = [_Resp(200, {"id": "ord-9", "status": "printing"})]

    with pytest.raises(Reschedule) as ei:
        track(_track_ctx(stage_ctx, vendor_settings, polls=1))

    assert ei.value.data == {"polls": 2}
    assert ei.value.delay_seconds == vendor_settings.print_track_interval_seconds
    assert http.calls[0][1] == "https://print.example/api/orders/ord-9"


def test_track_completes_when_shipped(stage_ctx, vendor_settings, http):
    http.replies["get"] = [_Resp(200, {"id": "ord-9", "status": "Shipped", "tracking_url": "https://track/1"})]
    http.replies["post"] = [_Resp(200)]

    out = track(_track_ctx(stage_ctx, vendor_settings))

    assert out["status"] == "shipped"
    assert out["tracking_url"] == "https://track/1"
    assert json.loads(http.calls[1][2]["data"])["event"] == "print.shipped"


def test_track_parks_rejected_and_stuck_orders(stage_ctx, vendor_settings, http):
    http.replies["get"] = [
        _Resp(200, {"id": "ord-9", "status": "rejected", "message": "spine too narrow"}),
        _Resp(200, {"id": "ord-9", "status": "printing"}),
    ]
    with pytest.raises(NeedsReview, match="spine too narrow"):
        track(_track_ctx(stage_ctx, vendor_settings))
    with pytest.raises(NeedsReview, match="after 3 polls"):
        track(_track_ctx(stage_ctx, vendor_settings, polls=2))


def test_track_without_order_is_handed_off(stage_ctx):
    ctx = stage_ctx(StageName.PRINT_TRACK, outputs={StageName.PRINT_SUBMIT: {"order_id": None, "artifacts": {}}})
    assert track(ctx) == {"status": "handed_off", "artifacts": {}}
