# bookpress/features/printing/service.py
"""
print.submit / print.track: hand the finished PDFs to the print vendor and
follow the order until it ships. Without a vendor configured the story
completes as a handoff: artifacts are published and the partner notified.
"""
import hashlib
import hmac
import json
import os
from typing import Dict, Optional

import requests

from bookpress.lib.gcs_inventory import StorageNotConfigured, upload_to_gcs
from bookpress.lib.imaging import write_bytes_atomic
from bookpress.lib.retry import HTTP_DELIVERY_POLICY, execute, is_retryable
from bookpress.logger import get_logger
from bookpress.pipeline.errors import FatalStageError, NeedsReview, Reschedule
from bookpress.pipeline.runner import StageContext
from bookpress.pipeline.stages import StageName

from .schemas import PartnerEvent, VendorOrder, VendorOrderAck, VendorOrderStatus

log = get_logger(__name__)

SIGNATURE_HEADER = "X-Bookpress-Signature"
SHIPPED = {"shipped", "delivered"}
REJECTED = {"rejected", "cancelled", "canceled"}


def sign_payload(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def notify_partner(ctx: StageContext, event: PartnerEvent) -> bool:
    """POST a signed event to the partner webhook. Failures are logged, never raised."""
    url = ctx.settings.partner_webhook_url
    if not url:
        return False
    body = json.dumps(event.model_dump(), separators=(",", ":"), sort_keys=True).encode("utf-8")
    headers = {"Content-Type": "application/json"}
    if ctx.settings.partner_webhook_secret:
        headers[SIGNATURE_HEADER] = sign_payload(body, ctx.settings.partner_webhook_secret)

    def _send():
        r = requests.post(url, data=body, headers=headers, timeout=ctx.settings.provider_timeout_seconds)
        r.raise_for_status()

    try:
        execute(_send, HTTP_DELIVERY_POLICY, label=f"[{ctx.story_id}] webhook {event.event}")
        return True
    except Exception as e:
        log.warning(f"{ctx.log_prefix()} partner webhook {event.event} failed: {e}")
        return False


def _vendor_headers(ctx: StageContext) -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if ctx.settings.print_api_key:
        headers["Authorization"] = f"Bearer {ctx.settings.print_api_key}"
    return headers


def _vendor_call(ctx: StageContext, label: str, fn):
    """Run a vendor request under the delivery policy; a non-retryable HTTP error fails the stage outright."""
    try:
        return execute(fn, HTTP_DELIVERY_POLICY, label=f"[{ctx.story_id}] {label}")
    except requests.HTTPError as e:
        if not is_retryable(e):
            raise FatalStageError(f"print vendor rejected {label}: {e}") from e
        raise


def _publish(ctx: StageContext, rel_path: str, name: str) -> Dict[str, str]:
    local = os.path.join(ctx.workdir, rel_path)
    if not os.path.exists(local):
        raise FatalStageError(f"missing artifact {rel_path}")
    if ctx.settings.upload_artifacts:
        try:
            info = upload_to_gcs(local, object_name=f"stories/{ctx.story_id}/{name}", content_type="application/pdf")
        except StorageNotConfigured as e:
            raise FatalStageError(str(e)) from e
        return {"url": info["signed_url"], "gs_uri": info["gs_uri"]}
    base = ctx.settings.public_base_url.rstrip("/")
    return {"url": f"{base}/api/v1/stories/{ctx.story_id}/artifacts/{name}"}


def submit(ctx: StageContext) -> dict:
    layout = ctx.output(StageName.LAYOUT_COMPOSE_PDF)
    covers = ctx.output(StageName.COVERS_COMPOSE)
    artifacts = {
        "inside-book.pdf": _publish(ctx, layout["pdf"], "inside-book.pdf"),
        "cover-spread.pdf": _publish(ctx, covers["pdf"], "cover-spread.pdf"),
    }

    order_id: Optional[str] = None
    vendor_status: Optional[str] = None
    if ctx.settings.print_api_url:
        # a redelivered submit must not place a second order
        ack_path = ctx.path("print", "order.json")
        if os.path.exists(ack_path):
            with open(ack_path) as f:
                ack = VendorOrderAck.model_validate(json.load(f))
            log.info(f"{ctx.log_prefix()} reusing vendor order {ack.id}")
        else:
            order = VendorOrder(
                external_id=ctx.story_id,
                title=ctx.request.title,
                interior_pdf_url=artifacts["inside-book.pdf"]["url"],
                cover_pdf_url=artifacts["cover-spread.pdf"]["url"],
                page_count=layout["page_count"],
                spine_width_px=covers.get("spine_width"),
            )
            url = f"{ctx.settings.print_api_url.rstrip('/')}/orders"

            def _post():
                r = requests.post(url, json=order.model_dump(), headers=_vendor_headers(ctx),
                                  timeout=ctx.settings.provider_timeout_seconds)
                r.raise_for_status()
                return VendorOrderAck.model_validate(r.json())

            ack = _vendor_call(ctx, "order submit", _post)
            write_bytes_atomic(ack_path, ack.model_dump_json(indent=2).encode("utf-8"))
            log.info(f"{ctx.log_prefix()} vendor order {ack.id} ({ack.status})")
        order_id, vendor_status = ack.id, ack.status
    else:
        log.info(f"{ctx.log_prefix()} no print vendor configured; handing off artifacts")

    sent = notify_partner(ctx, PartnerEvent(
        event="print.submitted" if order_id else "print.handoff",
        story_id=ctx.story_id,
        order_id=order_id,
        status=vendor_status,
        artifacts={k: v["url"] for k, v in artifacts.items()},
    ))
    return {
        "order_id": order_id,
        "vendor_status": vendor_status,
        "handoff": order_id is None,
        "artifacts": artifacts,
        "webhook_sent": sent,
    }


def track(ctx: StageContext) -> dict:
    submitted = ctx.output(StageName.PRINT_SUBMIT)
    order_id = submitted.get("order_id")
    if not order_id or not ctx.settings.print_api_url:
        return {"status": "handed_off", "artifacts": submitted.get("artifacts", {})}

    polls = int(ctx.job.data.get("polls", 0)) + 1
    url = f"{ctx.settings.print_api_url.rstrip('/')}/orders/{order_id}"

    def _get():
        r = requests.get(url, headers=_vendor_headers(ctx), timeout=ctx.settings.provider_timeout_seconds)
        r.raise_for_status()
        return VendorOrderStatus.model_validate(r.json())

    status = _vendor_call(ctx, "order status", _get)
    state = status.status.lower()
    log.info(f"{ctx.log_prefix()} order {order_id} is {state} (poll {polls})")

    if state in SHIPPED:
        notify_partner(ctx, PartnerEvent(
            event="print.shipped",
            story_id=ctx.story_id,
            order_id=order_id,
            status=state,
            artifacts={k: v["url"] for k, v in submitted.get("artifacts", {}).items()},
        ))
        return {
            "status": state,
            "order_id": order_id,
            "tracking_url": status.tracking_url,
            "polls": polls,
            "artifacts": submitted.get("artifacts", {}),
        }
    if state in REJECTED:
        raise NeedsReview(f"vendor order {order_id} {state}: {status.message or 'no reason given'}")
    if polls >= ctx.settings.print_track_max_polls:
        raise NeedsReview(f"vendor order {order_id} still {state} after {polls} polls")
    raise Reschedule(
        ctx.settings.print_track_interval_seconds,
        data={"polls": polls},
        reason=f"order {order_id} {state}",
    )
