# bookpress/lib/cloud_tasks.py
from __future__ import annotations

import datetime
import json
import re

from google.api_core.exceptions import NotFound
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from bookpress.config import config

_client = None

def _tasks_client() -> tasks_v2.CloudTasksClient:
    global _client
    if _client is None:
        _client = tasks_v2.CloudTasksClient()
    return _client


def queue_name_for(stage: str) -> str:
    """Queue ids only allow letters, digits and hyphens: images.prepress -> <prefix>-images-prepress"""
    return re.sub(r"[^A-Za-z0-9-]", "-", f"{config.tasks_queue_prefix}-{stage}")


def create_task(
    *,
    queue: str,
    url: str,
    payload: dict,
    schedule_in_seconds: float = 0,
    dispatch_deadline_seconds: int | None = None,
):
    """
    Create an HTTP task targeting the FastAPI worker endpoint.
    Assumes OIDC auth is not used; protect via network/IAP/firewall as needed.
    """
    client = _tasks_client()
    parent = client.queue_path(config.gcp_project, config.gcp_location, queue)

    body = json.dumps(payload).encode("utf-8")
    task = {
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": url,
            "headers": {"Content-Type": "application/json"},
            "body": body,
        },
        "dispatch_deadline": {"seconds": dispatch_deadline_seconds or config.task_dispatch_deadline_seconds},
    }

    if schedule_in_seconds > 0:
        d = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=schedule_in_seconds)
        ts = timestamp_pb2.Timestamp()
        ts.FromDatetime(d)
        task["schedule_time"] = ts

    return client.create_task(parent=parent, task=task)

def delete_task(*, task_name: str) -> bool:
    """
    Delete a task by full task name:
      projects/<proj>/locations/<loc>/queues/<queue>/tasks/<id>
    Returns True if deleted, False if it didn't exist.
    """
    try:
        _tasks_client().delete_task(name=task_name)
        return True
    except NotFound:
        return False
