# bookpress/lib/jobs.py
"""
Per-story job state on disk.

<root>/<story_id>/
    request.json    the accepted StoryRequest
    manifest.json   stage state: current stage, attempts, outputs, errors
    ...             stage artifacts
"""
from __future__ import annotations

import json
import os
import re
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from bookpress.lib.paths import jobs_root
from bookpress.logger import get_logger

log = get_logger(__name__)

TERMINAL_STATUSES = {"completed", "failed", "cancelled", "needs_review"}
_STORY_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def manifest_path(workdir: str) -> str:
    return os.path.join(workdir, "manifest.json")


def load_manifest(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    with open(path, "r") as f:
        return json.load(f)


def save_manifest(path: str, manifest: Dict[str, Any]) -> None:
    tmp = path + ".part"
    with open(tmp, "w") as f:
        json.dump(manifest, f, indent=2)
    os.replace(tmp, path)


def new_manifest(story_id: str, first_stage: str) -> Dict[str, Any]:
    now = utcnow()
    return {
        "story_id": story_id,
        "status": "queued",
        "current_stage": first_stage,
        "attempts": {},
        "stages": {},
        "last_error": None,
        "cancelled": False,
        "task_name": None,
        "final": None,
        "created_at": now,
        "updated_at": now,
    }


class UnknownStory(KeyError):
    pass


class JobStore:
    """Filesystem-backed story state. One lock per process serializes manifest writes."""

    def __init__(self, root: Optional[str] = None):
        self.root = root or jobs_root()
        os.makedirs(self.root, exist_ok=True)
        self._lock = threading.RLock()

    def workdir(self, story_id: str) -> str:
        if not _STORY_ID_RE.match(story_id or ""):
            raise ValueError(f"invalid story id {story_id!r}")
        return os.path.join(self.root, story_id)

    def path(self, story_id: str, *parts: str) -> str:
        return os.path.join(self.workdir(story_id), *parts)

    def exists(self, story_id: str) -> bool:
        return os.path.exists(manifest_path(self.workdir(story_id)))

    def create(self, story_id: str, request: Dict[str, Any], first_stage: str) -> Dict[str, Any]:
        workdir = self.workdir(story_id)
        with self._lock:
            if self.exists(story_id):
                raise FileExistsError(f"story {story_id} already exists")
            os.makedirs(workdir, exist_ok=True)
            req_path = os.path.join(workdir, "request.json")
            with open(req_path, "w") as f:
                json.dump(request, f, indent=2)
            mf = new_manifest(story_id, first_stage)
            save_manifest(manifest_path(workdir), mf)
        return mf

    def load_request(self, story_id: str) -> Dict[str, Any]:
        req_path = self.path(story_id, "request.json")
        if not os.path.exists(req_path):
            raise UnknownStory(story_id)
        with open(req_path, "r") as f:
            return json.load(f)

    def load(self, story_id: str) -> Dict[str, Any]:
        mf = load_manifest(manifest_path(self.workdir(story_id)))
        if not mf:
            raise UnknownStory(story_id)
        return mf

    def update(self, story_id: str, mutate: Callable[[Dict[str, Any]], None]) -> Dict[str, Any]:
        with self._lock:
            mf = self.load(story_id)
            mutate(mf)
            mf["updated_at"] = utcnow()
            save_manifest(manifest_path(self.workdir(story_id)), mf)
            return mf

    def set_cancelled(self, story_id: str, cancelled: bool = True) -> Dict[str, Any]:
        def _apply(mf):
            mf["cancelled"] = bool(cancelled)
            if cancelled and mf.get("status") not in TERMINAL_STATUSES:
                mf["status"] = "cancelled"
        return self.update(story_id, _apply)

    def set_task_name(self, story_id: str, task_name: Optional[str]) -> None:
        self.update(story_id, lambda mf: mf.__setitem__("task_name", task_name))

    def stage_output(self, story_id: str, stage: str) -> Dict[str, Any]:
        mf = self.load(story_id)
        return (mf.get("stages", {}).get(stage) or {}).get("output") or {}
