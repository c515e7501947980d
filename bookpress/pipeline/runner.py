# bookpress/pipeline/runner.py
"""
StagePipeline: moves a story through the ordered stages.

A delivery is processed in four steps: check the story is still live and on
this stage, run the stage handler, persist its output, enqueue the next
stage. Failures are re-enqueued under STAGE_POLICY until
`max_attempts`, then the story is parked as `failed` with the stage and
message recorded for operators.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from bookpress.config import Config, config
from bookpress.lib.jobs import TERMINAL_STATUSES, JobStore, UnknownStory, utcnow
from bookpress.lib.paths import new_story_id
from bookpress.lib.providers.errors import ProviderConfigurationError
from bookpress.lib.providers.registry import ImageProviderRegistry, TextProviderRegistry
from bookpress.lib.retry import STAGE_POLICY, RetryPolicy
from bookpress.logger import get_logger
from bookpress.pipeline.errors import FatalStageError, NeedsReview, Reschedule
from bookpress.pipeline.stages import FIRST_STAGE, StageJob, StageName, next_stage
from bookpress.schemas import StoryRequest

log = get_logger(__name__)


@dataclass
class StageContext:
    story_id: str
    stage: StageName
    job: StageJob
    workdir: str
    request: StoryRequest
    manifest: Dict[str, Any]
    text: TextProviderRegistry
    images: ImageProviderRegistry
    settings: Config

    def output(self, stage: StageName) -> Dict[str, Any]:
        """Persisted output of an earlier stage (empty dict if it produced none)."""
        entry = self.manifest.get("stages", {}).get(StageName(stage).value) or {}
        return entry.get("output") or {}

    def path(self, *parts: str) -> str:
        p = os.path.join(self.workdir, *parts)
        os.makedirs(os.path.dirname(p), exist_ok=True)
        return p

    def log_prefix(self) -> str:
        return f"[{self.story_id}] {self.stage.value}:"


StageHandler = Callable[[StageContext], Optional[Dict[str, Any]]]


class StagePipeline:
    def __init__(
        self,
        *,
        store: JobStore,
        queue,
        handlers: Mapping[StageName, StageHandler],
        text: TextProviderRegistry,
        images: ImageProviderRegistry,
        settings: Config = config,
        stage_policy: RetryPolicy = STAGE_POLICY,
        max_attempts: Optional[int] = None,
    ):
        missing = [s.value for s in StageName if s not in handlers]
        if missing:
            raise ValueError(f"no handler for stages: {', '.join(missing)}")
        self.store = store
        self.queue = queue
        self.handlers = dict(handlers)
        self.text = text
        self.images = images
        self.settings = settings
        self.stage_policy = stage_policy
        self.max_attempts = max_attempts or settings.stage_max_attempts

    # ---------- intake ----------

    def submit(self, request: StoryRequest) -> str:
        story_id = request.story_id or new_story_id()
        payload = request.model_dump(mode="json")
        payload["story_id"] = story_id
        self.store.create(story_id, payload, FIRST_STAGE.value)
        try:
            self._enqueue(StageJob(story_id=story_id, stage=FIRST_STAGE))
        except Exception as e:
            self._park(story_id, FIRST_STAGE, "failed", f"enqueue failed: {e}")
            raise
        log.info(f"[{story_id}] accepted '{request.title}'")
        return story_id

    def _enqueue(self, job: StageJob, delay_seconds: float = 0) -> None:
        task_name = self.queue.enqueue(job, delay_seconds=delay_seconds)
        self.store.set_task_name(job.story_id, task_name)

    # ---------- delivery ----------

    def process(self, job: StageJob) -> str:
        """Handle one delivery. Returns a short outcome tag; never raises for stage failures."""
        sid, stage = job.story_id, StageName(job.stage)
        try:
            mf = self.store.load(sid)
        except UnknownStory:
            log.warning(f"[{sid}] unknown story; dropping {stage.value} delivery")
            return "unknown"

        if mf.get("cancelled"):
            log.info(f"[{sid}] cancelled; acking {stage.value}")
            return "cancelled"
        if mf.get("status") in TERMINAL_STATUSES:
            log.info(f"[{sid}] already {mf['status']}; acking {stage.value}")
            return "skipped"
        if mf.get("current_stage") != stage.value:
            log.info(f"[{sid}] stale delivery for {stage.value} (current {mf.get('current_stage')}); acking")
            return "skipped"
        if (mf.get("stages", {}).get(stage.value) or {}).get("status") == "done":
            return "skipped"

        def _start(m):
            m["status"] = "running"
            m.setdefault("attempts", {})[stage.value] = job.attempt
            entry = m.setdefault("stages", {}).setdefault(stage.value, {})
            entry.update({"status": "running", "started_at": utcnow(), "error": None})
        mf = self.store.update(sid, _start)

        ctx = StageContext(
            story_id=sid,
            stage=stage,
            job=job,
            workdir=self.store.workdir(sid),
            request=StoryRequest.model_validate(self.store.load_request(sid)),
            manifest=mf,
            text=self.text,
            images=self.images,
            settings=self.settings,
        )
        log.info(f"[{sid}] {stage.value} attempt {job.attempt}/{self.max_attempts}")

        try:
            output = self.handlers[stage](ctx) or {}
        except NeedsReview as e:
            self._park(sid, stage, "needs_review", str(e))
            return "needs_review"
        except Reschedule as e:
            return self._reschedule(job, e)
        except (FatalStageError, ProviderConfigurationError) as e:
            log.error(f"[{sid}] {stage.value} failed permanently: {e}")
            self._park(sid, stage, "failed", str(e))
            return "failed"
        except Exception as e:
            return self._retry_or_fail(job, e)

        return self._advance(job, output)

    def _advance(self, job: StageJob, output: Dict[str, Any]) -> str:
        sid, stage = job.story_id, StageName(job.stage)
        nxt = next_stage(stage)

        def _done(m):
            entry = m.setdefault("stages", {}).setdefault(stage.value, {})
            entry.update({"status": "done", "output": output, "finished_at": utcnow(), "error": None})
            m["last_error"] = None
            if nxt is None:
                m["status"] = "completed"
                m["final"] = output
            else:
                m["current_stage"] = nxt.value
                m["status"] = "cancelled" if m.get("cancelled") else "queued"
        mf = self.store.update(sid, _done)

        if nxt is None:
            log.info(f"[{sid}] pipeline complete")
            return "completed"
        if mf.get("cancelled"):
            log.info(f"[{sid}] cancelled during {stage.value}; not enqueueing {nxt.value}")
            return "cancelled"
        try:
            self._enqueue(StageJob(story_id=sid, stage=nxt))
        except Exception as e:
            # stage output is kept; retry() resumes from the next stage
            log.error(f"[{sid}] could not enqueue {nxt.value}: {e}")
            self._park(sid, nxt, "failed", f"enqueue failed: {e}")
            return "failed"
        return "done"

    def _retry_or_fail(self, job: StageJob, exc: Exception) -> str:
        sid, stage = job.story_id, StageName(job.stage)
        if job.attempt >= self.max_attempts:
            log.error(f"[{sid}] {stage.value} failed after {job.attempt} attempts: {exc}")
            self._park(sid, stage, "failed", str(exc))
            return "failed"

        delay = self.stage_policy.delay_for(job.attempt)
        log.warning(f"[{sid}] {stage.value} attempt {job.attempt} failed ({exc}); re-enqueue in {delay:.0f}s")

        def _retrying(m):
            entry = m.setdefault("stages", {}).setdefault(stage.value, {})
            entry.update({"status": "retrying", "error": str(exc)})
            m["status"] = "cancelled" if m.get("cancelled") else "queued"
            m["last_error"] = {"stage": stage.value, "message": str(exc), "at": utcnow()}
        if self.store.update(sid, _retrying).get("cancelled"):
            log.info(f"[{sid}] cancelled during {stage.value}; not retrying")
            return "cancelled"
        try:
            self._enqueue(job.model_copy(update={"attempt": job.attempt + 1, "enqueued_at": utcnow()}), delay)
        except Exception as e:
            log.error(f"[{sid}] could not re-enqueue {stage.value}: {e}")
            self._park(sid, stage, "failed", f"{exc}; re-enqueue failed: {e}")
            return "failed"
        return "retry"

    def _reschedule(self, job: StageJob, r: Reschedule) -> str:
        sid, stage = job.story_id, StageName(job.stage)

        def _waiting(m):
            entry = m.setdefault("stages", {}).setdefault(stage.value, {})
            entry.update({"status": "waiting", "note": str(r)})
            m["status"] = "cancelled" if m.get("cancelled") else "queued"
        if self.store.update(sid, _waiting).get("cancelled"):
            log.info(f"[{sid}] cancelled during {stage.value}; not rescheduling")
            return "cancelled"
        log.info(f"[{sid}] {stage.value} rescheduled in {r.delay_seconds}s: {r}")
        self._enqueue(job.model_copy(update={"data": r.data, "enqueued_at": utcnow()}), r.delay_seconds)
        return "rescheduled"

    def _park(self, sid: str, stage: StageName, status: str, message: str) -> None:
        def _apply(m):
            m["status"] = status
            m["current_stage"] = stage.value
            entry = m.setdefault("stages", {}).setdefault(stage.value, {})
            entry.update({"status": status, "error": message, "finished_at": utcnow()})
            m["last_error"] = {"stage": stage.value, "message": message, "at": utcnow()}
        self.store.update(sid, _apply)

    # ---------- operator actions ----------

    def cancel(self, story_id: str) -> Dict[str, Any]:
        mf = self.store.set_cancelled(story_id, True)
        deleted = False
        task_name = mf.get("task_name")
        if task_name:
            try:
                deleted = self.queue.cancel(task_name)
            except Exception as e:
                # the worker will see the flag and ack without running
                log.warning(f"[{story_id}] could not delete task {task_name}: {e}")
        log.info(f"[{story_id}] cancelled at {mf.get('current_stage')}")
        return {"story_id": story_id, "cancelled": True, "queued_task_deleted": deleted}

    def retry(self, story_id: str) -> StageJob:
        """Re-run the current stage of a failed or parked story from attempt 1."""
        mf = self.store.load(story_id)
        if mf.get("status") not in {"failed", "needs_review"}:
            raise ValueError(f"story {story_id} is {mf.get('status')}; only failed or needs_review stories can be retried")
        stage = StageName(mf["current_stage"])

        def _reset(m):
            m["status"] = "queued"
            m["attempts"][stage.value] = 0
            entry = m.setdefault("stages", {}).setdefault(stage.value, {})
            entry.update({"status": "pending", "error": None})
        self.store.update(story_id, _reset)
        job = StageJob(story_id=story_id, stage=stage)
        self._enqueue(job)
        log.info(f"[{story_id}] retrying from {stage.value}")
        return job

    def status(self, story_id: str) -> Dict[str, Any]:
        mf = self.store.load(story_id)
        attempts = mf.get("attempts", {})
        stages = {
            name: {
                "status": entry.get("status", "pending"),
                "attempts": attempts.get(name, 0),
                "started_at": entry.get("started_at"),
                "finished_at": entry.get("finished_at"),
                "error": entry.get("error"),
            }
            for name, entry in mf.get("stages", {}).items()
        }
        return {
            "story_id": story_id,
            "status": mf.get("status"),
            "current_stage": mf.get("current_stage"),
            "cancelled": bool(mf.get("cancelled")),
            "last_error": mf.get("last_error"),
            "stages": stages,
            "final": mf.get("final"),
        }
