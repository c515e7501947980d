# bookpress/pipeline/queue.py
"""
Stage queues. Production uses one Cloud Tasks queue per stage, delivering
to the worker endpoint; the local backend keeps an in-process queue per
stage drained by a worker pool per stage.
"""
from __future__ import annotations

import queue
import threading
import uuid
from typing import Dict, List, Optional

from bookpress.lib.cloud_tasks import create_task, delete_task, queue_name_for
from bookpress.logger import get_logger
from bookpress.pipeline.stages import STAGE_ORDER, StageJob, StageName

log = get_logger(__name__)


class CloudTasksQueue:
    """At-least-once delivery through Cloud Tasks HTTP targets."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def worker_url(self, job: StageJob) -> str:
        return f"{self.base_url}/api/v1/tasks/worker/{job.stage.value}/{job.story_id}"

    def enqueue(self, job: StageJob, *, delay_seconds: float = 0) -> Optional[str]:
        resp = create_task(
            queue=queue_name_for(job.stage.value),
            url=self.worker_url(job),
            payload=job.model_dump(mode="json"),
            schedule_in_seconds=delay_seconds,
        )
        log.debug(f"[{job.story_id}] created cloud task {resp.name} for {job.stage.value}")
        return resp.name

    def cancel(self, task_name: str) -> bool:
        return delete_task(task_name=task_name)


class LocalQueue:
    """
    In-process queues, one per stage. Delayed jobs are released by timers
    unless `honor_delays` is off, in which case they are queued at once.
    """

    def __init__(self, honor_delays: bool = True):
        self.honor_delays = honor_delays
        self._queues: Dict[StageName, "queue.Queue[StageJob]"] = {s: queue.Queue() for s in STAGE_ORDER}
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def enqueue(self, job: StageJob, *, delay_seconds: float = 0) -> Optional[str]:
        name = f"local/{job.stage.value}/{job.story_id}/{uuid.uuid4().hex[:8]}"
        if delay_seconds > 0 and self.honor_delays:
            timer = threading.Timer(delay_seconds, self._release, args=(name, job))
            timer.daemon = True
            with self._lock:
                self._timers[name] = timer
            timer.start()
        else:
            self._queues[job.stage].put(job)
        return name

    def _release(self, name: str, job: StageJob) -> None:
        with self._lock:
            self._timers.pop(name, None)
        self._queues[job.stage].put(job)

    def cancel(self, task_name: str) -> bool:
        with self._lock:
            timer = self._timers.pop(task_name, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def get(self, stage: StageName, timeout: Optional[float] = None) -> Optional[StageJob]:
        try:
            return self._queues[stage].get(timeout=timeout) if timeout else self._queues[stage].get_nowait()
        except queue.Empty:
            return None

    def pending(self) -> int:
        with self._lock:
            delayed = len(self._timers)
        return delayed + sum(q.qsize() for q in self._queues.values())

    def run_until_idle(self, pipeline, max_deliveries: int = 1000) -> List[str]:
        """Synchronously process queued jobs, earliest stage first, until nothing is left."""
        outcomes: List[str] = []
        while len(outcomes) < max_deliveries:
            job = next((j for j in (self.get(s) for s in STAGE_ORDER) if j is not None), None)
            if job is None:
                break
            outcomes.append(pipeline.process(job))
        return outcomes


class StageWorkerPool:
    """`workers_per_stage` threads per stage, each pulling from its stage's LocalQueue."""

    def __init__(self, pipeline, local_queue: LocalQueue, workers_per_stage: int = 2):
        self.pipeline = pipeline
        self.queue = local_queue
        self.workers_per_stage = max(1, workers_per_stage)
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def _loop(self, stage: StageName) -> None:
        while not self._stop.is_set():
            job = self.queue.get(stage, timeout=0.5)
            if job is None:
                continue
            try:
                self.pipeline.process(job)
            except Exception:
                # process() records stage failures itself; this only guards the thread
                log.exception(f"[{job.story_id}] worker for {stage.value} crashed")

    def start(self) -> None:
        for stage in STAGE_ORDER:
            for i in range(self.workers_per_stage):
                t = threading.Thread(target=self._loop, args=(stage,), name=f"{stage.value}-{i}", daemon=True)
                t.start()
                self._threads.append(t)
        log.info(f"started {len(self._threads)} stage workers")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
        self._threads.clear()
