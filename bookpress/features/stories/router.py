# bookpress/features/stories/router.py
from __future__ import annotations

import os

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from bookpress.lib.jobs import UnknownStory
from bookpress.logger import get_logger
from bookpress.pipeline.runner import StagePipeline
from bookpress.pipeline.stages import StageJob, StageName
from bookpress.pipeline.wiring import get_pipeline
from bookpress.schemas import StoryAccepted, StoryRequest, StoryStatus

router = APIRouter(prefix="/api/v1", tags=["stories"])
log = get_logger(__name__)

# files a client may download from a story folder
ARTIFACTS = {"inside-book.pdf", "cover-spread.pdf"}


def _known(pipeline: StagePipeline, story_id: str) -> None:
    try:
        if pipeline.store.exists(story_id):
            return
    except ValueError:
        pass
    raise HTTPException(404, f"unknown story_id {story_id}")


@router.post("/stories", status_code=202, response_model=StoryAccepted)
def create_story(req: StoryRequest, pipeline: StagePipeline = Depends(get_pipeline)) -> StoryAccepted:
    """
    Public endpoint. Fire-and-forget.
    Creates the story folder, persists request.json + manifest and enqueues brief.extract.
    """
    if req.story_id and pipeline.store.exists(req.story_id):
        raise HTTPException(409, f"story {req.story_id} already exists")
    try:
        story_id = pipeline.submit(req)
    except FileExistsError as e:
        raise HTTPException(409, str(e))
    except Exception as e:
        log.error(f"could not enqueue story '{req.title}': {e}")
        raise HTTPException(503, "story accepted but could not be queued; retry later")
    return StoryAccepted(
        story_id=story_id,
        status_url=f"/api/v1/stories/{story_id}/status",
        worker_url=f"/api/v1/tasks/worker/{StageName.BRIEF_EXTRACT.value}/{story_id}",
    )


@router.post("/tasks/worker/{stage}/{story_id}")
async def worker_process(stage: str, story_id: str, request: Request) -> JSONResponse:
    """
    Cloud Tasks target. Idempotent: duplicate, stale and cancelled deliveries are acked.
    Stage failures are recorded on the story, never surfaced as 5xx, so the queue does not
    retry on top of the pipeline's own stage retries.
    """
    try:
        body = await request.json()
        job = StageJob.model_validate(body)
    except (ValueError, ValidationError):
        # Malformed body is a permanent caller error
        raise HTTPException(status_code=400, detail="invalid stage job body")
    if job.stage.value != stage or job.story_id != story_id:
        raise HTTPException(400, f"body is for {job.stage.value}/{job.story_id}, not {stage}/{story_id}")

    pipeline: StagePipeline = request.app.state.pipeline
    # handlers are blocking (provider calls, Pillow, reportlab)
    outcome = await run_in_threadpool(pipeline.process, job)
    return JSONResponse({"story_id": story_id, "stage": stage, "ok": True, "outcome": outcome}, status_code=200)


@router.get("/stories/{story_id}/status", response_model=StoryStatus)
def story_status(story_id: str, pipeline: StagePipeline = Depends(get_pipeline)) -> dict:
    _known(pipeline, story_id)
    try:
        return pipeline.status(story_id)
    except UnknownStory:
        raise HTTPException(404, f"unknown story_id {story_id}")


@router.post("/stories/{story_id}/cancel")
def cancel_story(story_id: str, pipeline: StagePipeline = Depends(get_pipeline)) -> dict:
    _known(pipeline, story_id)
    return pipeline.cancel(story_id)


@router.post("/stories/{story_id}/retry", status_code=202)
def retry_story(story_id: str, pipeline: StagePipeline = Depends(get_pipeline)) -> dict:
    _known(pipeline, story_id)
    try:
        job = pipeline.retry(story_id)
    except ValueError as e:
        raise HTTPException(409, str(e))
    return {"story_id": story_id, "stage": job.stage.value, "status_url": f"/api/v1/stories/{story_id}/status"}


@router.get("/stories/{story_id}/artifacts/{name}")
def download_artifact(story_id: str, name: str, pipeline: StagePipeline = Depends(get_pipeline)):
    _known(pipeline, story_id)
    if name not in ARTIFACTS:
        raise HTTPException(404, f"unknown artifact {name}")
    path = pipeline.store.path(story_id, name)
    if not os.path.exists(path):
        raise HTTPException(404, f"{name} is not ready yet")
    return FileResponse(path, media_type="application/pdf", filename=f"{story_id}-{name}")
