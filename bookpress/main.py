from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bookpress.config import config
from bookpress.features.admin.router import router as admin_router
from bookpress.features.stories.router import router as stories_router
from bookpress.lib.cleanup import sweep_finished_jobs
from bookpress.logger import get_logger
from bookpress.pipeline.queue import LocalQueue, StageWorkerPool
from bookpress.pipeline.wiring import build_pipeline

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # tests install their own pipeline before startup
    pipeline = getattr(app.state, "pipeline", None) or build_pipeline(config)
    app.state.pipeline = pipeline

    if config.sweep_jobs_on_startup:
        sweep_finished_jobs(pipeline.store.root, ttl_hours=config.sweep_ttl_hours)

    pool = None
    if isinstance(pipeline.queue, LocalQueue) and getattr(app.state, "start_workers", True):
        pool = StageWorkerPool(pipeline, pipeline.queue, workers_per_stage=config.stage_workers)
        pool.start()
    log.info(f"bookpress ready (queue={type(pipeline.queue).__name__})")
    try:
        yield
    finally:
        if pool is not None:
            pool.stop()


app = FastAPI(title="Bookpress API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,   # use ["*"] only if you don't send cookies/Authorization
    allow_credentials="*" not in config.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],  # for artifact downloads via FileResponse
)

app.include_router(stories_router)
app.include_router(admin_router)
