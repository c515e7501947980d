# bookpress/features/admin/router.py
from typing import Optional

from fastapi import APIRouter, Query, Request

from bookpress.config import config
from bookpress.lib.cleanup import sweep_finished_jobs

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/sweep")
def sweep(request: Request, ttl_hours: Optional[int] = Query(None, ge=0)):
    """Delete completed/cancelled story folders older than `ttl_hours` (default SWEEP_TTL_HOURS)."""
    base = request.app.state.pipeline.store.root
    ttl = config.sweep_ttl_hours if ttl_hours is None else ttl_hours
    removed = sweep_finished_jobs(base, ttl_hours=ttl)
    return {"removed": removed, "base_dir": base, "ttl_hours": ttl}
