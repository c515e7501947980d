# bookpress/lib/cleanup.py
import os
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from bookpress.lib.jobs import load_manifest, manifest_path
from bookpress.logger import get_logger

log = get_logger(__name__)

# failed and needs_review stories wait for an operator
FINISHED_STATUSES = {"completed", "cancelled"}


def _last_touched(manifest: Dict[str, Any], folder: Path) -> float:
    """Epoch seconds of the last manifest write, falling back to the folder mtime."""
    stamp = manifest.get("updated_at")
    if stamp:
        try:
            return datetime.fromisoformat(stamp).timestamp()
        except ValueError:
            pass
    return folder.stat().st_mtime


def sweep_finished_jobs(base_dir: str, *, ttl_hours: int) -> int:
    """
    Remove story folders whose manifest is completed or cancelled and has
    not changed for `ttl_hours`. Returns the number of folders removed.
    """
    base = Path(base_dir)
    if not base.exists():
        return 0
    now = time.time()
    removed = 0
    for sub in sorted(p for p in base.iterdir() if p.is_dir()):
        mf = manifest_path(sub.as_posix())
        if not os.path.exists(mf):
            continue
        try:
            manifest = load_manifest(mf)
            age_hours = (now - _last_touched(manifest, sub)) / 3600.0
        except (OSError, ValueError) as e:
            log.warning(f"skipping {sub.name} during sweep: {e}")
            continue
        if manifest.get("status") not in FINISHED_STATUSES or age_hours < ttl_hours:
            continue
        shutil.rmtree(sub.as_posix(), ignore_errors=True)
        removed += 1
        log.debug(f"[{sub.name}] swept ({manifest.get('status')}, {age_hours:.1f}h old)")
    log.info(f"sweep removed {removed} finished stories from {base_dir}")
    return removed
