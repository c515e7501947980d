# bookpress/pipeline/errors.py
from typing import Any, Dict, Optional


class StageError(Exception):
    """A stage attempt failed; the runner re-enqueues it until attempts run out."""


class FatalStageError(StageError):
    """Retrying the stage cannot help (bad input, missing mandatory artifact)."""


class NeedsReview(Exception):
    """Park the story for an operator without counting a failure."""


class Reschedule(Exception):
    """Run the same stage again later, e.g. to poll an external system."""

    def __init__(self, delay_seconds: float, data: Optional[Dict[str, Any]] = None, reason: str = ""):
        self.delay_seconds = delay_seconds
        self.data = data or {}
        super().__init__(reason or f"rescheduled in {delay_seconds}s")
