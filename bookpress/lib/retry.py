# bookpress/lib/retry.py
"""
Bounded retry with exponential backoff for calls to external services.

Every provider call site goes through `execute()` with one of the named
policies below instead of hand-rolling its own loop.
"""
from __future__ import annotations

import random
import re
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests

from bookpress.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS = {429, 500, 503}
_RETRYABLE_MSG = re.compile(
    r"\b(429|500|503)\b|rate.?limit|timed?.?out|timeout|econnreset|connection reset|reset by peer|socket hang up",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0       # seconds
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int, rand: Callable[[float, float], float] = random.uniform) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)."""
        base = min(self.initial_delay * (self.backoff_multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            base *= rand(0.5, 1.0)
        return base


TEXT_GENERATION_POLICY = RetryPolicy(max_attempts=4, initial_delay=2.0, max_delay=30.0)
IMAGE_GENERATION_POLICY = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=20.0)
VISION_POLICY = RetryPolicy(max_attempts=2, initial_delay=0.5, max_delay=5.0)
HTTP_DELIVERY_POLICY = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=10.0)
# Re-enqueue delays between stage attempts
STAGE_POLICY = RetryPolicy(max_attempts=3, initial_delay=30.0, max_delay=600.0, jitter=False)


def _status_of(exc: BaseException) -> Optional[int]:
    # openai.APIStatusError -> status_code, google.genai errors.APIError -> code,
    # requests.HTTPError -> response.status_code
    for attr in ("status_code", "code", "status"):
        val = getattr(exc, attr, None)
        if isinstance(val, int):
            return val
    resp = getattr(exc, "response", None)
    val = getattr(resp, "status_code", None)
    return val if isinstance(val, int) else None


def is_retryable(exc: BaseException) -> bool:
    """Rate limits, 500/503, timeouts and connection resets are worth another try."""
    if isinstance(exc, (TimeoutError, socket.timeout, ConnectionResetError, requests.Timeout, requests.ConnectionError)):
        return True
    status = _status_of(exc)
    if status is not None:
        return status in _RETRYABLE_STATUS
    # SDK timeout / connection classes all carry it in the type name
    name = type(exc).__name__.lower()
    if "timeout" in name or "connection" in name:
        return True
    return bool(_RETRYABLE_MSG.search(str(exc)))


def execute(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    classify: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `operation` up to `policy.max_attempts` times.
    Fatal errors propagate at once; after the last retryable failure the
    last error is re-raised unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as e:
            if not classify(e):
                log.debug(f"{label}: fatal error on attempt {attempt}: {e}")
                raise
            if attempt >= policy.max_attempts:
                log.warning(f"{label}: giving up after {attempt} attempts: {e}")
                raise
            delay = policy.delay_for(attempt)
            log.warning(f"{label}: attempt {attempt}/{policy.max_attempts} failed ({e}); retrying in {delay:.2f}s")
            sleep(delay)
