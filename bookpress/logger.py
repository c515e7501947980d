# bookpress/logger.py
import logging
import sys
from typing import Optional
from bookpress.config import config

# stage workers are named <stage>-<n>, so the thread shows which stage wrote the line
_DEFAULT_FMT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"

_FRAMEWORK_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "gunicorn.error", "gunicorn.access")
# never below INFO: request/response dumps from the SDKs bury the stage logs
_CHATTY_LOGGERS = ("httpx", "httpcore", "urllib3", "PIL", "google.auth", "google.api_core")

_configured = False


def _level(name: Optional[str]) -> int:
    return getattr(logging, (name or config.log_level).upper(), logging.INFO)


def configure_logging(level: Optional[str] = None, fmt: str = _DEFAULT_FMT) -> None:
    """One-time setup from LOG_LEVEL; safe to call from every module."""
    global _configured
    if _configured:
        return
    value = _level(level)
    formatter = logging.Formatter(fmt)

    root = logging.getLogger()
    root.setLevel(value)
    if root.handlers:
        # gunicorn/uvicorn may have installed handlers already
        for h in root.handlers:
            h.setLevel(value)
            if not h.formatter:
                h.setFormatter(formatter)
    else:
        h = logging.StreamHandler(sys.stdout)
        h.setLevel(value)
        h.setFormatter(formatter)
        root.addHandler(h)

    for name in _FRAMEWORK_LOGGERS:
        logging.getLogger(name).setLevel(value)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(value, logging.INFO))

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or "bookpress")
