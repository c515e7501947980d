# bookpress/lib/paths.py
from __future__ import annotations
import uuid
from pathlib import Path
from bookpress.config import config

def data_dir() -> str:
    """
    Root folder for all job artifacts: <base_output_dir>/data
    Ensures it exists and returns it as a string.
    """
    root = Path(config.base_output_dir) / "data"
    root.mkdir(parents=True, exist_ok=True)
    return str(root)

def jobs_root() -> str:
    """
    Folder holding one sub-folder per story: <data_dir>/jobs
    """
    root = Path(data_dir()) / "jobs"
    root.mkdir(parents=True, exist_ok=True)
    return str(root)

def new_story_id() -> str:
    return uuid.uuid4().hex
