# bookpress/lib/json_tools.py
import json
import re
from typing import Any, Dict

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


def extract_json_block(text: str) -> str:
    """
    Best-effort JSON text from a model reply: a fenced block anywhere in the
    reply, else the outermost {...}, else the outermost [...].
    """
    s = (text or "").strip()
    fenced = _FENCE_RE.search(s)
    if fenced:
        s = fenced.group(1).strip()
    try:
        json.loads(s)
        return s
    except ValueError:
        pass
    for pattern in (r"\{.*\}", r"\[.*\]"):
        m = re.search(pattern, s, flags=re.DOTALL)
        if m:
            return m.group(0)
    return s


def parse_json_object(text: str) -> Dict[str, Any]:
    """Model output -> dict. Raises ValueError when no object can be recovered."""
    data = json.loads(extract_json_block(text))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data
