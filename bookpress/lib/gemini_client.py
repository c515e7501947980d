# bookpress/lib/gemini_client.py
from google import genai
from google.genai import types

from bookpress.config import config

_client = None

def get_client() -> genai.Client:
    global _client
    if _client is None:
        _client = genai.Client(
            api_key=config.gemini_api_key,
            http_options=types.HttpOptions(timeout=int(config.provider_timeout_seconds * 1000)),
        )
    return _client
