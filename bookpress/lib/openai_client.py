# bookpress/lib/openai_client.py
from openai import OpenAI
from bookpress.config import config

_client = None


def get_client() -> OpenAI:
    """Shared client, built on first use so mock-only deployments need no key."""
    global _client
    if _client is None:
        # retries are owned by bookpress.lib.retry, not the SDK
        _client = OpenAI(
            api_key=config.openai_api_key,
            timeout=config.provider_timeout_seconds,
            max_retries=0,
        )
    return _client
