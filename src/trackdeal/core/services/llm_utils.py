"""
Shared helpers for LiteLLM calls and response parsing.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from litellm import acompletion
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import get_settings

LLM_RETRY_ATTEMPTS = 3


@retry(
    stop=stop_after_attempt(LLM_RETRY_ATTEMPTS),
    wait=wait_exponential(min=1, max=8),
    retry=retry_if_exception_type(Exception),
    reraise=True,
)
async def acompletion_with_retry(**kwargs: Any) -> Any:
    return await acompletion(**kwargs)


def build_completion_kwargs(messages: list, temperature: float = 0.2) -> Dict[str, Any]:
    """Assemble LiteLLM keyword arguments from the configured provider settings."""
    settings = get_settings()
    completion_kwargs: Dict[str, Any] = {
        "model": settings.litellm_model,
        "messages": messages,
        "temperature": temperature,
    }
    if settings.litellm_api_key:
        completion_kwargs["api_key"] = settings.litellm_api_key
    if settings.litellm_base_url:
        completion_kwargs["base_url"] = settings.litellm_base_url
    return completion_kwargs


def extract_completion_text(response: Any) -> Optional[str]:
    """Extract the text content from a LiteLLM completion response."""
    try:
        return response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        pass
    try:
        return response.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return None


def extract_json_object(content: str) -> Optional[dict]:
    """Best-effort extraction of a JSON object from model output."""
    try:
        return json.loads(content)
    except ValueError:
        pass
    start = content.find("{")
    end = content.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    snippet = content[start : end + 1]
    try:
        return json.loads(snippet)
    except ValueError:
        return None
