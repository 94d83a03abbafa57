"""
LLM-backed message analysis.

Scores the tone of a conversation message and, when it helps the
negotiation along, drafts a suggested reply. Instructor is used for
structured output when available; otherwise the raw completion is parsed
as JSON. Every failure mode is reported as ``AnalysisUnavailable`` so the
caller has a single thing to handle.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..config import get_settings
from ..exceptions import AnalysisUnavailable
from .llm_utils import (
    acompletion_with_retry,
    build_completion_kwargs,
    extract_completion_text,
    extract_json_object,
)

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """You are the Negotiation Analyst for a music-industry contract platform.
Artists, producers and managers negotiate split sheets, performance fees,
producer points and management terms in a shared conversation.
Given the latest message and the recent history:
- Rate the sentiment of the latest message from -1.0 (hostile) to 1.0 (very positive).
- If a short, neutral suggestion would help the parties reach agreement, write it.
  Otherwise leave suggestion null. Never invent terms nobody has mentioned.
Output JSON only: {"sentiment_score": 0.0, "suggestion": null, "rationale": "..."}
"""


class MessageAnalysis(BaseModel):
    """Structured analysis output for one message."""

    sentiment_score: float = Field(..., ge=-1.0, le=1.0, description="Tone of the message.")
    suggestion: Optional[str] = Field(None, description="Optional suggested reply for the parties.")
    rationale: Optional[str] = Field(None, description="Short explanation of the score.")


def _build_payload(
    negotiation_title: str,
    message: Dict[str, Any],
    history: Sequence[Dict[str, Any]],
    allow_suggestion: bool,
) -> Dict[str, Any]:
    return {
        "negotiation": negotiation_title,
        "latest_message": message,
        "history": list(history),
        "suggestions_enabled": allow_suggestion,
    }


async def _complete(completion_kwargs: Dict[str, Any]) -> MessageAnalysis:
    try:
        from instructor import from_litellm

        client = from_litellm(acompletion_with_retry)
        return await client.create(response_model=MessageAnalysis, **completion_kwargs)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Instructor analysis failed; falling back to raw completion. Error: %s", exc)
    response = await acompletion_with_retry(**completion_kwargs)
    content = extract_completion_text(response)
    if not content:
        raise AnalysisUnavailable("LiteLLM returned an empty analysis.")
    try:
        return MessageAnalysis.model_validate_json(content)
    except PydanticValidationError:
        extracted = extract_json_object(content)
        if extracted is None:
            raise AnalysisUnavailable("Analysis output was not valid JSON.")
        try:
            return MessageAnalysis.model_validate(extracted)
        except PydanticValidationError as exc:
            raise AnalysisUnavailable(f"Analysis output failed validation: {exc}") from exc


async def analyze_message(
    *,
    negotiation_title: str,
    message: Dict[str, Any],
    history: Optional[List[Dict[str, Any]]] = None,
    allow_suggestion: bool = True,
) -> MessageAnalysis:
    """Score a message and optionally draft a suggestion.

    :param negotiation_title: Title of the negotiation, for context.
    :param message: ``{"sender_id", "message", "message_type"}`` of the message to score.
    :param history: Earlier messages in the same shape, oldest first.
    :param allow_suggestion: When false any suggestion in the output is dropped.
    :raises AnalysisUnavailable: no model configured, timeout, provider
        error or unusable output.
    """
    settings = get_settings()
    if not settings.litellm_model:
        raise AnalysisUnavailable("LiteLLM model is not configured; cannot analyse messages.")
    payload = _build_payload(negotiation_title, message, history or [], allow_suggestion)
    completion_kwargs = build_completion_kwargs(
        [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(payload, default=str)},
        ],
        temperature=0.2,
    )
    try:
        analysis = await asyncio.wait_for(
            _complete(completion_kwargs), timeout=settings.analysis_timeout_seconds
        )
    except AnalysisUnavailable:
        raise
    except asyncio.TimeoutError as exc:
        raise AnalysisUnavailable(
            f"Analysis timed out after {settings.analysis_timeout_seconds}s"
        ) from exc
    except Exception as exc:  # noqa: BLE001
        raise AnalysisUnavailable(f"Analysis provider error: {exc}") from exc
    suggestion = (analysis.suggestion or "").strip() or None
    if not allow_suggestion:
        suggestion = None
    return analysis.model_copy(update={"suggestion": suggestion})
