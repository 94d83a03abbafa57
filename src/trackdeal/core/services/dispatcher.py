"""
Background dispatch of message analysis.

Appending a message schedules an ``asyncio`` task and returns at once.
The task works in its own database sessions, so it only sees messages
whose request transaction has been committed. Whatever goes wrong inside
the task is logged and swallowed: the triggering message simply keeps a
null sentiment score. Tasks still running when the process stops are
lost and are not retried.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from ..config import get_settings
from ..db import get_db_session
from ..events import emit_event
from ..exceptions import AnalysisUnavailable, NegotiationNotActive, SentimentAlreadyAttached, TrackdealError
from ..models import ConversationMessage, EventType, MessageKind
from ..schemas import ConversationMessageOut
from . import conversations
from .analysis import MessageAnalysis, analyze_message
from .broadcast import NegotiationBroadcaster
from .negotiations import get_negotiation

AI_ASSISTANT_ID = "ai-assistant"

logger = logging.getLogger(__name__)


def message_payload(message: ConversationMessage) -> Dict[str, Any]:
    return ConversationMessageOut.model_validate(message).model_dump(mode="json")


def _analysis_input(message: ConversationMessage) -> Dict[str, Any]:
    return {
        "sender_id": message.sender_id,
        "message": message.message,
        "message_type": message.message_type.value,
    }


class AnalysisDispatcher:
    """Run message analysis as fire-and-forget background tasks."""

    def __init__(self, broadcaster: Optional[NegotiationBroadcaster] = None) -> None:
        self._broadcaster = broadcaster
        self._tasks: Dict[int, Set["asyncio.Task[None]"]] = defaultdict(set)

    def should_analyze(self, ai_assistant_enabled: bool, kind: MessageKind) -> bool:
        return ai_assistant_enabled and kind == MessageKind.text

    def schedule(self, negotiation_id: int, message_id: int) -> "asyncio.Task[None]":
        """Start analysing a committed message without waiting for the result."""
        task = asyncio.create_task(
            self._run(negotiation_id, message_id),
            name=f"analysis-{negotiation_id}-{message_id}",
        )
        tasks = self._tasks[negotiation_id]
        tasks.add(task)
        task.add_done_callback(lambda done: self._forget(negotiation_id, done))
        return task

    def _forget(self, negotiation_id: int, task: "asyncio.Task[None]") -> None:
        tasks = self._tasks.get(negotiation_id)
        if tasks is None:
            return
        tasks.discard(task)
        if not tasks:
            del self._tasks[negotiation_id]

    def is_pending(self, negotiation_id: int) -> bool:
        return bool(self._tasks.get(negotiation_id))

    async def drain(self) -> None:
        """Wait until every scheduled analysis has finished."""
        while self._tasks:
            pending: List["asyncio.Task[None]"] = [t for tasks in self._tasks.values() for t in tasks]
            await asyncio.gather(*pending, return_exceptions=True)

    def _publish(self, negotiation_id: int, event: str, payload: Dict[str, Any]) -> None:
        if self._broadcaster is not None:
            self._broadcaster.publish(negotiation_id, event, payload)

    async def _run(self, negotiation_id: int, message_id: int) -> None:
        try:
            await self._analyze(negotiation_id, message_id)
        except AnalysisUnavailable as exc:
            logger.warning("Analysis unavailable for message %s: %s", message_id, exc.message)
            await self._record_failure(negotiation_id, message_id, exc.message)
        except TrackdealError as exc:
            logger.warning("Analysis of message %s abandoned: %s", message_id, exc.message)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error while analysing message %s", message_id)
            await self._record_failure(negotiation_id, message_id, "unexpected error")

    async def _analyze(self, negotiation_id: int, message_id: int) -> None:
        settings = get_settings()
        async with get_db_session() as db:
            negotiation = await get_negotiation(db, negotiation_id)
            message = await conversations.get_message(db, message_id)
            history = await conversations.recent_history(
                db, negotiation_id, message.sequence, settings.analysis_history_limit
            )
            title = negotiation.title
            allow_suggestion = negotiation.ai_assistant_enabled
            target = _analysis_input(message)
            context = [_analysis_input(item) for item in history]

        analysis: MessageAnalysis = await analyze_message(
            negotiation_title=title,
            message=target,
            history=context,
            allow_suggestion=allow_suggestion,
        )

        suggestion: Optional[ConversationMessage] = None
        async with get_db_session() as db:
            try:
                scored = await conversations.attach_sentiment(db, message_id, analysis.sentiment_score)
            except SentimentAlreadyAttached:
                logger.info("Message %s was already scored; keeping the first score", message_id)
                return
            scored_payload = message_payload(scored)
            if analysis.suggestion:
                try:
                    suggestion = await conversations.append_message(
                        db,
                        negotiation_id,
                        AI_ASSISTANT_ID,
                        analysis.suggestion,
                        MessageKind.ai_suggestion,
                    )
                except NegotiationNotActive:
                    logger.info("Negotiation %s closed before the AI suggestion was ready", negotiation_id)
            suggestion_payload = message_payload(suggestion) if suggestion is not None else None

        self._publish(negotiation_id, "sentiment", scored_payload)
        if suggestion_payload is not None:
            self._publish(negotiation_id, "message", suggestion_payload)

    async def _record_failure(self, negotiation_id: int, message_id: int, reason: str) -> None:
        try:
            async with get_db_session() as db:
                await emit_event(
                    db,
                    EventType.analysis_failed,
                    negotiation_id=negotiation_id,
                    payload={"message_id": message_id, "reason": reason},
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not record analysis failure for message %s: %s", message_id, exc)
