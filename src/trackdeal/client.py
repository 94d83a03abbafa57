"""
HTTP client and conversation poller.

``ConversationPoller`` approximates real-time delivery by re-fetching the
whole conversation log on a fixed interval, the way the web front end
does. A message is visible to its writer immediately and to every other
viewer after at most one poll interval.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .core.config import get_settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when the API answers with an error status."""

    def __init__(self, status_code: int, detail: str, error_code: Optional[str] = None):
        self.status_code = status_code
        self.detail = detail
        self.error_code = error_code
        super().__init__(f"{status_code} {error_code or ''}: {detail}".strip())


class TrackdealClient:
    """Thin async client over the negotiation API."""

    def __init__(
        self,
        user_id: str,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            base_url=base_url or get_settings().app_url,
            headers={"X-User-Id": user_id},
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "TrackdealClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {"detail": resp.text}
            detail = body.get("detail", resp.text)
            raise ApiError(resp.status_code, str(detail), body.get("error_code"))
        return resp.json()

    async def create_negotiation(
        self,
        title: str,
        participants: List[str],
        description: Optional[str] = None,
        ai_assistant_enabled: bool = True,
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/negotiations",
            json={
                "title": title,
                "description": description,
                "participants": participants,
                "ai_assistant_enabled": ai_assistant_enabled,
            },
        )

    async def list_negotiations(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/negotiations")

    async def get_negotiation(self, negotiation_id: int) -> Dict[str, Any]:
        return await self._request("GET", f"/negotiations/{negotiation_id}")

    async def update_status(self, negotiation_id: int, status: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/negotiations/{negotiation_id}", json={"status": status})

    async def post_message(self, negotiation_id: int, message: str, message_type: str = "text") -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/negotiations/{negotiation_id}/conversations",
            json={"message": message, "message_type": message_type},
        )

    async def list_messages(
        self,
        negotiation_id: int,
        after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, int] = {}
        if after is not None:
            params["after"] = after
        if limit is not None:
            params["limit"] = limit
        return await self._request("GET", f"/negotiations/{negotiation_id}/conversations", params=params)

    async def fetch_conversation(self, negotiation_id: int, page_size: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch the full conversation log by following the sequence cursor.

        The server may serve fewer messages than ``page_size`` asks for, so
        only an empty page marks the end of the log.
        """
        messages: List[Dict[str, Any]] = []
        cursor: Optional[int] = None
        while True:
            page = await self.list_messages(negotiation_id, after=cursor, limit=page_size)
            if not page:
                return messages
            messages.extend(page)
            cursor = page[-1]["sequence"]


@dataclass
class PollResult:
    """Changes observed by one poll."""

    new_messages: List[Dict[str, Any]] = field(default_factory=list)
    scored_messages: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.new_messages or self.scored_messages)


class ConversationPoller:
    """Keep a local copy of a conversation fresh by periodic re-fetching."""

    def __init__(
        self,
        client: TrackdealClient,
        negotiation_id: int,
        interval: Optional[float] = None,
        page_size: Optional[int] = None,
    ) -> None:
        self.client = client
        self.negotiation_id = negotiation_id
        self.interval = interval if interval is not None else get_settings().poll_interval_seconds
        self.page_size = page_size
        self._messages: Dict[int, Dict[str, Any]] = {}
        self._stopped = asyncio.Event()

    @property
    def messages(self) -> List[Dict[str, Any]]:
        """The local view of the log, in sequence order."""
        return sorted(self._messages.values(), key=lambda item: item["sequence"])

    async def poll(self) -> PollResult:
        fetched = await self.client.fetch_conversation(self.negotiation_id, page_size=self.page_size)
        result = PollResult()
        for message in fetched:
            known = self._messages.get(message["id"])
            if known is None:
                result.new_messages.append(message)
            elif known.get("sentiment_score") is None and message.get("sentiment_score") is not None:
                result.scored_messages.append(message)
            self._messages[message["id"]] = message
        return result

    def stop(self) -> None:
        self._stopped.set()

    async def run(
        self,
        on_change: Callable[[PollResult], Awaitable[None]],
        max_polls: Optional[int] = None,
    ) -> None:
        """Poll until ``stop()`` is called (or ``max_polls`` polls were made).

        Transient HTTP errors are logged and retried on the next tick.
        """
        polls = 0
        while not self._stopped.is_set():
            try:
                result = await self.poll()
            except httpx.HTTPError as exc:
                logger.warning("Polling negotiation %s failed: %s", self.negotiation_id, exc)
            else:
                if result.changed:
                    await on_change(result)
            polls += 1
            if max_polls is not None and polls >= max_polls:
                return
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
