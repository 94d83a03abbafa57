"""
Shared fixtures.

Every test gets its own SQLite database file, a fresh settings/engine
cache and a fake LLM in place of ``acompletion_with_retry``.
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from trackdeal.api.main import create_app
from trackdeal.core.config import get_settings
from trackdeal.core.db import dispose_engine, get_async_session_factory, get_engine, init_db_schema


@pytest.fixture(autouse=True)
def set_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Point the app at a throwaway SQLite database."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'trackdeal.db'}")
    monkeypatch.setenv("TRACKDEAL_ENV", "test")
    monkeypatch.setenv("TRACKDEAL_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("LITELLM_MODEL", "test-model")
    monkeypatch.setenv("LITELLM_API_KEY", "")
    monkeypatch.setenv("ANALYSIS_TIMEOUT_SECONDS", "5")
    # Recreate cached settings and engine so the new env takes effect
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_async_session_factory.cache_clear()


class FakeLLM:
    """Stand-in for the LiteLLM call used by the analysis service."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.result: dict = {"sentiment_score": 0.5, "suggestion": None, "rationale": "Friendly."}
        self.content: Optional[str] = None
        self.error: Optional[Exception] = None
        self.delay: float = 0.0
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, **kwargs: Any) -> dict:
        self.calls.append(kwargs)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        content = self.content if self.content is not None else json.dumps(self.result)
        return {"choices": [{"message": {"content": content}}]}


@pytest.fixture(autouse=True)
def fake_llm(monkeypatch: pytest.MonkeyPatch) -> FakeLLM:
    llm = FakeLLM()
    monkeypatch.setattr("trackdeal.core.services.analysis.acompletion_with_retry", llm)
    # Force the plain JSON path instead of Instructor's structured output
    monkeypatch.setitem(sys.modules, "instructor", None)
    return llm


@pytest.fixture()
async def app(set_test_env: None) -> AsyncIterator[FastAPI]:
    """Create the FastAPI app with an initialised schema."""
    application = create_app()
    await init_db_schema()
    yield application
    await application.state.analysis_dispatcher.drain()
    await dispose_engine()


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


OpenNegotiation = Callable[..., Awaitable[dict]]


@pytest.fixture()
def open_negotiation(client: AsyncClient) -> OpenNegotiation:
    """Return a helper that opens a negotiation through the API."""

    async def _open(
        user_id: str = "alice",
        title: str = "Beat Split",
        participants: Optional[list] = None,
        ai_assistant_enabled: bool = True,
        description: Optional[str] = None,
    ) -> dict:
        res = await client.post(
            "/negotiations",
            json={
                "title": title,
                "description": description,
                "participants": participants if participants is not None else ["alice", "bob"],
                "ai_assistant_enabled": ai_assistant_enabled,
            },
            headers={"X-User-Id": user_id},
        )
        assert res.status_code == 200, res.text
        return res.json()

    return _open
