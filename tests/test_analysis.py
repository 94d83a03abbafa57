"""
Tests for background message analysis.

The LLM is replaced by the ``fake_llm`` fixture; ``drain()`` waits for the
dispatcher's tasks so the outcome can be asserted deterministically.
"""
import asyncio

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from trackdeal.core.config import get_settings
from trackdeal.core.exceptions import AnalysisUnavailable
from trackdeal.core.services.analysis import analyze_message

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


async def _post(client: AsyncClient, negotiation_id: int, body: str, headers: dict = ALICE) -> dict:
    res = await client.post(
        f"/negotiations/{negotiation_id}/conversations", json={"message": body}, headers=headers
    )
    assert res.status_code == 200, res.text
    return res.json()


async def _messages(client: AsyncClient, negotiation_id: int) -> list:
    res = await client.get(f"/negotiations/{negotiation_id}/conversations", headers=ALICE)
    assert res.status_code == 200
    return res.json()


@pytest.mark.asyncio
async def test_analysis_attaches_sentiment_and_suggestion(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm
) -> None:
    fake_llm.result = {
        "sentiment_score": 0.6,
        "suggestion": "  Consider meeting at 55/45.  ",
        "rationale": "Constructive offer.",
    }
    negotiation = await open_negotiation()
    posted = await _post(client, negotiation["id"], "Let's do 60/40")
    assert posted["sentiment_score"] is None

    await app.state.analysis_dispatcher.drain()

    messages = await _messages(client, negotiation["id"])
    assert len(messages) == 2
    assert messages[0]["id"] == posted["id"]
    assert messages[0]["sentiment_score"] == pytest.approx(0.6)
    suggestion = messages[1]
    assert suggestion["message_type"] == "ai_suggestion"
    assert suggestion["sender_id"] == "ai-assistant"
    assert suggestion["message"] == "Consider meeting at 55/45."
    assert suggestion["sentiment_score"] is None
    # The suggestion itself is not analysed
    assert len(fake_llm.calls) == 1

    detail = (await client.get(f"/negotiations/{negotiation['id']}", headers=ALICE)).json()
    assert detail["analysis_pending"] is False


@pytest.mark.asyncio
async def test_analysis_sends_recent_history(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm
) -> None:
    negotiation = await open_negotiation()
    await _post(client, negotiation["id"], "Opening at 70/30")
    await app.state.analysis_dispatcher.drain()
    await _post(client, negotiation["id"], "Too steep, 50/50", headers=BOB)
    await app.state.analysis_dispatcher.drain()

    assert len(fake_llm.calls) == 2
    prompt = fake_llm.calls[-1]["messages"][-1]["content"]
    assert "Opening at 70/30" in prompt
    assert "Too steep, 50/50" in prompt
    assert fake_llm.calls[-1]["model"] == "test-model"


@pytest.mark.asyncio
async def test_llm_failure_leaves_sentiment_null(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm
) -> None:
    fake_llm.error = RuntimeError("provider down")
    negotiation = await open_negotiation()
    await _post(client, negotiation["id"], "Let's do 60/40")
    await app.state.analysis_dispatcher.drain()

    messages = await _messages(client, negotiation["id"])
    assert len(messages) == 1
    assert messages[0]["sentiment_score"] is None

    events = (await client.get(f"/negotiations/{negotiation['id']}/events", headers=ALICE)).json()
    assert events[-1]["event_type"] == "ANALYSIS_FAILED"
    assert events[-1]["payload"]["message_id"] == messages[0]["id"]


@pytest.mark.parametrize("content", ['{"sentiment_score": 3.0, "suggestion": null}', "not json at all", ""])
@pytest.mark.asyncio
async def test_unusable_output_is_ignored(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm, content: str
) -> None:
    fake_llm.content = content
    negotiation = await open_negotiation()
    await _post(client, negotiation["id"], "Final offer")
    await app.state.analysis_dispatcher.drain()

    messages = await _messages(client, negotiation["id"])
    assert [m["sentiment_score"] for m in messages] == [None]


@pytest.mark.asyncio
async def test_no_analysis_when_assistant_disabled(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm
) -> None:
    negotiation = await open_negotiation(ai_assistant_enabled=False)
    await _post(client, negotiation["id"], "Let's do 60/40")
    await app.state.analysis_dispatcher.drain()

    assert fake_llm.calls == []
    assert (await _messages(client, negotiation["id"]))[0]["sentiment_score"] is None


@pytest.mark.asyncio
async def test_system_messages_are_not_analysed(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm
) -> None:
    negotiation = await open_negotiation()
    res = await client.post(
        f"/negotiations/{negotiation['id']}/conversations",
        json={"message": "Bob joined", "message_type": "system"},
        headers=ALICE,
    )
    assert res.status_code == 200
    await app.state.analysis_dispatcher.drain()
    assert fake_llm.calls == []


@pytest.mark.asyncio
async def test_close_while_analysis_in_flight(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm
) -> None:
    fake_llm.gate = asyncio.Event()
    fake_llm.result = {"sentiment_score": -0.2, "suggestion": "Try 55/45.", "rationale": None}
    negotiation = await open_negotiation()
    path = f"/negotiations/{negotiation['id']}"
    posted = await _post(client, negotiation["id"], "No way")

    pending = (await client.get(path, headers=ALICE)).json()
    assert pending["analysis_pending"] is True

    closed = await client.patch(path, json={"status": "completed"}, headers=ALICE)
    assert closed.status_code == 200

    fake_llm.gate.set()
    await app.state.analysis_dispatcher.drain()

    messages = await _messages(client, negotiation["id"])
    assert [m["id"] for m in messages] == [posted["id"]]
    assert messages[0]["sentiment_score"] == pytest.approx(-0.2)
    assert (await client.get(path, headers=ALICE)).json()["analysis_pending"] is False


@pytest.mark.asyncio
async def test_analysis_timeout(
    app: FastAPI, client: AsyncClient, open_negotiation, fake_llm, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ANALYSIS_TIMEOUT_SECONDS", "0.2")
    get_settings.cache_clear()
    fake_llm.delay = 2.0
    negotiation = await open_negotiation()
    await _post(client, negotiation["id"], "Are you there?")
    await app.state.analysis_dispatcher.drain()

    assert (await _messages(client, negotiation["id"]))[0]["sentiment_score"] is None
    events = (await client.get(f"/negotiations/{negotiation['id']}/events", headers=ALICE)).json()
    assert events[-1]["event_type"] == "ANALYSIS_FAILED"
    assert "timed out" in events[-1]["payload"]["reason"]


@pytest.mark.asyncio
async def test_analyze_message_drops_suggestion_when_not_allowed(fake_llm) -> None:
    fake_llm.result = {"sentiment_score": 0.1, "suggestion": "Split it evenly.", "rationale": None}
    analysis = await analyze_message(
        negotiation_title="Beat Split",
        message={"sender_id": "alice", "message": "Hmm", "message_type": "text"},
        allow_suggestion=False,
    )
    assert analysis.sentiment_score == pytest.approx(0.1)
    assert analysis.suggestion is None


@pytest.mark.asyncio
async def test_analyze_message_extracts_json_from_prose(fake_llm) -> None:
    fake_llm.content = 'Sure! {"sentiment_score": -0.4, "suggestion": "", "rationale": "Terse."} Hope it helps.'
    analysis = await analyze_message(
        negotiation_title="Beat Split",
        message={"sender_id": "bob", "message": "No.", "message_type": "text"},
    )
    assert analysis.sentiment_score == pytest.approx(-0.4)
    assert analysis.suggestion is None


@pytest.mark.asyncio
async def test_analyze_message_requires_a_model(fake_llm, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LITELLM_MODEL", "")
    get_settings.cache_clear()
    with pytest.raises(AnalysisUnavailable):
        await analyze_message(
            negotiation_title="Beat Split",
            message={"sender_id": "bob", "message": "Hi", "message_type": "text"},
        )
    assert fake_llm.calls == []
