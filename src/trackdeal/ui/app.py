"""
Streamlit UI for trackdeal negotiations.

Run with ``streamlit run src/trackdeal/ui/app.py``. The conversation
panel re-fetches the log every ``POLL_INTERVAL_SECONDS`` while a
negotiation is open.
"""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx
import streamlit as st


API_BASE_URL = os.environ.get("TRACKDEAL_API_URL", "http://localhost:8000")
POLL_INTERVAL_SECONDS = float(os.environ.get("POLL_INTERVAL_SECONDS", "3"))


def _headers(user_id: str) -> Dict[str, str]:
    return {"X-User-Id": user_id}


def _api_get(path: str, user_id: str, params: Optional[dict] = None) -> httpx.Response:
    with httpx.Client(timeout=10.0) as client:
        return client.get(f"{API_BASE_URL}{path}", headers=_headers(user_id), params=params)


def _api_post(path: str, user_id: str, payload: Optional[dict] = None) -> httpx.Response:
    with httpx.Client(timeout=10.0) as client:
        return client.post(f"{API_BASE_URL}{path}", headers=_headers(user_id), json=payload or {})


def _api_patch(path: str, user_id: str, payload: Optional[dict] = None) -> httpx.Response:
    with httpx.Client(timeout=10.0) as client:
        return client.patch(f"{API_BASE_URL}{path}", headers=_headers(user_id), json=payload or {})


def _error_detail(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("detail", resp.text))
    except ValueError:
        return resp.text


def _ensure_state() -> None:
    if "user_id" not in st.session_state:
        st.session_state.user_id = "alice"
    if "negotiation_id" not in st.session_state:
        st.session_state.negotiation_id = None


def _sentiment_label(score: Optional[float]) -> str:
    if score is None:
        return ""
    if score > 0.3:
        trend = "positive"
    elif score < -0.3:
        trend = "tense"
    else:
        trend = "neutral"
    return f"{trend} {score * 100:.0f}%"


def _fetch_conversation(negotiation_id: int) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    after: Optional[int] = None
    while True:
        params = {"after": after} if after is not None else None
        resp = _api_get(f"/negotiations/{negotiation_id}/conversations", st.session_state.user_id, params)
        if resp.status_code != 200:
            st.error(f"Failed to load conversation: {_error_detail(resp)}")
            return messages
        page = resp.json()
        if not page:
            return messages
        messages.extend(page)
        after = page[-1]["sequence"]


def _render_sidebar() -> None:
    st.markdown("### User")
    user_id = st.text_input("User ID", value=st.session_state.user_id)
    if user_id != st.session_state.user_id:
        st.session_state.user_id = user_id
        st.session_state.negotiation_id = None
    st.markdown("### Negotiations")
    resp = _api_get("/negotiations", st.session_state.user_id)
    if resp.status_code != 200:
        st.error(_error_detail(resp))
        return
    for item in resp.json():
        label = f"{item['title']} ({item['status']})"
        if st.button(label, key=f"open_{item['id']}"):
            st.session_state.negotiation_id = item["id"]
    if st.button("New negotiation"):
        st.session_state.negotiation_id = None


def _render_create_form() -> None:
    st.subheader("New negotiation")
    with st.form("create_negotiation"):
        title = st.text_input("Title", placeholder="Enter negotiation title")
        description = st.text_area("Description", placeholder="Describe the negotiation details")
        participants = st.text_input("Participants", placeholder="Enter participant IDs (comma-separated)")
        ai_enabled = st.toggle("Enable AI-powered negotiation assistance", value=True)
        submitted = st.form_submit_button("Create")
    if not submitted:
        return
    resp = _api_post(
        "/negotiations",
        st.session_state.user_id,
        {
            "title": title,
            "description": description,
            "participants": [p.strip() for p in participants.split(",") if p.strip()],
            "ai_assistant_enabled": ai_enabled,
        },
    )
    if resp.status_code == 200:
        st.session_state.negotiation_id = resp.json()["id"]
        st.rerun()
    else:
        st.error(_error_detail(resp))


@st.fragment(run_every=POLL_INTERVAL_SECONDS)
def _render_conversation(negotiation_id: int) -> None:
    resp = _api_get(f"/negotiations/{negotiation_id}", st.session_state.user_id)
    if resp.status_code != 200:
        st.error(_error_detail(resp))
        return
    negotiation = resp.json()
    for message in _fetch_conversation(negotiation_id):
        if message["message_type"] == "ai_suggestion":
            role, name = "assistant", "AI Suggestion"
        elif message["message_type"] == "system":
            role, name = "assistant", "System"
        else:
            role = "user" if message["sender_id"] == st.session_state.user_id else "assistant"
            name = message["sender_id"]
        with st.chat_message(role):
            st.caption(f"{name} · {_sentiment_label(message.get('sentiment_score'))}")
            st.markdown(message["message"])
    if negotiation.get("analysis_pending"):
        st.caption("AI is analysing the conversation…")


def _render_detail(negotiation_id: int) -> None:
    resp = _api_get(f"/negotiations/{negotiation_id}", st.session_state.user_id)
    if resp.status_code != 200:
        st.error("Negotiation not found")
        return
    negotiation = resp.json()
    st.subheader(negotiation["title"])
    if negotiation.get("description"):
        st.write(negotiation["description"])
    st.caption(
        f"Status: {negotiation['status']} · Created by {negotiation['created_by']} · "
        f"Participants: {', '.join(negotiation['participants'])}"
    )
    _render_conversation(negotiation_id)
    active = negotiation["status"] == "active"
    prompt = st.chat_input("Type your message…", disabled=not active)
    if prompt:
        post = _api_post(
            f"/negotiations/{negotiation_id}/conversations",
            st.session_state.user_id,
            {"message": prompt, "message_type": "text"},
        )
        if post.status_code != 200:
            st.error(f"Failed to send message: {_error_detail(post)}")
        st.rerun()
    if active:
        col_done, col_cancel = st.columns(2)
        for column, target, label in (
            (col_done, "completed", "Mark as completed"),
            (col_cancel, "cancelled", "Cancel negotiation"),
        ):
            if column.button(label):
                patch = _api_patch(f"/negotiations/{negotiation_id}", st.session_state.user_id, {"status": target})
                if patch.status_code != 200:
                    st.error(f"Failed to update status: {_error_detail(patch)}")
                else:
                    st.rerun()


def main() -> None:
    st.set_page_config(page_title="trackdeal", layout="wide")
    _ensure_state()
    with st.sidebar:
        _render_sidebar()
    if st.session_state.negotiation_id is None:
        _render_create_form()
    else:
        _render_detail(st.session_state.negotiation_id)


main()
