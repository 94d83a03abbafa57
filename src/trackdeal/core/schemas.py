"""
Pydantic models for API requests and responses.

These models define the data contracts for the HTTP API exposed by
FastAPI. They reuse the enumerations of the ORM models so that the wire
values and the stored values never drift apart. Semantic validation
(empty titles, empty participant lists, blank messages) happens in the
services so that the API reports the precise reason.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import EventType, MessageKind, NegotiationStatus


class CreateNegotiationRequest(BaseModel):
    """Request payload for opening a negotiation."""

    title: str = Field(..., description="Short title, e.g. 'Beat Split'.")
    description: Optional[str] = Field(None, description="Optional free-text description.")
    participants: List[str] = Field(..., description="Identifiers of the participants.")
    ai_assistant_enabled: bool = Field(True, description="Whether messages are analysed by the AI assistant.")


class UpdateNegotiationStatusRequest(BaseModel):
    """Request payload for moving a negotiation to a terminal status."""

    status: str = Field(..., description="Target status: 'completed' or 'cancelled'.")


class NegotiationOut(BaseModel):
    """Response model for a negotiation."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    participants: List[str] = []
    created_by: str
    status: NegotiationStatus
    ai_assistant_enabled: bool
    created_at: datetime
    closed_at: Optional[datetime] = None


class NegotiationDetail(NegotiationOut):
    """Negotiation view including derived conversation state."""

    message_count: int = 0
    analysis_pending: bool = Field(
        False, description="True while an AI analysis task is running for this negotiation."
    )


class PostMessageRequest(BaseModel):
    """Request payload for appending a conversation message."""

    message: str = Field(..., description="Message body.")
    message_type: MessageKind = Field(MessageKind.text, description="Kind of message.")


class ConversationMessageOut(BaseModel):
    """Response model for a conversation message."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    negotiation_id: int
    sequence: int
    sender_id: str
    message: str
    message_type: MessageKind
    sentiment_score: Optional[float] = None
    created_at: datetime


class NegotiationEventOut(BaseModel):
    """Audit event for a negotiation."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    event_type: EventType
    user_id: Optional[str] = None
    payload: Optional[dict] = None
    created_at: datetime


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
    error_code: str
