"""
Database models for trackdeal.

The ORM classes map negotiations, their participants, the conversation
log and the audit event stream. Models are designed with SQLAlchemy's
asynchronous support in mind: relationships that API responses need are
loaded eagerly (``selectin``) so that no lazy load happens outside of an
awaited statement.

If you modify these models, add an Alembic revision under
``alembic/versions``. For tests and development ``init_db_schema`` can
create tables on the fly.
"""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


IDENTIFIER_LENGTH = 64


class NegotiationStatus(enum.Enum):
    """Lifecycle status of a negotiation."""

    active = "active"
    completed = "completed"
    cancelled = "cancelled"


class MessageKind(enum.Enum):
    """Kinds of conversation message."""

    text = "text"
    ai_suggestion = "ai_suggestion"
    system = "system"


class EventType(enum.Enum):
    """Audit event types."""

    negotiation_created = "NEGOTIATION_CREATED"
    negotiation_status_changed = "NEGOTIATION_STATUS_CHANGED"
    message_appended = "MESSAGE_APPENDED"
    sentiment_attached = "SENTIMENT_ATTACHED"
    analysis_failed = "ANALYSIS_FAILED"


class User(Base):
    """An identity seen on at least one request."""

    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(length=IDENTIFIER_LENGTH), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    negotiations: Mapped[list["Negotiation"]] = relationship("Negotiation", back_populates="creator")


class Negotiation(Base):
    """A bounded conversation between a creator and a set of participants."""

    __tablename__ = "negotiations"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(length=200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[NegotiationStatus] = mapped_column(
        Enum(NegotiationStatus), default=NegotiationStatus.active, nullable=False
    )
    ai_assistant_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Highest message sequence handed out so far
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    creator: Mapped[User] = relationship("User", back_populates="negotiations")
    participant_links: Mapped[list["NegotiationParticipant"]] = relationship(
        "NegotiationParticipant",
        back_populates="negotiation",
        cascade="all, delete-orphan",
        order_by="NegotiationParticipant.position",
        lazy="selectin",
    )
    messages: Mapped[list["ConversationMessage"]] = relationship(
        "ConversationMessage",
        back_populates="negotiation",
        order_by="ConversationMessage.sequence",
    )

    @property
    def participants(self) -> list[str]:
        """Participant identifiers in the order they were supplied."""
        return [link.participant_id for link in self.participant_links]

    def is_member(self, user_id: str) -> bool:
        return user_id == self.created_by or user_id in self.participants


class NegotiationParticipant(Base):
    """Join table holding the ordered participant set of a negotiation."""

    __tablename__ = "negotiation_participants"
    negotiation_id: Mapped[int] = mapped_column(ForeignKey("negotiations.id"), primary_key=True)
    participant_id: Mapped[str] = mapped_column(String(length=IDENTIFIER_LENGTH), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    negotiation: Mapped[Negotiation] = relationship("Negotiation", back_populates="participant_links")


class ConversationMessage(Base):
    """One entry in a negotiation's ordered conversation log."""

    __tablename__ = "negotiation_conversations"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    negotiation_id: Mapped[int] = mapped_column(ForeignKey("negotiations.id"), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[str] = mapped_column(String(length=IDENTIFIER_LENGTH), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageKind] = mapped_column(Enum(MessageKind), default=MessageKind.text, nullable=False)
    sentiment_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    negotiation: Mapped[Negotiation] = relationship("Negotiation", back_populates="messages")

    __table_args__ = (UniqueConstraint("negotiation_id", "sequence", name="uix_conversation_sequence"),)


class Event(Base):
    """Append-only log of application events."""

    __tablename__ = "events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(length=IDENTIFIER_LENGTH), nullable=True)
    negotiation_id: Mapped[Optional[int]] = mapped_column(ForeignKey("negotiations.id"), nullable=True)
    event_type: Mapped[EventType] = mapped_column(Enum(EventType), nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
