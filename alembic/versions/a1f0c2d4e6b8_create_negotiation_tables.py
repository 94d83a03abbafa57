"""Create negotiation, participant, conversation and event tables.

Revision ID: a1f0c2d4e6b8
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "a1f0c2d4e6b8"
down_revision = None
branch_labels = None
depends_on = None

negotiation_status = sa.Enum("active", "completed", "cancelled", name="negotiationstatus")
message_kind = sa.Enum("text", "ai_suggestion", "system", name="messagekind")
event_type = sa.Enum(
    "negotiation_created",
    "negotiation_status_changed",
    "message_appended",
    "sentiment_attached",
    "analysis_failed",
    name="eventtype",
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "negotiations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", negotiation_status, nullable=False),
        sa.Column("ai_assistant_enabled", sa.Boolean(), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "negotiation_participants",
        sa.Column("negotiation_id", sa.Integer(), sa.ForeignKey("negotiations.id"), primary_key=True),
        sa.Column("participant_id", sa.String(length=64), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_table(
        "negotiation_conversations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("negotiation_id", sa.Integer(), sa.ForeignKey("negotiations.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("message_type", message_kind, nullable=False),
        sa.Column("sentiment_score", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("negotiation_id", "sequence", name="uix_conversation_sequence"),
    )
    op.create_index(
        "ix_negotiation_conversations_negotiation_id",
        "negotiation_conversations",
        ["negotiation_id"],
    )
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("negotiation_id", sa.Integer(), sa.ForeignKey("negotiations.id"), nullable=True),
        sa.Column("event_type", event_type, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("events")
    op.drop_index("ix_negotiation_conversations_negotiation_id", table_name="negotiation_conversations")
    op.drop_table("negotiation_conversations")
    op.drop_table("negotiation_participants")
    op.drop_table("negotiations")
    op.drop_table("users")
    bind = op.get_bind()
    event_type.drop(bind, checkfirst=True)
    message_kind.drop(bind, checkfirst=True)
    negotiation_status.drop(bind, checkfirst=True)
