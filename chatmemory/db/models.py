from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""


class ChatMessage(Base):
    """User and assistant messages of a chat.

    Written by the chat layer; the memory engine only reads this table.
    """

    __tablename__ = "messages"

    message_id: Mapped[str] = mapped_column(String, primary_key=True)
    chat_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String, nullable=False)  # "user" or "assistant"
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    message_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_messages_chat_user_created_at", "chat_id", "user_id", "created_at"),
    )


class ConversationBrief(Base):
    """Rolling conversation memory (summary + cursor), one row per chat.

    Fields:
      - chat_id: Chat the brief belongs to (unique)
      - user_id: Owner of the chat
      - brief: JSON object {"summary": str, "cursor": str | null}; older rows
        may hold legacy shapes that are normalized on read
      - token_count: Estimated token count of the summary (observability)
    """

    __tablename__ = "conversation_briefs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    brief: Mapped[dict] = mapped_column(JSON, nullable=False)
    token_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (UniqueConstraint("chat_id", name="uq_conversation_briefs_chat_id"),)
