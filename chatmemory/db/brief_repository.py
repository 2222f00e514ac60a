"""Persistence for conversation briefs (one row per chat)."""

from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import select

from chatmemory.db.models import ConversationBrief
from chatmemory.db.session import get_session


def get_brief_row(chat_id: str) -> Any | None:
    """Return the raw stored brief payload for a chat, or None if absent.

    The payload is returned as stored; shape normalization happens in the
    caller. Database errors propagate.
    """
    with get_session() as db:
        return db.execute(select(ConversationBrief.brief).where(ConversationBrief.chat_id == chat_id)).scalar_one_or_none()


def upsert_brief_row(chat_id: str, user_id: str, brief: dict[str, Any], token_count: int) -> None:
    """Insert or update the brief row for a chat.

    Args:
        chat_id: Chat ID (unique key)
        user_id: Owner of the chat
        brief: Brief payload to store
        token_count: Estimated token count of the summary

    Raises:
        Any database error (the session is rolled back first)
    """
    now = datetime.now(timezone.utc)
    with get_session() as db:
        row = db.execute(select(ConversationBrief).where(ConversationBrief.chat_id == chat_id)).scalar_one_or_none()
        if row is None:
            db.add(
                ConversationBrief(
                    chat_id=chat_id,
                    user_id=user_id,
                    brief=brief,
                    token_count=token_count,
                    created_at=now,
                    updated_at=now,
                )
            )
            logger.debug("Inserted conversation brief row", chat_id=chat_id)
        else:
            row.user_id = user_id
            row.brief = brief
            row.token_count = token_count
            row.updated_at = now
            logger.debug("Updated conversation brief row", chat_id=chat_id)
