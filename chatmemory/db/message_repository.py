"""Read access to the message store for the memory engine.

The memory engine never writes messages; entries are written by the chat layer
before and after the engine runs.
"""

from collections.abc import Collection
from datetime import datetime

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select

from chatmemory.core.message import StoredMessage
from chatmemory.db.models import ChatMessage
from chatmemory.db.session import get_session

MEMORY_ROLES = ("user", "assistant")


def fetch_cursor_timestamp(chat_id: str, user_id: str, message_id: str | None) -> datetime | None:
    """Resolve a cursor message id to its write timestamp.

    Args:
        chat_id: Chat ID
        user_id: Owner of the chat
        message_id: Cursor message id (None means "no cursor")

    Returns:
        created_at of the cursor message, or None when there is no cursor,
        the message is not found, or the lookup fails
    """
    if not message_id:
        return None

    try:
        with get_session() as db:
            return db.execute(
                select(ChatMessage.created_at).where(
                    ChatMessage.chat_id == chat_id,
                    ChatMessage.user_id == user_id,
                    ChatMessage.message_id == message_id,
                )
            ).scalar_one_or_none()
    except Exception:
        logger.exception(f"Failed to load cursor message timestamp (chat_id={chat_id}, message_id={message_id})")
        return None


def _to_stored_message(row: ChatMessage) -> StoredMessage | None:
    try:
        return StoredMessage(
            message_id=row.message_id,
            role=row.role,
            content=row.content,
            metadata=row.message_metadata or {},
            created_at=row.created_at,
        )
    except ValidationError as e:
        logger.warning(
            "Skipping unreadable message row",
            chat_id=row.chat_id,
            message_id=row.message_id,
            error=str(e),
        )
        return None


def fetch_messages_after_cursor(
    chat_id: str,
    user_id: str,
    cursor_message_id: str | None,
    *,
    exclude_message_ids: Collection[str] = (),
) -> list[StoredMessage]:
    """Load user/assistant messages strictly newer than the cursor.

    An absent or unresolvable cursor means "from the beginning".

    Args:
        chat_id: Chat ID
        user_id: Owner of the chat
        cursor_message_id: Newest message already folded into the summary
        exclude_message_ids: Message ids to leave out (e.g. the in-flight user message)

    Returns:
        Messages in ascending created_at order; empty list on read failure
    """
    exclude = {message_id for message_id in exclude_message_ids if message_id}
    cursor_ts = fetch_cursor_timestamp(chat_id, user_id, cursor_message_id)

    try:
        with get_session() as db:
            query = (
                select(ChatMessage)
                .where(
                    ChatMessage.chat_id == chat_id,
                    ChatMessage.user_id == user_id,
                    ChatMessage.role.in_(MEMORY_ROLES),
                )
                .order_by(ChatMessage.created_at.asc())
            )
            if cursor_ts is not None:
                query = query.where(ChatMessage.created_at > cursor_ts)
            rows = db.execute(query).scalars().all()
            messages = [_to_stored_message(row) for row in rows if row.message_id not in exclude]
    except Exception:
        logger.exception(f"Failed to fetch messages after cursor (chat_id={chat_id})")
        return []

    return [message for message in messages if message is not None]
