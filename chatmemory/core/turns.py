"""Turn assembly and turn formatting.

Groups a flat, time-ordered sequence of user/assistant entries into turns and
renders turns for the main prompt and for the summarizer. No storage access.
"""

from collections.abc import Iterable, Sequence

from chatmemory.core.message import StoredMessage, Turn
from chatmemory.core.token_counting import estimate_tokens

NO_CONTENT_PLACEHOLDER = "[no content captured]"
NO_USER_MESSAGE = "[No user message recorded]"
NO_ASSISTANT_REPLY = "[No assistant reply recorded]"


def group_messages_into_turns(messages: Iterable[StoredMessage]) -> list[Turn]:
    """Group messages into turns.

    A "turn" is one user message + the following assistant message.
    This function:
    - Opens a pending turn on each user message (flushing a still-pending
      user message as a user-only turn first)
    - Closes the pending turn on an assistant message, or emits an
      assistant-only turn when nothing is pending
    - Emits a trailing unanswered user message as a final user-only turn

    Args:
        messages: Messages in chronological order (oldest first)

    Returns:
        Turns in chronological order
    """
    turns: list[Turn] = []
    pending_user: StoredMessage | None = None

    for message in messages:
        if message.role == "user":
            if pending_user is not None:
                turns.append(Turn(user=pending_user))
            pending_user = message
        elif message.role == "assistant":
            turns.append(Turn(user=pending_user, assistant=message))
            pending_user = None

    if pending_user is not None:
        turns.append(Turn(user=pending_user))

    return turns


def turn_token_count(turns: Sequence[Turn]) -> int:
    """Sum of estimated tokens of every user and assistant text in the turns."""
    return sum(estimate_tokens(turn.user_text) + estimate_tokens(turn.assistant_text) for turn in turns)


def last_assistant_message_id(turns: Sequence[Turn]) -> str | None:
    """Return the id of the newest assistant entry in the turns, if any."""
    for turn in reversed(turns):
        if turn.assistant_message_id:
            return turn.assistant_message_id
    return None


def format_turn_for_prompt(turn: Turn, *, heading_index: int | None = None) -> str:
    """Render a turn as ``User: ...`` / ``Assistant: ...`` lines.

    The assistant label carries the model variant when one was recorded, e.g.
    ``Assistant (fast): ...``.

    Args:
        turn: Turn to render
        heading_index: If set, prefix the block with ``Turn N:`` (1-based)

    Returns:
        Rendered turn text
    """
    lines: list[str] = []
    if heading_index is not None:
        lines.append(f"Turn {heading_index + 1}:")

    user_text = turn.user_text if turn.user_text.strip() else None
    assistant_text = turn.assistant_text if turn.assistant_text.strip() else None

    if user_text:
        lines.append(f"User: {user_text}")

    if assistant_text:
        label = f"Assistant ({turn.variant})" if turn.variant else "Assistant"
        lines.append(f"{label}: {assistant_text}")

    if not user_text and not assistant_text:
        lines.append(f"User: {NO_CONTENT_PLACEHOLDER}")
        lines.append(f"Assistant: {NO_CONTENT_PLACEHOLDER}")

    return "\n".join(lines)


def format_turns_block(turns: Sequence[Turn], *, include_headings: bool = False) -> str:
    """Render turns separated by blank lines."""
    return "\n\n".join(
        format_turn_for_prompt(turn, heading_index=idx if include_headings else None) for idx, turn in enumerate(turns)
    )


def format_summarizer_input(existing_summary: str, turns: Sequence[Turn]) -> str:
    """Build the text input for the rolling summarizer.

    Args:
        existing_summary: Current rolling summary (may be empty)
        turns: Turns being folded into the summary

    Returns:
        Delimited input with the existing summary (or NONE) and numbered turns
    """
    summary_section = existing_summary.strip() if existing_summary and existing_summary.strip() else "NONE"

    turn_sections = []
    for idx, turn in enumerate(turns):
        user_text = turn.user_text.strip() or NO_USER_MESSAGE
        assistant_text = turn.assistant_text.strip() or NO_ASSISTANT_REPLY
        turn_sections.append(f"Turn {idx + 1}:\nUser: {user_text}\nAssistant: {assistant_text}")
    turns_section = "\n\n".join(turn_sections)

    return (
        f"=== EXISTING_SUMMARY ===\n{summary_section}\n=== END_EXISTING_SUMMARY ===\n\n"
        f"=== NEW_TURNS ===\n{turns_section}\n=== END_NEW_TURNS ==="
    )
