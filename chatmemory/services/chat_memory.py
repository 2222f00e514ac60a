"""Chat-layer integration of the conversation memory engine.

Call order for one turn:
1. The chat layer writes the user message
2. prepare_memory_for_turn() builds the memory block for the main model call
3. The chat layer streams the reply and saves the assistant message
4. on_assistant_message_saved() schedules compaction in the background

Nothing in this module raises into the user-facing path.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any

from loguru import logger

from chatmemory.core.conversation_brief import Brief, reset_brief
from chatmemory.core.memory_compactor import CompactionResult, MemoryCompactor, get_memory_compactor
from chatmemory.core.memory_config import MemoryOverrides
from chatmemory.core.memory_context import MemoryContext, build_memory_context

# Strong references to running background compactions (tasks are otherwise
# eligible for garbage collection while still pending)
_background_tasks: set[asyncio.Task[Any]] = set()


def prepare_memory_for_turn(
    chat_id: str,
    user_id: str,
    user_message_id: str | None = None,
    overrides: MemoryOverrides | None = None,
) -> MemoryContext:
    """Build the memory context for the next main-model call.

    The just-written user message is excluded so it is not counted twice
    (it is sent to the model as the current input).

    Args:
        chat_id: Chat ID
        user_id: Owner of the chat
        user_message_id: Id of the user message written for this request
        overrides: Optional per-call knob overrides

    Returns:
        The memory context, or an empty one if building it failed
    """
    exclude = [user_message_id] if user_message_id else []
    try:
        return build_memory_context(chat_id, user_id, exclude_message_ids=exclude, overrides=overrides)
    except Exception:
        logger.exception(f"Failed to build memory context, continuing without memory block (chat_id={chat_id})")
        return MemoryContext()


async def run_compaction_safely(
    chat_id: str,
    user_id: str,
    brief: Brief | None,
    compactor: MemoryCompactor | None = None,
    overrides: MemoryOverrides | None = None,
) -> CompactionResult | None:
    """Run one compaction pass inside a logging-only error boundary.

    Returns:
        The CompactionResult, or None if compaction raised
    """
    compactor = compactor or get_memory_compactor()
    try:
        result = await compactor.maybe_compact(chat_id, user_id, brief, overrides=overrides)
    except Exception:
        logger.exception(f"Background memory compaction failed (chat_id={chat_id})")
        return None

    logger.debug(
        "Memory compaction pass finished",
        chat_id=chat_id,
        compacted=result.compacted,
        reason=result.reason,
    )
    return result


def _on_task_done(task: asyncio.Task[Any]) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.warning("Background memory compaction was cancelled", task=task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error("Background memory compaction raised", task=task.get_name())


def spawn_background(coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any] | None:
    """Run a coroutine as a supervised fire-and-forget task.

    If an event loop is running, the coroutine is scheduled as a task whose
    reference is kept until it finishes. Without a running loop (sync callers)
    it runs in a fresh loop on a daemon thread, so the caller never waits.

    Returns:
        The scheduled task, or None if it was handed to a thread
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is None:

        def run_in_thread() -> None:
            try:
                asyncio.run(coro)
            except Exception:
                logger.exception(f"Background task failed ({name})")

        try:
            threading.Thread(target=run_in_thread, name=name, daemon=True).start()
        except Exception:
            coro.close()
            logger.exception(f"Failed to start background thread ({name})")
        return None

    task = loop.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return task


def schedule_compaction(
    chat_id: str,
    user_id: str,
    brief: Brief | None,
    compactor: MemoryCompactor | None = None,
    overrides: MemoryOverrides | None = None,
) -> asyncio.Task[Any] | None:
    """Schedule a compaction pass without blocking the caller."""
    return spawn_background(
        run_compaction_safely(chat_id, user_id, brief, compactor=compactor, overrides=overrides),
        name=f"memory-compaction:{chat_id}",
    )


def on_assistant_message_saved(
    chat_id: str,
    user_id: str,
    brief: Brief | None,
    *,
    save_succeeded: bool,
    compactor: MemoryCompactor | None = None,
) -> asyncio.Task[Any] | None:
    """Hook for the chat layer after it tried to save the assistant reply.

    Also called for partial replies of aborted streams. Compaction is only
    scheduled when the save succeeded, since it must see the saved reply.

    Args:
        chat_id: Chat ID
        user_id: Owner of the chat
        brief: Brief the request's memory context was built from
        save_succeeded: Whether the assistant message was durably saved
        compactor: Optional compactor (defaults to the process-wide one)

    Returns:
        The background task, or None if nothing was scheduled on a loop
    """
    if not save_succeeded:
        logger.debug("Assistant message not saved, skipping compaction", chat_id=chat_id)
        return None
    return schedule_compaction(chat_id, user_id, brief, compactor=compactor)


def reset_conversation_memory(chat_id: str, user_id: str) -> bool:
    """Reset the memory of a chat whose identity is being reused.

    Returns:
        True if the reset was saved, False if it failed (logged)
    """
    try:
        reset_brief(chat_id, user_id)
    except Exception:
        logger.exception(f"Failed to reset memory for reused chat (chat_id={chat_id})")
        return False
    return True


def pending_background_tasks() -> int:
    return len(_background_tasks)
