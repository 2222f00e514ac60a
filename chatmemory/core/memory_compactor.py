"""Memory compaction: folding older raw turns into the rolling summary.

Runs after a turn's assistant reply has been saved, never on the request path.

Core invariants:
1. At most one compaction per chat runs at a time in this process
2. The last K turns (the tail window) are never compacted
3. Nothing is partially applied: every failure path is a no-op with a reason
4. The cursor only moves forward, and only after a successful save
5. Retries are implicit: the next turn re-evaluates the same backlog
"""

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from loguru import logger

from chatmemory.core.conversation_brief import Brief, normalize_brief, save_brief
from chatmemory.core.llm_trace import log_llm_input, log_llm_output
from chatmemory.core.memory_config import MemoryOverrides, get_memory_knobs
from chatmemory.core.memory_context import load_turns_since_cursor
from chatmemory.core.memory_metrics import MemoryMetrics, increment_memory_counter, log_memory_metrics
from chatmemory.core.message import Turn
from chatmemory.core.summarization_trigger import should_compact, split_turns_for_compaction
from chatmemory.core.summarizer import Summarizer, get_default_summarizer
from chatmemory.core.token_counting import clamp_text_to_tokens, estimate_tokens
from chatmemory.core.turns import format_summarizer_input, last_assistant_message_id, turn_token_count

CompactionReason = Literal[
    "compacted",
    "in_flight",
    "below_threshold",
    "no_older_turns",
    "openai_error",
    "empty_summary",
    "missing_cursor",
]


@dataclass
class CompactionResult:
    """Outcome of one compaction attempt.

    Attributes:
        compacted: True only after the new brief was saved
        reason: Why compaction did or did not happen
        brief: The new brief (set when compacted)
        total_tokens: Summary tokens + uncompacted turn tokens
        chunk_tokens: Uncompacted turn tokens
        turns_compacted: Number of turns folded into the summary
        tail_retained: Number of turns left verbatim
        error: Summarizer error message (reason == "openai_error")
    """

    compacted: bool
    reason: CompactionReason
    brief: Brief | None = None
    total_tokens: int | None = None
    chunk_tokens: int | None = None
    turns_compacted: int = 0
    tail_retained: int = 0
    error: str | None = None


class CompactionRegistry:
    """Set of chat ids with a compaction currently running in this process.

    A simple mutual-exclusion flag, not a queue: a second request for a chat
    that is already compacting is dropped. Local to one process.
    """

    def __init__(self) -> None:
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()

    def try_acquire(self, chat_id: str) -> bool:
        with self._lock:
            if chat_id in self._in_flight:
                return False
            self._in_flight.add(chat_id)
            return True

    def release(self, chat_id: str) -> None:
        with self._lock:
            self._in_flight.discard(chat_id)

    def is_in_flight(self, chat_id: str) -> bool:
        with self._lock:
            return chat_id in self._in_flight

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)


class MemoryCompactor:
    """Folds the oldest uncompacted turns of a chat into its rolling summary."""

    def __init__(self, registry: CompactionRegistry | None = None, summarizer: Summarizer | None = None) -> None:
        self.registry = registry or CompactionRegistry()
        self._summarizer = summarizer

    @property
    def summarizer(self) -> Summarizer:
        if self._summarizer is None:
            self._summarizer = get_default_summarizer()
        return self._summarizer

    async def maybe_compact(
        self,
        chat_id: str,
        user_id: str,
        brief: Brief | None,
        turns: Sequence[Turn] | None = None,
        overrides: MemoryOverrides | None = None,
    ) -> CompactionResult:
        """Compact the chat's memory if the uncompacted backlog is large enough.

        Args:
            chat_id: Chat ID
            user_id: Owner of the chat
            brief: The chat's current brief
            turns: Turns newer than the brief's cursor; loaded when omitted
            overrides: Optional per-call knob overrides

        Returns:
            CompactionResult with a reason code

        Raises:
            Persistence errors from saving the new brief
        """
        if not self.registry.try_acquire(chat_id):
            logger.info("memory_compaction_skipped", chat_id=chat_id, reason="in_flight", event="memory_compaction_skipped")
            increment_memory_counter("compactions_skipped")
            return CompactionResult(compacted=False, reason="in_flight")

        try:
            return await self._compact(chat_id, user_id, normalize_brief(brief), turns, overrides)
        finally:
            self.registry.release(chat_id)

    async def _compact(
        self,
        chat_id: str,
        user_id: str,
        brief: Brief,
        turns: Sequence[Turn] | None,
        overrides: MemoryOverrides | None,
    ) -> CompactionResult:
        knobs = get_memory_knobs(overrides)
        if turns is None:
            turns = load_turns_since_cursor(chat_id, user_id, brief.cursor)

        chunk_tokens = turn_token_count(turns)
        total_tokens = chunk_tokens + estimate_tokens(brief.summary)

        if not should_compact(total_tokens=total_tokens, turn_count=len(turns), knobs=knobs):
            logger.debug(
                "Compaction below threshold",
                chat_id=chat_id,
                total_tokens=total_tokens,
                threshold=knobs.chunk_summarize_threshold,
                turns=len(turns),
            )
            return CompactionResult(
                compacted=False,
                reason="below_threshold",
                total_tokens=total_tokens,
                chunk_tokens=chunk_tokens,
            )

        older, tail = split_turns_for_compaction(turns, knobs.k_raw_turns)
        if not older:
            return CompactionResult(compacted=False, reason="no_older_turns", total_tokens=total_tokens, chunk_tokens=chunk_tokens)

        summarizer_input = format_summarizer_input(brief.summary, older)
        log_llm_input("memory.summarizer", summarizer_input, chat_id=chat_id, turns=len(older))

        try:
            response_text = await self.summarizer.summarize(summarizer_input, chat_id=chat_id, turn_count=len(older))
        except Exception as e:
            logger.warning(
                "Summarization request failed (non-fatal)",
                chat_id=chat_id,
                error=str(e),
                event="memory_compaction_failed",
            )
            increment_memory_counter("compactions_failed")
            return CompactionResult(
                compacted=False,
                reason="openai_error",
                total_tokens=total_tokens,
                chunk_tokens=chunk_tokens,
                error=str(e),
            )

        if not response_text or not response_text.strip():
            logger.warning("Summarizer returned empty summary", chat_id=chat_id, event="memory_compaction_failed")
            increment_memory_counter("compactions_failed")
            return CompactionResult(compacted=False, reason="empty_summary", total_tokens=total_tokens, chunk_tokens=chunk_tokens)

        log_llm_output("memory.summarizer", response_text, chat_id=chat_id, turns=len(older))

        new_summary = clamp_text_to_tokens(response_text.strip(), knobs.summary_token_cap)
        # TODO: the previous-cursor fallback lets the next pass re-summarize these same turns;
        # advance past user-only turns by message timestamp instead
        new_cursor = last_assistant_message_id(older) or brief.cursor
        if not new_cursor:
            logger.warning("Unable to determine new cursor after summarization", chat_id=chat_id, event="memory_compaction_failed")
            increment_memory_counter("compactions_failed")
            return CompactionResult(compacted=False, reason="missing_cursor", total_tokens=total_tokens, chunk_tokens=chunk_tokens)

        try:
            saved = save_brief(chat_id, user_id, Brief(summary=new_summary, cursor=new_cursor))
        except Exception:
            increment_memory_counter("compactions_failed")
            raise

        increment_memory_counter("summaries_created")
        log_memory_metrics(
            event="memory_compacted",
            metrics=MemoryMetrics(
                chat_id=chat_id,
                uncompacted_turns=len(turns),
                uncompacted_tokens=chunk_tokens,
                summary_tokens=estimate_tokens(saved.summary),
                summary_present=bool(saved.summary),
            ),
            extra={
                "turns_compacted": len(older),
                "tail_retained": len(tail),
                "total_tokens": total_tokens,
            },
        )

        return CompactionResult(
            compacted=True,
            reason="compacted",
            brief=saved,
            total_tokens=total_tokens,
            chunk_tokens=chunk_tokens,
            turns_compacted=len(older),
            tail_retained=len(tail),
        )


_default_compactor: MemoryCompactor | None = None


def get_memory_compactor() -> MemoryCompactor:
    """Process-wide compactor sharing one in-flight registry."""
    global _default_compactor
    if _default_compactor is None:
        _default_compactor = MemoryCompactor()
    return _default_compactor


async def maybe_compact(
    chat_id: str,
    user_id: str,
    brief: Brief | None,
    turns: Sequence[Turn] | None = None,
    overrides: MemoryOverrides | None = None,
) -> CompactionResult:
    """Run maybe_compact on the process-wide compactor."""
    return await get_memory_compactor().maybe_compact(chat_id, user_id, brief, turns=turns, overrides=overrides)
