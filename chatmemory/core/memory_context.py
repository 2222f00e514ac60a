"""Memory context builder.

Assembles the memory block spliced into the next main-model call from:
- the chat's rolling summary (clamped to the summary cap), and
- the last K raw turns newer than the brief's cursor (the tail window)

while keeping the block within the prompt token budget. Degradation order when
over budget:
1. Drop the oldest tail turn, one at a time, until one turn remains
2. Shrink the summary into whatever headroom the remaining tail leaves

Budget exhaustion after step 2 is accepted and reported via metadata. Reads
never mutate memory state.
"""

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field

from loguru import logger

from chatmemory.core.conversation_brief import Brief, load_brief
from chatmemory.core.memory_config import (
    BACKGROUND_HEADER,
    RECENT_TURNS_HEADER,
    MemoryKnobs,
    MemoryOverrides,
    get_memory_knobs,
)
from chatmemory.core.memory_metrics import MemoryMetrics, increment_memory_counter, log_memory_metrics
from chatmemory.core.message import Turn
from chatmemory.core.token_counting import CHARS_PER_TOKEN, clamp_text_to_tokens, estimate_tokens
from chatmemory.core.turns import format_turns_block, group_messages_into_turns, turn_token_count
from chatmemory.db.message_repository import fetch_messages_after_cursor


@dataclass
class MemoryContext:
    """Memory block for one request plus bookkeeping. Never persisted.

    Attributes:
        brief: Brief the context was built from
        turns: All turns newer than the brief's cursor
        tail_turns: Turns actually included verbatim
        memory_text: Composed memory block
        summary_text: Summary actually included (possibly truncated)
        dropped_tail_turns: Tail turns dropped to meet the budget
        summary_was_truncated: Summary was shrunk below its normal cap
        chunk_token_count: Tokens of all uncompacted turns
        within_budget: Block fits the prompt budget (False only at the
            accepted floor: one tail turn left and the summary shrunk)
    """

    brief: Brief = field(default_factory=Brief)
    turns: list[Turn] = field(default_factory=list)
    tail_turns: list[Turn] = field(default_factory=list)
    memory_text: str = ""
    summary_text: str = ""
    dropped_tail_turns: int = 0
    summary_was_truncated: bool = False
    chunk_token_count: int = 0
    within_budget: bool = True

    @property
    def memory_tokens(self) -> int:
        return estimate_tokens(self.memory_text)


def compose_memory_block(summary: str, tail_turns: Sequence[Turn]) -> str:
    """Compose the memory block text.

    Args:
        summary: Summary text (omitted when empty)
        tail_turns: Tail turns in chronological order

    Returns:
        Background section (if any) followed by the recent turns section
    """
    sections = []
    if summary:
        sections.append(f"{BACKGROUND_HEADER}\n{summary}".strip())
    if tail_turns:
        sections.append(f"{RECENT_TURNS_HEADER}\n{format_turns_block(tail_turns)}".strip())
    return "\n\n".join(sections).strip()


def summary_headroom(tail_turns: Sequence[Turn], prompt_token_budget: int) -> int:
    """Tokens left for the summary text once the tail and all framing are counted.

    Framing is the background header, its newline and the separator before the
    recent turns section. A summary clamped to this many tokens keeps the whole
    block within the budget.
    """
    # One placeholder character stands in for the summary
    frame_chars = len(compose_memory_block("#", tail_turns)) - 1
    available_chars = prompt_token_budget * CHARS_PER_TOKEN - frame_chars
    return max(0, available_chars // CHARS_PER_TOKEN)


def assemble_memory_context(brief: Brief, turns: Sequence[Turn], knobs: MemoryKnobs) -> MemoryContext:
    """Build the memory context from an already loaded brief and turns.

    Pure function: no storage access.

    Args:
        brief: The chat's brief
        turns: Turns newer than the brief's cursor, chronological
        knobs: Resolved memory knobs

    Returns:
        MemoryContext within the prompt budget, or at the accepted floor
    """
    initial_summary = clamp_text_to_tokens(brief.summary, knobs.summary_token_cap)
    summary_for_prompt = initial_summary
    tail_turns = list(turns[-knobs.k_raw_turns :]) if knobs.k_raw_turns > 0 else []
    dropped_tail_turns = 0

    memory_text = compose_memory_block(summary_for_prompt, tail_turns)

    while estimate_tokens(memory_text) > knobs.prompt_token_budget and len(tail_turns) > 1:
        tail_turns = tail_turns[1:]
        dropped_tail_turns += 1
        memory_text = compose_memory_block(summary_for_prompt, tail_turns)

    if estimate_tokens(memory_text) > knobs.prompt_token_budget and summary_for_prompt:
        headroom = summary_headroom(tail_turns, knobs.prompt_token_budget)
        summary_for_prompt = clamp_text_to_tokens(summary_for_prompt.strip(), min(knobs.summary_token_cap, headroom))
        memory_text = compose_memory_block(summary_for_prompt, tail_turns)

    return MemoryContext(
        brief=brief,
        turns=list(turns),
        tail_turns=tail_turns,
        memory_text=memory_text,
        summary_text=summary_for_prompt,
        dropped_tail_turns=dropped_tail_turns,
        summary_was_truncated=summary_for_prompt != initial_summary,
        chunk_token_count=turn_token_count(turns),
        within_budget=estimate_tokens(memory_text) <= knobs.prompt_token_budget,
    )


def load_turns_since_cursor(
    chat_id: str,
    user_id: str,
    cursor: str | None,
    *,
    exclude_message_ids: Collection[str] = (),
) -> list[Turn]:
    """Load and group the turns strictly newer than the cursor."""
    messages = fetch_messages_after_cursor(chat_id, user_id, cursor, exclude_message_ids=exclude_message_ids)
    return group_messages_into_turns(messages)


def build_memory_context(
    chat_id: str,
    user_id: str,
    exclude_message_ids: Collection[str] = (),
    overrides: MemoryOverrides | None = None,
) -> MemoryContext:
    """Build the memory context for the next main-model call.

    Args:
        chat_id: Chat ID
        user_id: Owner of the chat
        exclude_message_ids: Message ids to leave out (e.g. the user message
            just written for this request)
        overrides: Optional per-call knob overrides

    Returns:
        MemoryContext for this request
    """
    knobs = get_memory_knobs(overrides)
    brief = load_brief(chat_id)
    turns = load_turns_since_cursor(chat_id, user_id, brief.cursor, exclude_message_ids=exclude_message_ids)

    context = assemble_memory_context(brief, turns, knobs)

    increment_memory_counter("contexts_built")
    if context.dropped_tail_turns:
        increment_memory_counter("tail_turns_dropped", by=context.dropped_tail_turns)
    if context.summary_was_truncated:
        increment_memory_counter("summary_truncations")
        logger.warning(
            "Memory block still over budget after dropping tail turns, summary shrunk",
            chat_id=chat_id,
            prompt_token_budget=knobs.prompt_token_budget,
            memory_tokens=context.memory_tokens,
        )

    log_memory_metrics(
        event="memory_context_built",
        metrics=MemoryMetrics(
            chat_id=chat_id,
            uncompacted_turns=len(context.turns),
            uncompacted_tokens=context.chunk_token_count,
            memory_tokens=context.memory_tokens,
            summary_tokens=estimate_tokens(context.summary_text),
            summary_present=bool(context.summary_text),
        ),
        extra={
            "tail_turns": len(context.tail_turns),
            "dropped_tail_turns": context.dropped_tail_turns,
            "summary_was_truncated": context.summary_was_truncated,
        },
    )
    return context
