"""Compaction trigger logic.

Pure, deterministic decision whether the uncompacted history of a chat is
large enough to fold into the rolling summary.

Compaction is triggered only when both hold:
1. summary tokens + uncompacted turn tokens exceed the threshold
2. there are more uncompacted turns than the tail window keeps verbatim

No LLM calls. No DB access.
"""

from collections.abc import Sequence

from chatmemory.core.memory_config import MemoryKnobs
from chatmemory.core.message import Turn


def should_compact(*, total_tokens: int, turn_count: int, knobs: MemoryKnobs) -> bool:
    """Check whether compaction should run.

    Rules:
    - total_tokens <= chunk_summarize_threshold: no (the boundary is a no-op)
    - turn_count <= k_raw_turns: no, compaction would eat the tail window
    - otherwise: yes

    Args:
        total_tokens: Summary tokens + uncompacted turn tokens
        turn_count: Number of uncompacted turns
        knobs: Resolved memory knobs

    Returns:
        True if compaction should run
    """
    if total_tokens <= knobs.chunk_summarize_threshold:
        return False
    return turn_count > knobs.k_raw_turns


def split_turns_for_compaction(turns: Sequence[Turn], k_raw_turns: int) -> tuple[list[Turn], list[Turn]]:
    """Split turns into (older, tail).

    tail is the last k_raw_turns turns; older is everything strictly before it.
    """
    if k_raw_turns <= 0:
        return list(turns), []
    if len(turns) <= k_raw_turns:
        return [], list(turns)
    return list(turns[:-k_raw_turns]), list(turns[-k_raw_turns:])
