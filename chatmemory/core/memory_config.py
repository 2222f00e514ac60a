"""Memory engine knobs.

Process-wide defaults come from settings (MEMORY_* environment variables).
Every knob can be overridden per call.
"""

from dataclasses import dataclass, replace
from typing import TypedDict

from chatmemory.config.settings import settings

# Section headers of the memory block spliced into the main prompt
BACKGROUND_HEADER = "BACKGROUND – PRIOR CONVERSATION SUMMARY (use only if relevant):"
RECENT_TURNS_HEADER = "RECENT RAW TURNS:"


class MemoryOverrides(TypedDict, total=False):
    """Per-call knob overrides. Omitted or None keys fall back to defaults."""

    k_raw_turns: int | None
    summary_token_cap: int | None
    prompt_token_budget: int | None
    chunk_summarize_threshold: int | None


@dataclass(frozen=True)
class MemoryKnobs:
    """Resolved memory knobs.

    Attributes:
        k_raw_turns: Tail window size in turns
        summary_token_cap: Maximum rolling summary size in tokens
        prompt_token_budget: Budget for the composed memory block in tokens
        chunk_summarize_threshold: Uncompacted tokens that trigger compaction
    """

    k_raw_turns: int = 3
    summary_token_cap: int = 500
    prompt_token_budget: int = 3000
    chunk_summarize_threshold: int = 6000


def default_memory_knobs() -> MemoryKnobs:
    return MemoryKnobs(
        k_raw_turns=settings.memory_k_raw_turns,
        summary_token_cap=settings.memory_summary_token_cap,
        prompt_token_budget=settings.memory_prompt_token_budget,
        chunk_summarize_threshold=settings.memory_chunk_summarize_threshold,
    )


def get_memory_knobs(overrides: MemoryOverrides | None = None) -> MemoryKnobs:
    """Resolve knobs from settings defaults plus per-call overrides.

    Args:
        overrides: Optional per-call overrides

    Returns:
        Resolved MemoryKnobs
    """
    knobs = default_memory_knobs()
    if not overrides:
        return knobs
    changes = {key: value for key, value in overrides.items() if value is not None and key in MemoryKnobs.__dataclass_fields__}
    return replace(knobs, **changes)
