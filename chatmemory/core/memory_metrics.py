"""Conversation memory observability.

Structured logging and in-process counters for memory operations. No side
effects beyond logging. Never logs raw user content.
"""

from dataclasses import dataclass

from loguru import logger


@dataclass
class MemoryMetrics:
    """Memory metrics for one conversation operation.

    All fields but chat_id are optional to allow partial metrics in different contexts.
    """

    chat_id: str
    uncompacted_turns: int = 0
    uncompacted_tokens: int = 0
    memory_tokens: int | None = None
    summary_tokens: int | None = None
    summary_present: bool = False


def log_memory_metrics(
    *,
    event: str,
    metrics: MemoryMetrics,
    extra: dict[str, str | int | float | bool | None] | None = None,
) -> None:
    """Log memory metrics with structured format.

    Args:
        event: Event name (e.g., "memory_context_built", "memory_compacted")
        metrics: MemoryMetrics with conversation metrics
        extra: Optional extra fields to include in log
    """
    log_data: dict[str, str | int | float | bool | None] = {
        "event": event,
        "chat_id": metrics.chat_id,
        "uncompacted_turns": metrics.uncompacted_turns,
        "uncompacted_tokens": metrics.uncompacted_tokens,
        "summary_present": metrics.summary_present,
    }

    if metrics.memory_tokens is not None:
        log_data["memory_tokens"] = metrics.memory_tokens

    if metrics.summary_tokens is not None:
        log_data["summary_tokens"] = metrics.summary_tokens

    if extra:
        log_data.update(extra)

    logger.info(event, **log_data)


# In-process counters (reset on restart)
MEMORY_COUNTERS: dict[str, int] = {
    "contexts_built": 0,
    "summaries_created": 0,
    "compactions_skipped": 0,
    "compactions_failed": 0,
    "tail_turns_dropped": 0,
    "summary_truncations": 0,
}


def increment_memory_counter(counter_name: str, by: int = 1) -> None:
    """Increment a memory counter.

    Args:
        counter_name: Counter name (must be in MEMORY_COUNTERS)
        by: Increment amount
    """
    if counter_name in MEMORY_COUNTERS:
        MEMORY_COUNTERS[counter_name] += by
    else:
        logger.warning(
            "Attempted to increment unknown memory counter",
            counter_name=counter_name,
            available_counters=list(MEMORY_COUNTERS.keys()),
        )


def reset_memory_counters() -> None:
    for name in MEMORY_COUNTERS:
        MEMORY_COUNTERS[name] = 0


def log_memory_counters_snapshot() -> None:
    """Log current memory counter values."""
    logger.info("memory_counters_snapshot", **MEMORY_COUNTERS)
