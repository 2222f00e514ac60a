"""LLM input/output tracing.

Writes truncated previews of text sent to and received from auxiliary model
calls, so prompt problems can be debugged without flooding the logs.
"""

from typing import Any, Literal

from loguru import logger

from chatmemory.config.settings import settings


def format_for_log(text: str, max_chars: int | None = None) -> str:
    """Truncate text for logging.

    Args:
        text: Text to preview
        max_chars: Preview length (defaults to settings.llm_trace_max_chars)

    Returns:
        Text unchanged if short enough, otherwise its head plus a truncation marker
    """
    limit = max_chars if max_chars is not None else settings.llm_trace_max_chars
    if len(text) <= limit:
        return text
    return f"{text[:limit]}… [truncated {len(text) - limit} chars]"


def _log_llm_event(label: str, direction: Literal["input", "output"], text: str, metadata: dict[str, Any]) -> None:
    logger.debug(
        "LLM trace",
        event="llm_trace",
        label=label,
        direction=direction,
        length=len(text),
        preview=format_for_log(text),
        **metadata,
    )


def log_llm_input(label: str, text: str, **metadata: Any) -> None:
    _log_llm_event(label, "input", text, metadata)


def log_llm_output(label: str, text: str, **metadata: Any) -> None:
    _log_llm_event(label, "output", text, metadata)
