"""Logger configuration for the conversation memory engine.

LLM trace records (event="llm_trace") carry previews of conversation text, so
they only reach the sinks when explicitly enabled.
"""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

LLM_TRACE_EVENT = "llm_trace"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level> | {extra}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message} | {extra}"


def make_record_filter(include_llm_trace: bool) -> Callable[[dict[str, Any]], bool]:
    """Build the sink filter.

    Args:
        include_llm_trace: Let LLM input/output previews through

    Returns:
        Filter accepting every record except LLM traces (unless included)
    """

    def record_filter(record: dict[str, Any]) -> bool:
        if include_llm_trace:
            return True
        return record["extra"].get("event") != LLM_TRACE_EVENT

    return record_filter


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    *,
    json_logs: bool = False,
    include_llm_trace: bool = False,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Configure loguru with a console sink and an optional rotating file sink.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        json_logs: Serialize records as JSON lines (structured fields included)
        include_llm_trace: Write LLM input/output previews to the sinks
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
    """
    logger.remove()
    record_filter = make_record_filter(include_llm_trace)

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=not json_logs,
        serialize=json_logs,
        filter=record_filter,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            serialize=json_logs,
            filter=record_filter,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            # Variable values in tracebacks could contain conversation text
            diagnose=False,
        )

    logger.info("Logger initialized", level=level, json_logs=json_logs, include_llm_trace=include_llm_trace)
