"""Admin CLI for conversation memory.

Inspect, reset and manually compact chat memory. Summary content is only
printed on request.
"""

import asyncio

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from chatmemory.config.settings import settings
from chatmemory.core.conversation_brief import load_brief
from chatmemory.core.logger import setup_logger
from chatmemory.core.memory_compactor import MemoryCompactor
from chatmemory.core.memory_config import MemoryOverrides, get_memory_knobs
from chatmemory.core.memory_context import load_turns_since_cursor
from chatmemory.core.memory_metrics import log_memory_counters_snapshot
from chatmemory.core.token_counting import estimate_tokens
from chatmemory.core.turns import turn_token_count
from chatmemory.db.session import create_tables
from chatmemory.services.chat_memory import reset_conversation_memory

console = Console()

app = typer.Typer(
    name="chatmemory",
    help="Conversation memory admin CLI",
    add_completion=False,
)


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Logging level"),
    json_logs: bool = typer.Option(settings.log_json, "--json-logs", help="Write logs as JSON lines"),
    llm_trace: bool = typer.Option(settings.log_llm_trace, "--llm-trace", help="Log summarizer input/output previews"),
) -> None:
    setup_logger(
        level=log_level.upper(),
        log_file=settings.log_file,
        json_logs=json_logs,
        include_llm_trace=llm_trace,
    )


@app.command("init-db")
def init_db() -> None:
    """Create the memory tables if they do not exist."""
    create_tables()
    console.print("[green]Tables ready[/green]")


@app.command()
def inspect(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    user_id: str | None = typer.Option(None, "--user-id", help="Owner of the chat (enables backlog stats)"),
    show_summary: bool = typer.Option(False, "--show-summary", help="Print the summary text"),
) -> None:
    """Show the memory state of a chat."""
    brief = load_brief(chat_id)
    knobs = get_memory_knobs()

    table = Table(title=f"Memory for {chat_id}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("cursor", brief.cursor or "-")
    table.add_row("summary_tokens", str(estimate_tokens(brief.summary)))
    table.add_row("summary_chars", str(len(brief.summary)))

    if user_id:
        turns = load_turns_since_cursor(chat_id, user_id, brief.cursor)
        backlog_tokens = turn_token_count(turns) + estimate_tokens(brief.summary)
        table.add_row("uncompacted_turns", str(len(turns)))
        table.add_row("uncompacted_tokens", str(backlog_tokens))
        table.add_row("threshold", str(knobs.chunk_summarize_threshold))

    console.print(table)
    if show_summary:
        console.print(brief.summary or "[dim](empty summary)[/dim]")


@app.command()
def reset(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    user_id: str = typer.Option(..., "--user-id", help="Owner of the chat"),
) -> None:
    """Reset a chat's memory to the empty state."""
    if not reset_conversation_memory(chat_id, user_id):
        console.print(f"[red]Failed to reset memory for {chat_id}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Memory reset for {chat_id}[/green]")


@app.command()
def compact(
    chat_id: str = typer.Argument(..., help="Chat ID"),
    user_id: str = typer.Option(..., "--user-id", help="Owner of the chat"),
    threshold: int | None = typer.Option(None, "--threshold", help="Override the compaction threshold (tokens)"),
    tail: int | None = typer.Option(None, "--tail", help="Override the number of raw turns kept"),
) -> None:
    """Run one compaction pass in the foreground."""
    overrides: MemoryOverrides = {"chunk_summarize_threshold": threshold, "k_raw_turns": tail}
    brief = load_brief(chat_id)
    compactor = MemoryCompactor()

    try:
        result = asyncio.run(compactor.maybe_compact(chat_id, user_id, brief, overrides=overrides))
    except Exception as e:
        logger.exception(f"Compaction failed (chat_id={chat_id})")
        console.print(f"[red]Compaction failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    log_memory_counters_snapshot()
    color = "green" if result.compacted else "yellow"
    console.print(f"[{color}]{result.reason}[/{color}] total_tokens={result.total_tokens} turns_compacted={result.turns_compacted}")
    if result.brief is not None:
        console.print(f"new cursor: {result.brief.cursor}")


if __name__ == "__main__":
    app()
