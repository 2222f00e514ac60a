"""Tests for memory compaction.

Tests cover:
- Threshold and tail-window no-ops
- Folding older turns into the summary and advancing the cursor
- Summarizer failures leave the stored brief untouched
- One compaction per chat at a time
- Cursor only moves forward across successive passes
"""

import asyncio
from collections.abc import Callable
from unittest.mock import patch

import pytest

from chatmemory.core.conversation_brief import Brief, load_brief, save_brief
from chatmemory.core.memory_compactor import CompactionRegistry, MemoryCompactor
from chatmemory.core.memory_config import MemoryOverrides
from chatmemory.core.memory_metrics import MEMORY_COUNTERS
from chatmemory.core.message import StoredMessage, Turn
from chatmemory.core.token_counting import estimate_tokens

SMALL_THRESHOLD: MemoryOverrides = {"chunk_summarize_threshold": 5, "k_raw_turns": 3}


class StubSummarizer:
    """Summarizer returning canned outputs (or raising) and recording its inputs."""

    def __init__(self, *outputs: str, error: Exception | None = None, gate: asyncio.Event | None = None) -> None:
        self.outputs = list(outputs) or ["SUMMARY"]
        self.error = error
        self.gate = gate
        self.calls: list[dict] = []

    async def summarize(self, input_text: str, *, chat_id: str, turn_count: int) -> str:
        self.calls.append({"input_text": input_text, "chat_id": chat_id, "turn_count": turn_count})
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if len(self.outputs) > 1:
            return self.outputs.pop(0)
        return self.outputs[0]


def _user_only(index: int) -> Turn:
    return Turn(user=StoredMessage(message_id=f"u{index}", role="user", content=f"unanswered question {index}"))


@pytest.mark.asyncio
async def test_below_threshold_is_a_no_op(chat_id: str, user_id: str, turn_factory: Callable[..., Turn]) -> None:
    summarizer = StubSummarizer()
    compactor = MemoryCompactor(summarizer=summarizer)
    turns = [turn_factory(i) for i in range(1, 6)]

    result = await compactor.maybe_compact(chat_id, user_id, Brief(), turns=turns, overrides={"chunk_summarize_threshold": 6000})

    assert not result.compacted
    assert result.reason == "below_threshold"
    assert result.total_tokens == sum(estimate_tokens(t.user_text) + estimate_tokens(t.assistant_text) for t in turns)
    assert summarizer.calls == []


@pytest.mark.asyncio
async def test_tail_window_is_never_compacted(chat_id: str, user_id: str, turn_factory: Callable[..., Turn]) -> None:
    summarizer = StubSummarizer()
    compactor = MemoryCompactor(summarizer=summarizer)

    result = await compactor.maybe_compact(
        chat_id, user_id, Brief(), turns=[turn_factory(i) for i in range(1, 4)], overrides=SMALL_THRESHOLD
    )

    assert result.reason == "below_threshold"
    assert summarizer.calls == []


@pytest.mark.asyncio
async def test_compacts_older_turns_and_advances_cursor(
    db_session, chat_id: str, user_id: str, turn_factory: Callable[..., Turn]
) -> None:
    """Four turns, K=3: only turn 1 is folded and the cursor lands on its reply."""
    summarizer = StubSummarizer("User asked about trains; assistant suggested the night train.")
    compactor = MemoryCompactor(summarizer=summarizer)
    turns = [turn_factory(i) for i in range(1, 5)]

    result = await compactor.maybe_compact(chat_id, user_id, Brief(), turns=turns, overrides=SMALL_THRESHOLD)

    assert result.compacted
    assert result.reason == "compacted"
    assert result.turns_compacted == 1
    assert result.tail_retained == 3
    assert result.brief == Brief(summary="User asked about trains; assistant suggested the night train.", cursor="a1")

    assert len(summarizer.calls) == 1
    call = summarizer.calls[0]
    assert call["chat_id"] == chat_id
    assert call["turn_count"] == 1
    assert "=== EXISTING_SUMMARY ===\nNONE" in call["input_text"]
    assert "Turn 1:\nUser: user message 1\nAssistant: assistant reply 1" in call["input_text"]
    assert "user message 2" not in call["input_text"]

    assert load_brief(chat_id) == result.brief
    assert MEMORY_COUNTERS["summaries_created"] == 1


@pytest.mark.asyncio
async def test_new_summary_is_clamped_to_cap(db_session, chat_id: str, user_id: str, turn_factory: Callable[..., Turn]) -> None:
    compactor = MemoryCompactor(summarizer=StubSummarizer("word " * 200))
    overrides: MemoryOverrides = {**SMALL_THRESHOLD, "summary_token_cap": 100}

    result = await compactor.maybe_compact(chat_id, user_id, Brief(), turns=[turn_factory(i) for i in range(1, 5)], overrides=overrides)

    assert result.compacted
    assert estimate_tokens(result.brief.summary) <= 100
    assert result.brief.summary.endswith("word")


@pytest.mark.asyncio
async def test_summarizer_error_leaves_brief_untouched(
    db_session, chat_id: str, user_id: str, turn_factory: Callable[..., Turn]
) -> None:
    save_brief(chat_id, user_id, Brief(summary="kept", cursor="a0"))
    compactor = MemoryCompactor(summarizer=StubSummarizer(error=RuntimeError("rate limited")))

    result = await compactor.maybe_compact(chat_id, user_id, load_brief(chat_id), turns=[turn_factory(i) for i in range(1, 5)], overrides=SMALL_THRESHOLD)

    assert not result.compacted
    assert result.reason == "openai_error"
    assert result.error == "rate limited"
    assert load_brief(chat_id) == Brief(summary="kept", cursor="a0")
    assert MEMORY_COUNTERS["compactions_failed"] == 1


@pytest.mark.asyncio
async def test_blank_summary_is_rejected(chat_id: str, user_id: str, turn_factory: Callable[..., Turn]) -> None:
    compactor = MemoryCompactor(summarizer=StubSummarizer("   \n"))

    with patch("chatmemory.core.memory_compactor.save_brief") as mock_save:
        result = await compactor.maybe_compact(chat_id, user_id, Brief(), turns=[turn_factory(i) for i in range(1, 5)], overrides=SMALL_THRESHOLD)

    assert result.reason == "empty_summary"
    mock_save.assert_not_called()


@pytest.mark.asyncio
async def test_missing_cursor_when_no_reply_to_anchor(chat_id: str, user_id: str, turn_factory: Callable[..., Turn]) -> None:
    compactor = MemoryCompactor(summarizer=StubSummarizer())
    turns = [_user_only(1), turn_factory(2), turn_factory(3), turn_factory(4)]

    with patch("chatmemory.core.memory_compactor.save_brief") as mock_save:
        result = await compactor.maybe_compact(chat_id, user_id, Brief(), turns=turns, overrides=SMALL_THRESHOLD)

    assert result.reason == "missing_cursor"
    mock_save.assert_not_called()


@pytest.mark.asyncio
async def test_previous_cursor_kept_when_older_turns_have_no_reply(
    db_session, chat_id: str, user_id: str, turn_factory: Callable[..., Turn]
) -> None:
    compactor = MemoryCompactor(summarizer=StubSummarizer("updated"))
    turns = [_user_only(1), turn_factory(2), turn_factory(3), turn_factory(4)]

    result = await compactor.maybe_compact(chat_id, user_id, Brief(summary="old", cursor="a0"), turns=turns, overrides=SMALL_THRESHOLD)

    assert result.compacted
    assert result.brief == Brief(summary="updated", cursor="a0")


@pytest.mark.asyncio
async def test_concurrent_request_for_same_chat_is_skipped(
    db_session, chat_id: str, user_id: str, turn_factory: Callable[..., Turn]
) -> None:
    gate = asyncio.Event()
    compactor = MemoryCompactor(summarizer=StubSummarizer("slow summary", gate=gate))
    turns = [turn_factory(i) for i in range(1, 5)]

    first = asyncio.create_task(compactor.maybe_compact(chat_id, user_id, Brief(), turns=turns, overrides=SMALL_THRESHOLD))
    await asyncio.sleep(0)
    assert compactor.registry.is_in_flight(chat_id)

    second = await compactor.maybe_compact(chat_id, user_id, Brief(), turns=turns, overrides=SMALL_THRESHOLD)
    assert second.reason == "in_flight"
    assert MEMORY_COUNTERS["compactions_skipped"] == 1

    gate.set()
    first_result = await first

    assert first_result.compacted
    assert len(compactor.registry) == 0


@pytest.mark.asyncio
async def test_other_chats_are_not_blocked(db_session, user_id: str, turn_factory: Callable[..., Turn]) -> None:
    registry = CompactionRegistry()
    registry.try_acquire("busy-chat")
    compactor = MemoryCompactor(registry=registry, summarizer=StubSummarizer())

    result = await compactor.maybe_compact("free-chat", user_id, Brief(), turns=[turn_factory(i) for i in range(1, 5)], overrides=SMALL_THRESHOLD)

    assert result.compacted
    assert registry.is_in_flight("busy-chat")
    assert not registry.is_in_flight("free-chat")


@pytest.mark.asyncio
async def test_save_failure_propagates_and_releases_chat(chat_id: str, user_id: str, turn_factory: Callable[..., Turn]) -> None:
    compactor = MemoryCompactor(summarizer=StubSummarizer())

    with patch("chatmemory.core.memory_compactor.save_brief", side_effect=RuntimeError("db down")):
        with pytest.raises(RuntimeError, match="db down"):
            await compactor.maybe_compact(chat_id, user_id, Brief(), turns=[turn_factory(i) for i in range(1, 5)], overrides=SMALL_THRESHOLD)

    assert not compactor.registry.is_in_flight(chat_id)
    assert MEMORY_COUNTERS["compactions_failed"] == 1


@pytest.mark.asyncio
async def test_cursor_moves_forward_across_passes(db_session, add_message, chat_id: str, user_id: str) -> None:
    """Turns are loaded from the store when not passed in."""
    for i in range(1, 6):
        add_message(f"u{i}", "user", f"question number {i}")
        add_message(f"a{i}", "assistant", f"answer number {i}")

    summarizer = StubSummarizer("SUMMARY-1", "SUMMARY-2")
    compactor = MemoryCompactor(summarizer=summarizer)

    first = await compactor.maybe_compact(chat_id, user_id, load_brief(chat_id), overrides=SMALL_THRESHOLD)
    assert first.brief == Brief(summary="SUMMARY-1", cursor="a2")
    assert first.turns_compacted == 2

    add_message("u6", "user", "question number 6")
    add_message("a6", "assistant", "answer number 6")

    second = await compactor.maybe_compact(chat_id, user_id, load_brief(chat_id), overrides=SMALL_THRESHOLD)
    assert second.brief == Brief(summary="SUMMARY-2", cursor="a3")

    second_input = summarizer.calls[1]["input_text"]
    assert "=== EXISTING_SUMMARY ===\nSUMMARY-1\n" in second_input
    assert "question number 3" in second_input
    assert "question number 2" not in second_input
    assert "question number 4" not in second_input
