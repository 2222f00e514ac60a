"""Conversation brief: the rolling memory state of one chat.

A brief holds a free-text rolling summary plus a cursor naming the newest
assistant message already folded into that summary. Everything at or before
the cursor is represented (lossily) in the summary; everything after it exists
only as raw messages.

Stored briefs may come in older shapes. They are decoded in order:
1. Current shape: {"summary": str, "cursor": str | null}
2. Global-summary shape: {"global_summary": str, "last_summarized_message_id": ...}
3. Legacy card shape: a structured summary object and/or a list of memory cards,
   folded into free text with no cursor
Anything else decodes to the empty brief.

Loading never raises. Saving raises on failure, because a lost save means a
lost compaction.
"""

import json
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from chatmemory.core.token_counting import estimate_tokens
from chatmemory.db.brief_repository import get_brief_row, upsert_brief_row


def _coerce_cursor(value: object) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        return str(value)
    return None


class Brief(BaseModel):
    """Rolling memory state of a chat.

    Fields:
        summary: Free-text rolling summary (may be empty)
        cursor: Id of the newest assistant message folded into summary,
            or None when nothing has been folded yet
    """

    model_config = ConfigDict(frozen=True)

    summary: str = Field(default="", description="Rolling summary text")
    cursor: str | None = Field(default=None, description="Newest message id covered by the summary")

    @property
    def is_empty(self) -> bool:
        return not self.summary and self.cursor is None

    def to_record(self) -> dict[str, str | None]:
        return {"summary": self.summary, "cursor": self.cursor}


def empty_brief() -> Brief:
    return Brief()


# ---------------------------------------------------------------------------
# Stored shapes
# ---------------------------------------------------------------------------


class _CurrentRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: str = Field(strict=True)
    cursor: str | int | None = None


class _GlobalSummaryRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    global_summary: str = Field(strict=True)
    last_summarized_message_id: str | int | None = Field(
        default=None,
        validation_alias=AliasChoices("last_summarized_message_id", "lastSummarizedMessageId"),
    )


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item]


def _optional_text(value: object) -> str:
    return value if isinstance(value, str) else ""


class _LegacySummaryFields(BaseModel):
    """Structured summary fields of the legacy card format (long or short keys)."""

    model_config = ConfigDict(extra="ignore")

    goal: str = Field(default="", validation_alias=AliasChoices("goal", "g"))
    constraints: list[str] = Field(default_factory=list, validation_alias=AliasChoices("constraints", "c"))
    decisions: list[str] = Field(default_factory=list, validation_alias=AliasChoices("decisions", "d"))
    open_questions: list[str] = Field(default_factory=list, validation_alias=AliasChoices("open_q", "oq"))
    techniques: list[str] = Field(default_factory=list, validation_alias=AliasChoices("techniques", "t"))
    lesson_context: str = Field(default="", validation_alias=AliasChoices("lesson_context", "lc"))

    @field_validator("goal", "lesson_context", mode="before")
    @classmethod
    def coerce_text(cls, v: object) -> str:
        return _optional_text(v)

    @field_validator("constraints", "decisions", "open_questions", "techniques", mode="before")
    @classmethod
    def coerce_list(cls, v: object) -> list[str]:
        return _string_list(v)

    def render(self) -> str:
        lines = []
        if self.goal:
            lines.append(f"Goal: {self.goal}")
        for label, items in (
            ("Constraints", self.constraints),
            ("Decisions", self.decisions),
            ("Open questions", self.open_questions),
            ("Techniques", self.techniques),
        ):
            if items:
                lines.append(f"{label}: {' | '.join(items)}")
        if self.lesson_context:
            lines.append(f"Lesson context: {self.lesson_context}")
        return "\n".join(lines)


class _LegacyCardRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary: _LegacySummaryFields | None = Field(default=None, validation_alias=AliasChoices("summary", "s"))
    memory_cards: list[_LegacySummaryFields] = Field(default_factory=list, validation_alias=AliasChoices("memory_cards", "mc"))

    @field_validator("summary", mode="before")
    @classmethod
    def drop_non_object_summary(cls, v: object) -> object:
        return v if isinstance(v, dict) else None

    @field_validator("memory_cards", mode="before")
    @classmethod
    def keep_object_cards(cls, v: object) -> list[object]:
        if not isinstance(v, list):
            return []
        return [card for card in v if isinstance(card, dict)]

    def render(self) -> str:
        sections = []
        if self.summary is not None:
            summary_text = self.summary.render()
            if summary_text:
                sections.append(summary_text)

        card_sections = []
        for index, card in enumerate(self.memory_cards):
            body = card.render()
            if body:
                card_sections.append(f"Memory card {index + 1}:\n{body}")
        if card_sections:
            sections.append("\n\n".join(card_sections))

        return "\n\n".join(sections).strip()


def _decode_current(payload: dict[str, Any]) -> Brief | None:
    try:
        record = _CurrentRecord.model_validate(payload)
    except ValidationError:
        return None
    return Brief(summary=record.summary, cursor=_coerce_cursor(record.cursor))


def _decode_global_summary(payload: dict[str, Any]) -> Brief | None:
    try:
        record = _GlobalSummaryRecord.model_validate(payload)
    except ValidationError:
        return None
    summary = record.global_summary
    if not summary:
        summary = _fold_legacy_fields(payload)
    return Brief(summary=summary, cursor=_coerce_cursor(record.last_summarized_message_id))


def _fold_legacy_fields(payload: dict[str, Any]) -> str:
    try:
        return _LegacyCardRecord.model_validate(payload).render()
    except ValidationError:
        return ""


def _decode_legacy_cards(payload: dict[str, Any]) -> Brief | None:
    summary = _fold_legacy_fields(payload)
    if not summary:
        return None
    # Legacy records carry no cursor: nothing was compacted yet
    return Brief(summary=summary, cursor=None)


_DECODERS = (_decode_current, _decode_global_summary, _decode_legacy_cards)


def normalize_brief(raw: object) -> Brief:
    """Decode a stored brief payload of any known shape into a Brief.

    Args:
        raw: Stored payload (dict, JSON string, Brief, or None)

    Returns:
        Decoded Brief, or the empty brief when nothing matches
    """
    if raw is None:
        return empty_brief()

    if isinstance(raw, Brief):
        return raw

    payload: object = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse brief JSON string", error=str(e))
            return empty_brief()

    if not isinstance(payload, dict):
        return empty_brief()

    for decode in _DECODERS:
        brief = decode(payload)
        if brief is not None:
            return brief

    return empty_brief()


def load_brief(chat_id: str | None) -> Brief:
    """Load the brief for a chat.

    Never raises: any read or decode failure yields the empty brief, since
    losing memory state must never block a conversation.

    Args:
        chat_id: Chat ID

    Returns:
        The chat's Brief (empty if none is stored)
    """
    if not chat_id:
        return empty_brief()

    try:
        raw = get_brief_row(chat_id)
    except Exception:
        logger.exception(f"Failed to load conversation brief (chat_id={chat_id})")
        return empty_brief()

    try:
        return normalize_brief(raw)
    except Exception:
        logger.exception(f"Failed to decode conversation brief (chat_id={chat_id})")
        return empty_brief()


def save_brief(chat_id: str, user_id: str, brief: Brief | dict[str, Any]) -> Brief:
    """Persist the brief for a chat (upsert keyed by chat_id).

    Also stores the estimated token count of the summary for observability.

    Args:
        chat_id: Chat ID
        user_id: Owner of the chat
        brief: Brief (or any decodable payload) to store

    Returns:
        The normalized Brief that was stored

    Raises:
        Any persistence error, after logging it
    """
    normalized = normalize_brief(brief)
    token_count = estimate_tokens(normalized.summary)

    try:
        upsert_brief_row(chat_id, user_id, normalized.to_record(), token_count)
    except Exception:
        logger.exception(f"Failed to save conversation brief (chat_id={chat_id})")
        raise

    logger.info(
        "brief_saved",
        chat_id=chat_id,
        token_count=token_count,
        has_cursor=normalized.cursor is not None,
        event="brief_saved",
    )
    return normalized


def reset_brief(chat_id: str, user_id: str) -> Brief:
    """Reset a chat's brief to the empty state (for recycled chat identities)."""
    return save_brief(chat_id, user_id, empty_brief())
