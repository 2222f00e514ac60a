"""Tests for reading the message store."""

from unittest.mock import patch

from chatmemory.db.message_repository import fetch_cursor_timestamp, fetch_messages_after_cursor


def test_messages_in_write_order(db_session, add_message, chat_id: str, user_id: str) -> None:
    add_message("u1", "user", "one")
    add_message("a1", "assistant", "two", metadata={"model_variant": "fast"})

    messages = fetch_messages_after_cursor(chat_id, user_id, None)

    assert [m.message_id for m in messages] == ["u1", "a1"]
    assert messages[1].model_variant == "fast"


def test_only_messages_after_cursor(db_session, add_message, chat_id: str, user_id: str) -> None:
    add_message("u1", "user", "one")
    add_message("a1", "assistant", "two")
    add_message("u2", "user", "three")

    messages = fetch_messages_after_cursor(chat_id, user_id, "a1")

    assert [m.message_id for m in messages] == ["u2"]


def test_other_roles_and_excluded_ids_are_skipped(db_session, add_message, chat_id: str, user_id: str) -> None:
    add_message("s1", "system", "be nice")
    add_message("u1", "user", "one")
    add_message("t1", "tool", "tool output")
    add_message("u2", "user", "in flight")

    messages = fetch_messages_after_cursor(chat_id, user_id, None, exclude_message_ids=["u2"])

    assert [m.message_id for m in messages] == ["u1"]


def test_other_owner_is_not_visible(db_session, add_message, chat_id: str, user_id: str) -> None:
    add_message("u1", "user", "mine")
    add_message("u2", "user", "not mine", user="someone-else")

    assert [m.message_id for m in fetch_messages_after_cursor(chat_id, user_id, None)] == ["u1"]


def test_cursor_timestamp_lookup(db_session, add_message, chat_id: str, user_id: str) -> None:
    row = add_message("a1", "assistant", "reply")

    assert fetch_cursor_timestamp(chat_id, user_id, "a1") == row.created_at
    assert fetch_cursor_timestamp(chat_id, user_id, "missing") is None
    assert fetch_cursor_timestamp(chat_id, user_id, None) is None


def test_read_failure_returns_empty_list(chat_id: str, user_id: str) -> None:
    with patch("chatmemory.db.message_repository.get_session", side_effect=RuntimeError("db down")):
        assert fetch_messages_after_cursor(chat_id, user_id, "a1") == []
