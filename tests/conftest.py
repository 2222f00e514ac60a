"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from chatmemory.core.memory_metrics import reset_memory_counters
from chatmemory.core.message import StoredMessage, Turn
from chatmemory.db.models import Base, ChatMessage

TEST_CHAT_ID = "chat-0000-0000-0000-000000000001"
TEST_USER_ID = "user-123"
BASE_TS = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture(autouse=True)
def _reset_counters():
    reset_memory_counters()
    yield


@pytest.fixture
def chat_id() -> str:
    return TEST_CHAT_ID


@pytest.fixture
def user_id() -> str:
    return TEST_USER_ID


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides a transactional in-memory SQLite DB session for tests.

    This fixture:
    - Creates an isolated in-memory SQLite database per test
    - Patches get_session() where it is imported to yield the test session
    - Uses transaction rollback for cleanup

    Usage:
        def test_something(db_session):
            db_session.add(ChatMessage(...))
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)

    connection = engine.connect()
    transaction = connection.begin()

    test_session_local = sessionmaker(bind=connection, autocommit=False, autoflush=False)
    session = test_session_local()

    @contextmanager
    def mock_get_session():
        yield session
        session.flush()

    # Patch where it is imported/used (not just where it is defined)
    import chatmemory.db.brief_repository as brief_repository
    import chatmemory.db.message_repository as message_repository
    import chatmemory.db.session as session_module

    monkeypatch.setattr(session_module, "get_session", mock_get_session)
    monkeypatch.setattr(brief_repository, "get_session", mock_get_session)
    monkeypatch.setattr(message_repository, "get_session", mock_get_session)

    try:
        yield session
    finally:
        session.rollback()
        if transaction.is_active:
            transaction.rollback()
        session.close()
        connection.close()
        engine.dispose()


@pytest.fixture
def add_message(db_session: Session, chat_id: str, user_id: str) -> Callable[..., ChatMessage]:
    """Insert a message row; timestamps advance one second per call."""
    counter = {"n": 0}

    def _add(
        message_id: str,
        role: str,
        content: str,
        *,
        metadata: dict | None = None,
        chat: str | None = None,
        user: str | None = None,
    ) -> ChatMessage:
        counter["n"] += 1
        row = ChatMessage(
            message_id=message_id,
            chat_id=chat or chat_id,
            user_id=user or user_id,
            role=role,
            content=content,
            message_metadata=metadata or {},
            created_at=BASE_TS + timedelta(seconds=counter["n"]),
        )
        db_session.add(row)
        db_session.flush()
        return row

    return _add


def make_turn(index: int, user_text: str | None = None, assistant_text: str | None = None, variant: str | None = None) -> Turn:
    """Build a complete turn u<index>/a<index> without touching the database."""
    user = StoredMessage(message_id=f"u{index}", role="user", content=user_text or f"user message {index}")
    metadata = {"model_variant": variant} if variant else {}
    assistant = StoredMessage(
        message_id=f"a{index}",
        role="assistant",
        content=assistant_text or f"assistant reply {index}",
        metadata=metadata,
    )
    return Turn(user=user, assistant=assistant)


@pytest.fixture
def turn_factory() -> Callable[..., Turn]:
    return make_turn
