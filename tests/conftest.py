"""Shared test fixtures for Conversation Search."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from conversation_search.indexer import DataIndexer, IndexerConfig
from conversation_search.models import CodeChange, Conversation, Message
from conversation_search.search import SearchEngine
from conversation_search.store import JsonFileStore, MemoryStore


# ---------------------------------------------------------------------------
# Record factory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_conversation() -> Callable[..., Conversation]:
    """Factory for creating test conversations.

    Usage:
        conv = make_conversation()  # Default values
        conv = make_conversation(id="c2", title="Custom title")
    """

    def _create(
        id: str = "c1",
        title: str = "Login flow broken",
        timestamp: int = 1_700_000_000_000,
        status: str = "active",
        tags: list[str] | None = None,
        message_count: int = 0,
    ) -> Conversation:
        return Conversation(
            id=id,
            title=title,
            timestamp=timestamp,
            status=status,
            tags=tags or [],
            message_count=message_count,
        )

    return _create


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """Factory for creating test messages.

    Usage:
        msg = make_message()  # Default values
        msg = make_message(id="m2", content="Other text", sender="ai")
    """

    def _create(
        id: str = "m1",
        conversation_id: str = "c1",
        content: str = "The login page throws an error",
        sender: str = "user",
        timestamp: int = 1_700_000_000_000,
        code_changes: list[CodeChange] | None = None,
    ) -> Message:
        return Message(
            id=id,
            conversation_id=conversation_id,
            content=content,
            sender=sender,
            timestamp=timestamp,
            code_changes=code_changes or [],
        )

    return _create


# ---------------------------------------------------------------------------
# Store and indexer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_store(make_conversation, make_message) -> MemoryStore:
    """MemoryStore with two conversations and three messages."""
    return MemoryStore(
        conversations=[
            make_conversation(
                id="c1",
                title="Login flow broken",
                timestamp=1_700_000_000_000,
                tags=["auth", "bug"],
            ),
            make_conversation(
                id="c2",
                title="Database migration plan",
                timestamp=1_700_000_100_000,
                status="archived",
                tags=["db"],
            ),
        ],
        messages=[
            make_message(
                id="m1",
                conversation_id="c1",
                content="The login page throws an error after submit",
                timestamp=1_700_000_000_001,
            ),
            make_message(
                id="m2",
                conversation_id="c1",
                content="Fixed the session check in the handler",
                sender="ai",
                timestamp=1_700_000_000_002,
                code_changes=[
                    CodeChange(
                        file_path="src/auth/login.py",
                        change_type="modify",
                        after_content="def login(user):\n    return check_session(user)",
                    )
                ],
            ),
            make_message(
                id="m3",
                conversation_id="c2",
                content="Add a migration for the users table",
                timestamp=1_700_000_100_001,
            ),
        ],
    )


@pytest.fixture
def index_dir(tmp_path: Path) -> Path:
    """Temporary directory for persisted index artifacts."""
    return tmp_path / "index"


@pytest.fixture
def indexer(sample_store: MemoryStore, index_dir: Path) -> DataIndexer:
    """DataIndexer over the sample store, without a background schedule."""
    return DataIndexer(
        store=sample_store,
        index_dir=index_dir,
        config=IndexerConfig(schedule=False),
    )


@pytest.fixture
def engine(indexer: DataIndexer) -> SearchEngine:
    """SearchEngine over the (unbuilt) sample indexer."""
    return SearchEngine(indexer)


@pytest.fixture
def json_store(tmp_path: Path) -> JsonFileStore:
    """Empty JsonFileStore rooted in a temp directory."""
    return JsonFileStore(tmp_path / "store")
