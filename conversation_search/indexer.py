"""Index lifecycle: building, incremental updates, persistence and scheduling.

This module provides:
- DataIndexer: owns the conversation and message indexes, rebuilds them from
  the conversation store, applies incremental updates and persists them
- IndexerConfig: scheduling and persistence settings
- BuildResult / IndexStats: reporting structures

All index mutation happens synchronously between awaits, so coroutines that
interleave at store or disk I/O never observe a half-updated term bucket.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from conversation_search.inverted_index import InvertedIndex
from conversation_search.models import Conversation, Message
from conversation_search.persistence import IndexMetadata, IndexStore
from conversation_search.store import ConversationStore
from conversation_search.tokenizer import tokenize

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 2.0
CONTENT_WEIGHT = 1.0
FILE_PATH_WEIGHT = 0.5
CODE_CONTENT_WEIGHT = 0.2


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def conversation_terms(conversation: Conversation) -> Iterator[tuple[str, float]]:
    """Weighted terms contributed by a conversation (its title)."""
    for term in tokenize(conversation.title):
        yield term, TITLE_WEIGHT


def message_terms(message: Message) -> Iterator[tuple[str, float]]:
    """Weighted terms contributed by a message.

    Content counts fully, changed file paths at half weight, and the
    after-content of code changes (when present) at a fifth.
    """
    for term in tokenize(message.content):
        yield term, CONTENT_WEIGHT
    for change in message.code_changes:
        for term in tokenize(change.file_path):
            yield term, FILE_PATH_WEIGHT
        if change.after_content:
            for term in tokenize(change.after_content):
                yield term, CODE_CONTENT_WEIGHT


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class IndexerConfig:
    """Configuration for the index lifecycle manager."""

    startup_delay: float = 5.0  # seconds before the first scheduled build
    rebuild_interval: float = 1800.0  # 30 minutes
    schedule: bool = True
    persist: bool = True
    prune_missing: bool = True  # drop documents the store no longer has


@dataclass
class BuildResult:
    """Outcome of one index build."""

    forced: bool = False
    conversations_indexed: int = 0
    conversations_skipped: int = 0
    messages_indexed: int = 0
    messages_skipped: int = 0
    documents_pruned: int = 0
    store_errors: int = 0
    duration_ms: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "forced": self.forced,
            "conversationsIndexed": self.conversations_indexed,
            "conversationsSkipped": self.conversations_skipped,
            "messagesIndexed": self.messages_indexed,
            "messagesSkipped": self.messages_skipped,
            "documentsPruned": self.documents_pruned,
            "storeErrors": self.store_errors,
            "durationMs": self.duration_ms,
            "error": self.error,
        }


@dataclass
class IndexStats:
    """Snapshot of index size and freshness."""

    conversation_count: int
    message_count: int
    term_count: int
    last_updated: int  # epoch milliseconds, 0 if never built
    index_size: int
    is_indexing: bool = False

    def to_dict(self) -> dict:
        return {
            "conversationCount": self.conversation_count,
            "messageCount": self.message_count,
            "termCount": self.term_count,
            "lastUpdated": self.last_updated,
            "indexSize": self.index_size,
            "isIndexing": self.is_indexing,
        }


# ---------------------------------------------------------------------------
# DataIndexer
# ---------------------------------------------------------------------------


class DataIndexer:
    """Owns the search indexes for conversations and messages.

    At most one full build runs at a time: concurrent build_index() callers
    all await the build already in flight and receive its result.
    """

    def __init__(
        self,
        store: ConversationStore,
        index_dir: Path | None = None,
        config: IndexerConfig | None = None,
    ) -> None:
        """Initialize the indexer.

        Args:
            store: Conversation store to read documents from.
            index_dir: Directory for the persisted index. Nothing is
                persisted when None.
            config: Indexer configuration. Uses defaults if not provided.
        """
        self.store = store
        self.config = config or IndexerConfig()
        self._index_store: IndexStore | None = None
        if index_dir is not None and self.config.persist:
            self._index_store = IndexStore(index_dir)

        self._conversations = InvertedIndex(name="conversations")
        self._messages = InvertedIndex(name="messages")
        self._last_indexed = 0
        self._index_size = 0

        self._build_task: asyncio.Task[BuildResult] | None = None
        self._schedule_task: asyncio.Task[None] | None = None

    # -----------------------------------------------------------------------
    # Read-only views for the query engine
    # -----------------------------------------------------------------------

    @property
    def conversation_index(self) -> InvertedIndex:
        return self._conversations

    @property
    def message_index(self) -> InvertedIndex:
        return self._messages

    @property
    def is_indexing(self) -> bool:
        return self._build_task is not None and not self._build_task.done()

    @property
    def last_indexed(self) -> int:
        return self._last_indexed

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the persisted index and start the rebuild schedule.

        Never raises: without a usable persisted index the engine starts
        empty and the first scheduled build fills it.
        """
        try:
            self.load_index()
        except Exception as e:
            logger.error(f"Failed to initialize data indexer: {e}")

        if self.config.schedule:
            self.start_schedule()

    async def stop(self) -> None:
        """Cancel the schedule and wait for any build in flight."""
        if self._schedule_task is not None:
            self._schedule_task.cancel()
            try:
                await self._schedule_task
            except asyncio.CancelledError:
                pass
            self._schedule_task = None

        if self._build_task is not None and not self._build_task.done():
            await asyncio.wait([self._build_task])

    def load_index(self) -> bool:
        """Replace the in-memory index with the persisted one.

        Returns:
            True if any postings were loaded.
        """
        if self._index_store is None:
            return False

        loaded = self._index_store.load()
        self._conversations = loaded.conversations
        self._messages = loaded.messages
        self._last_indexed = loaded.metadata.last_updated
        self._refresh_size()
        return not loaded.is_empty

    # -----------------------------------------------------------------------
    # Scheduling
    # -----------------------------------------------------------------------

    def start_schedule(self) -> None:
        """Start the background build loop (idempotent)."""
        if self._schedule_task is not None and not self._schedule_task.done():
            return
        self._schedule_task = asyncio.create_task(self._schedule_loop())

    async def _schedule_loop(self) -> None:
        delay = self.config.startup_delay
        while True:
            await asyncio.sleep(delay)
            try:
                result = await self.build_index()
                if not result.ok:
                    logger.warning(f"Scheduled indexing failed: {result.error}")
            except Exception as e:
                logger.error(f"Scheduled indexing failed: {e}")
            delay = self.config.rebuild_interval

    # -----------------------------------------------------------------------
    # Building
    # -----------------------------------------------------------------------

    async def build_index(self, force_rebuild: bool = False) -> BuildResult:
        """Build or refresh the index from the conversation store.

        If a build is already running, the caller waits for that build
        instead of starting a second one (``force_rebuild`` is then
        ignored).

        Args:
            force_rebuild: Clear both indexes first so every weight is
                recomputed. Without it, documents already indexed are
                skipped.

        Returns:
            The BuildResult of the build that ran.
        """
        if self._build_task is None or self._build_task.done():
            self._build_task = asyncio.create_task(self._run_build(force_rebuild))
        # Shield so a cancelled waiter does not cancel the shared build
        return await asyncio.shield(self._build_task)

    async def _run_build(self, force_rebuild: bool) -> BuildResult:
        result = BuildResult(forced=force_rebuild)
        start = time.monotonic()
        logger.info(f"Building search index (force_rebuild={force_rebuild})...")

        try:
            if force_rebuild:
                self.clear_index()

            conversations = await self.store.get_conversations()
            seen_conversations: set[str] = set()
            seen_messages: set[str] = set()

            for conversation in conversations:
                seen_conversations.add(conversation.id)
                if self._index_conversation(conversation, skip_existing=True):
                    result.conversations_indexed += 1
                else:
                    result.conversations_skipped += 1

            for conversation in conversations:
                # Let request handlers run between conversations
                await asyncio.sleep(0)
                try:
                    messages = await self.store.get_messages(conversation.id)
                except Exception as e:
                    logger.warning(
                        f"Failed to read messages of conversation {conversation.id}: {e}"
                    )
                    result.store_errors += 1
                    continue

                for message in messages:
                    seen_messages.add(message.id)
                    if self._index_message(message, skip_existing=True):
                        result.messages_indexed += 1
                    else:
                        result.messages_skipped += 1

            if self.config.prune_missing and not force_rebuild:
                result.documents_pruned = self._prune(
                    seen_conversations, seen_messages, skip_messages=result.store_errors > 0
                )

            self._last_indexed = _now_ms()
            self._save_index()

            logger.info(
                f"Search index built with {self._conversations.document_count} conversations "
                f"and {self._messages.document_count} messages "
                f"({result.conversations_indexed} + {result.messages_indexed} newly indexed)"
            )
        except Exception as e:
            logger.error(f"Failed to build search index: {e}")
            result.error = str(e)
        finally:
            result.duration_ms = int((time.monotonic() - start) * 1000)

        return result

    def _prune(
        self,
        conversation_ids: set[str],
        message_ids: set[str],
        skip_messages: bool,
    ) -> int:
        """Remove indexed documents the store no longer returns."""
        pruned = 0
        for doc_id in self._conversations.document_ids() - conversation_ids:
            self._conversations.remove_document(doc_id)
            pruned += 1
        # A partial message listing cannot tell deleted from unreadable
        if not skip_messages:
            for doc_id in self._messages.document_ids() - message_ids:
                self._messages.remove_document(doc_id)
                pruned += 1
        if pruned:
            logger.info(f"Pruned {pruned} documents no longer in the store")
        return pruned

    def _index_conversation(self, conversation: Conversation, skip_existing: bool = False) -> bool:
        if skip_existing and self._conversations.contains(conversation.id):
            return False
        return self._conversations.add_document(conversation.id, conversation_terms(conversation))

    def _index_message(self, message: Message, skip_existing: bool = False) -> bool:
        if skip_existing and self._messages.contains(message.id):
            return False
        return self._messages.add_document(message.id, message_terms(message))

    def clear_index(self) -> None:
        """Drop every posting and counter from both indexes."""
        self._conversations.clear()
        self._messages.clear()
        self._index_size = 0

    # -----------------------------------------------------------------------
    # Incremental updates
    # -----------------------------------------------------------------------

    async def update_conversation_index(self, conversation: Conversation) -> None:
        """Re-index a conversation so its weights match its current title."""
        self._conversations.remove_document(conversation.id)
        self._index_conversation(conversation)
        logger.debug(f"Updated conversation {conversation.id} in search index")
        self._save_index()

    async def update_message_index(self, message: Message) -> None:
        """Re-index a message so its weights match its current content."""
        self._messages.remove_document(message.id)
        self._index_message(message)
        logger.debug(f"Updated message {message.id} in search index")
        self._save_index()

    async def remove_conversation_from_index(self, id: str) -> bool:
        """Remove a conversation from the index.

        Returns:
            True if the conversation was indexed.
        """
        removed = self._conversations.remove_document(id)
        if removed:
            logger.debug(f"Removed conversation {id} from search index")
        self._save_index()
        return removed

    async def remove_message_from_index(self, id: str) -> bool:
        """Remove a message from the index.

        Returns:
            True if the message was indexed.
        """
        removed = self._messages.remove_document(id)
        if removed:
            logger.debug(f"Removed message {id} from search index")
        self._save_index()
        return removed

    # -----------------------------------------------------------------------
    # Stats and persistence
    # -----------------------------------------------------------------------

    def get_index_stats(self) -> IndexStats:
        return IndexStats(
            conversation_count=self._conversations.document_count,
            message_count=self._messages.document_count,
            term_count=self._term_count(),
            last_updated=self._last_indexed,
            index_size=self._index_size,
            is_indexing=self.is_indexing,
        )

    def _term_count(self) -> int:
        return len(set(self._conversations.terms()) | set(self._messages.terms()))

    def _refresh_size(self) -> None:
        self._index_size = self._conversations.estimate_size() + self._messages.estimate_size()

    def _save_index(self) -> None:
        """Persist the index; failures are logged and never raised."""
        self._refresh_size()
        if self._index_store is None:
            return

        metadata = IndexMetadata(
            conversation_count=self._conversations.document_count,
            message_count=self._messages.document_count,
            term_count=self._term_count(),
            last_updated=self._last_indexed,
            index_size=self._index_size,
        )
        try:
            self._index_store.save(self._conversations, self._messages, metadata)
        except Exception as e:
            logger.error(f"Failed to save search index: {e}")
