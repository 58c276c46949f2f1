"""Tests for the conversation stores."""

from __future__ import annotations

import inspect
import json
from collections import Counter

import pytest

from conversation_search.indexer import DataIndexer, IndexerConfig
from conversation_search.models import Conversation, ConversationFilter, MessageFilter
from conversation_search.store import (
    ConversationStore,
    JsonFileStore,
    MemoryStore,
    StoreError,
    sanitize_id,
)


class TestSanitizeId:
    """Tests for sanitize_id()."""

    def test_plain_id_unchanged(self) -> None:
        assert sanitize_id("conv-123") == "conv-123"

    def test_path_characters_replaced(self) -> None:
        assert sanitize_id("a/b\\c:d") == "a_b_c_d"

    def test_empty_result(self) -> None:
        assert sanitize_id("///") == "_"


class TestJsonFileStore:
    """Tests for JsonFileStore."""

    def test_implements_protocol(self, json_store: JsonFileStore) -> None:
        assert isinstance(json_store, ConversationStore)

    @pytest.mark.asyncio
    async def test_save_and_get(self, json_store, make_conversation, make_message) -> None:
        await json_store.save_conversation(make_conversation(id="c1"))
        await json_store.save_message(make_message(id="m1", conversation_id="c1"))

        conv = await json_store.get_conversation("c1")
        msg = await json_store.get_message("m1")

        assert conv == make_conversation(id="c1")
        assert msg == make_message(id="m1", conversation_id="c1")

    @pytest.mark.asyncio
    async def test_missing_returns_none(self, json_store) -> None:
        assert await json_store.get_conversation("nope") is None
        assert await json_store.get_message("nope") is None

    @pytest.mark.asyncio
    async def test_listing_order(self, json_store, make_conversation, make_message) -> None:
        """Conversations come newest first, messages oldest first."""
        await json_store.save_conversation(make_conversation(id="old", timestamp=1))
        await json_store.save_conversation(make_conversation(id="new", timestamp=2))
        await json_store.save_message(make_message(id="m2", timestamp=20))
        await json_store.save_message(make_message(id="m1", timestamp=10))

        conversations = await json_store.get_conversations()
        messages = await json_store.get_messages("c1")

        assert [c.id for c in conversations] == ["new", "old"]
        assert [m.id for m in messages] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_filters_applied(self, json_store, make_conversation, make_message) -> None:
        await json_store.save_conversation(make_conversation(id="a", status="active"))
        await json_store.save_conversation(make_conversation(id="b", status="archived"))
        await json_store.save_message(make_message(id="m1", sender="user"))
        await json_store.save_message(make_message(id="m2", sender="ai"))
        await json_store.save_message(make_message(id="m3", conversation_id="other"))

        archived = await json_store.get_conversations(ConversationFilter(status="archived"))
        ai_messages = await json_store.get_messages("c1", MessageFilter(sender="ai"))

        assert [c.id for c in archived] == ["b"]
        assert [m.id for m in ai_messages] == ["m2"]

    @pytest.mark.asyncio
    async def test_corrupt_file_skipped_in_listing(self, json_store, make_conversation) -> None:
        await json_store.save_conversation(make_conversation(id="good"))
        (json_store.conversations_dir / "bad.json").write_text("{oops")

        conversations = await json_store.get_conversations()

        assert [c.id for c in conversations] == ["good"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_on_fetch(self, json_store) -> None:
        json_store.conversations_dir.mkdir(parents=True)
        (json_store.conversations_dir / "bad.json").write_text("{oops")

        with pytest.raises(StoreError):
            await json_store.get_conversation("bad")

    @pytest.mark.asyncio
    async def test_malformed_record_raises_store_error(self, json_store) -> None:
        json_store.messages_dir.mkdir(parents=True)
        (json_store.messages_dir / "m1.json").write_text(json.dumps({"id": "m1"}))

        with pytest.raises(StoreError):
            await json_store.get_message("m1")

    @pytest.mark.asyncio
    async def test_delete_conversation_removes_messages(
        self, json_store, make_conversation, make_message
    ) -> None:
        await json_store.save_conversation(make_conversation(id="c1"))
        await json_store.save_message(make_message(id="m1", conversation_id="c1"))
        await json_store.save_message(make_message(id="m2", conversation_id="c2"))

        await json_store.delete_conversation("c1")

        assert await json_store.get_conversation("c1") is None
        assert await json_store.get_message("m1") is None
        assert await json_store.get_message("m2") is not None

    @pytest.mark.asyncio
    async def test_empty_store(self, json_store) -> None:
        assert await json_store.get_conversations() == []
        assert await json_store.get_messages("c1") == []



class TestJsonFileStoreReads:
    """Tests for JsonFileStore record caching and message grouping."""

    @pytest.fixture
    def read_counts(self, json_store: JsonFileStore, monkeypatch) -> Counter:
        """Count file reads per file name."""
        counts: Counter = Counter()
        original = json_store._read

        def counting_read(path):
            counts[path.name] += 1
            return original(path)

        monkeypatch.setattr(json_store, "_read", counting_read)
        return counts

    @pytest.mark.asyncio
    async def test_build_reads_each_message_file_once(
        self, json_store, read_counts, make_conversation, make_message
    ) -> None:
        for c in range(3):
            await json_store.save_conversation(make_conversation(id=f"c{c}"))
            for m in range(2):
                await json_store.save_message(
                    make_message(id=f"c{c}-m{m}", conversation_id=f"c{c}")
                )
        indexer = DataIndexer(store=json_store, config=IndexerConfig(schedule=False))

        result = await indexer.build_index()

        assert result.messages_indexed == 6
        message_reads = {k: v for k, v in read_counts.items() if "-m" in k}
        assert len(message_reads) == 6
        assert set(message_reads.values()) == {1}

        read_counts.clear()
        await indexer.build_index(force_rebuild=True)
        assert sum(read_counts.values()) == 0

    @pytest.mark.asyncio
    async def test_new_message_visible_after_listing(
        self, json_store, make_message
    ) -> None:
        await json_store.save_message(make_message(id="m1", timestamp=1))
        assert [m.id for m in await json_store.get_messages("c1")] == ["m1"]

        await json_store.save_message(make_message(id="m2", timestamp=2))

        assert [m.id for m in await json_store.get_messages("c1")] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_rewritten_record_reread(self, json_store, make_message) -> None:
        await json_store.save_message(make_message(id="m1", content="first"))
        assert (await json_store.get_message("m1")).content == "first"

        await json_store.save_message(make_message(id="m1", content="second"))

        assert (await json_store.get_message("m1")).content == "second"
        assert [m.content for m in await json_store.get_messages("c1")] == ["second"]

    @pytest.mark.asyncio
    async def test_message_moved_to_other_conversation(
        self, json_store, make_message
    ) -> None:
        await json_store.save_message(make_message(id="m1", conversation_id="c1"))
        assert len(await json_store.get_messages("c1")) == 1

        await json_store.save_message(make_message(id="m1", conversation_id="c2"))

        assert await json_store.get_messages("c1") == []
        assert [m.id for m in await json_store.get_messages("c2")] == ["m1"]

    @pytest.mark.asyncio
    async def test_read_record_id(self, json_store, make_conversation) -> None:
        await json_store.save_conversation(make_conversation(id="chat/1"))
        path = json_store.conversation_path("chat/1")

        assert json_store.read_record_id(path, Conversation) == "chat/1"
        assert json_store.read_record_id(path.with_name("nope.json"), Conversation) is None


class TestMemoryStore:
    """Tests for MemoryStore."""

    def test_implements_protocol(self) -> None:
        assert isinstance(MemoryStore(), ConversationStore)

    @pytest.mark.asyncio
    async def test_delete_conversation_cascades(self, sample_store: MemoryStore) -> None:
        await sample_store.delete_conversation("c1")

        assert await sample_store.get_conversation("c1") is None
        assert await sample_store.get_messages("c1") == []
        assert await sample_store.get_message("m3") is not None

    @pytest.mark.asyncio
    async def test_listing_order(self, sample_store: MemoryStore) -> None:
        conversations = await sample_store.get_conversations()
        assert [c.id for c in conversations] == ["c2", "c1"]

    @pytest.mark.asyncio
    async def test_save_and_delete_message(self, make_message) -> None:
        store = MemoryStore()
        await store.save_message(make_message(id="m1"))
        assert (await store.get_message("m1")).id == "m1"

        await store.delete_message("m1")

        assert await store.get_message("m1") is None
        assert await store.get_messages("c1") == []

    @pytest.mark.parametrize(
        "method", ["save_conversation", "save_message", "delete_conversation", "delete_message"]
    )
    def test_write_methods_match_json_store(self, method: str) -> None:
        memory_method = getattr(MemoryStore, method)
        json_method = getattr(JsonFileStore, method)

        assert inspect.iscoroutinefunction(memory_method)
        assert inspect.iscoroutinefunction(json_method)
        assert list(inspect.signature(memory_method).parameters) == list(
            inspect.signature(json_method).parameters
        )
