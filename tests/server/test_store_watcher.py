"""Tests for StoreWatcher."""

from __future__ import annotations

from pathlib import Path

import pytest
from watchfiles import Change

from conversation_search.indexer import DataIndexer, IndexerConfig
from conversation_search.server.store_watcher import StoreWatcher, _is_record_file
from conversation_search.store import JsonFileStore


@pytest.fixture
def watched_indexer(json_store: JsonFileStore) -> DataIndexer:
    return DataIndexer(store=json_store, config=IndexerConfig(schedule=False))


@pytest.fixture
def watcher(json_store: JsonFileStore, watched_indexer: DataIndexer) -> StoreWatcher:
    return StoreWatcher(store=json_store, indexer=watched_indexer)


class TestIsRecordFile:
    """Tests for _is_record_file()."""

    def test_json_record(self) -> None:
        assert _is_record_file(Path("/store/conversations/c1.json"))

    def test_temp_and_other_files(self) -> None:
        assert not _is_record_file(Path("/store/conversations/.store_abc.json.tmp"))
        assert not _is_record_file(Path("/store/conversations/.hidden.json"))
        assert not _is_record_file(Path("/store/conversations/notes.txt"))


class TestHandleChanges:
    """Tests for StoreWatcher.handle_changes()."""

    @pytest.mark.asyncio
    async def test_added_conversation_indexed(
        self, watcher: StoreWatcher, json_store: JsonFileStore, make_conversation
    ) -> None:
        await json_store.save_conversation(make_conversation(id="c1"))
        path = json_store.conversation_path("c1")

        await watcher.handle_changes({(Change.added, str(path))})

        assert watcher.indexer.conversation_index.contains("c1")

    @pytest.mark.asyncio
    async def test_modified_message_reindexed(
        self, watcher: StoreWatcher, json_store: JsonFileStore, make_message
    ) -> None:
        await json_store.save_message(make_message(id="m1", content="first draft"))
        path = str(json_store.message_path("m1"))
        await watcher.handle_changes({(Change.added, path)})

        await json_store.save_message(make_message(id="m1", content="final version"))
        await watcher.handle_changes({(Change.modified, path)})

        index = watcher.indexer.message_index
        assert "m1" in index.postings("final")
        assert "m1" not in index.postings("draft")

    @pytest.mark.asyncio
    async def test_deleted_files_removed(
        self, watcher: StoreWatcher, json_store: JsonFileStore, make_conversation, make_message
    ) -> None:
        await json_store.save_conversation(make_conversation(id="c1"))
        await json_store.save_message(make_message(id="m1"))
        conv_path = str(json_store.conversation_path("c1"))
        msg_path = str(json_store.message_path("m1"))
        await watcher.handle_changes({(Change.added, conv_path), (Change.added, msg_path)})

        await json_store.delete_conversation("c1")
        await watcher.handle_changes({(Change.deleted, conv_path), (Change.deleted, msg_path)})

        assert not watcher.indexer.conversation_index.contains("c1")
        assert not watcher.indexer.message_index.contains("m1")

    @pytest.mark.asyncio
    async def test_deleted_file_maps_back_to_original_id(
        self, watcher: StoreWatcher, json_store: JsonFileStore, make_conversation
    ) -> None:
        """A sanitized file name still removes the id it was indexed under."""
        await json_store.save_conversation(make_conversation(id="team/c1"))
        path = json_store.conversation_path("team/c1")
        assert path.name == "team_c1.json"

        await watcher.handle_changes({(Change.added, str(path))})
        assert watcher.indexer.conversation_index.contains("team/c1")

        path.unlink()
        await watcher.handle_changes({(Change.deleted, str(path))})

        assert not watcher.indexer.conversation_index.contains("team/c1")

    @pytest.mark.asyncio
    async def test_ignores_temp_files_and_other_dirs(
        self, watcher: StoreWatcher, json_store: JsonFileStore, make_conversation, tmp_path: Path
    ) -> None:
        await json_store.save_conversation(make_conversation(id="c1"))
        stray = tmp_path / "elsewhere" / "c1.json"

        await watcher.handle_changes(
            {
                (Change.added, str(json_store.conversations_dir / ".store_x.json.tmp")),
                (Change.added, str(stray)),
            }
        )

        assert watcher.indexer.conversation_index.document_count == 0

    @pytest.mark.asyncio
    async def test_corrupt_file_does_not_stop_batch(
        self, watcher: StoreWatcher, json_store: JsonFileStore, make_conversation
    ) -> None:
        await json_store.save_conversation(make_conversation(id="good"))
        bad = json_store.conversations_dir / "bad.json"
        bad.write_text("{oops")

        await watcher.handle_changes(
            {
                (Change.added, str(bad)),
                (Change.added, str(json_store.conversation_path("good"))),
            }
        )

        assert watcher.indexer.conversation_index.contains("good")
        assert not watcher.indexer.conversation_index.contains("bad")

    @pytest.mark.asyncio
    async def test_file_gone_before_read(self, watcher: StoreWatcher, json_store: JsonFileStore) -> None:
        json_store.conversations_dir.mkdir(parents=True)
        path = json_store.conversations_dir / "vanished.json"

        await watcher.handle_changes({(Change.added, str(path))})

        assert watcher.indexer.conversation_index.document_count == 0


class TestLifecycle:
    """Tests for start() / stop()."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, watcher: StoreWatcher, json_store: JsonFileStore) -> None:
        try:
            await watcher.start()
            assert watcher.is_running is True
            assert json_store.conversations_dir.is_dir()
            assert json_store.messages_dir.is_dir()
        finally:
            await watcher.stop()

        assert watcher.is_running is False

    @pytest.mark.asyncio
    async def test_start_seeds_existing_paths(
        self, watcher: StoreWatcher, json_store: JsonFileStore, make_message
    ) -> None:
        await json_store.save_message(make_message(id="m1"))

        try:
            await watcher.start()
            assert watcher._path_to_id[json_store.message_path("m1").resolve()] == "m1"
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_seeded_delete_removes_original_id(
        self,
        watcher: StoreWatcher,
        json_store: JsonFileStore,
        make_conversation,
        make_message,
    ) -> None:
        """Files present before start() map back to the id stored inside them."""
        await json_store.save_conversation(make_conversation(id="chat/1"))
        await json_store.save_message(make_message(id="chat/1:m1", conversation_id="chat/1"))
        await watcher.indexer.build_index()
        conv_path = json_store.conversation_path("chat/1")
        msg_path = json_store.message_path("chat/1:m1")

        try:
            await watcher.start()
            assert watcher._path_to_id[conv_path.resolve()] == "chat/1"
            assert watcher._path_to_id[msg_path.resolve()] == "chat/1:m1"

            conv_path.unlink()
            msg_path.unlink()
            await watcher.handle_changes(
                {(Change.deleted, str(conv_path)), (Change.deleted, str(msg_path))}
            )
        finally:
            await watcher.stop()

        assert not watcher.indexer.conversation_index.contains("chat/1")
        assert not watcher.indexer.message_index.contains("chat/1:m1")
        assert watcher.indexer.get_index_stats().conversation_count == 0

    @pytest.mark.asyncio
    async def test_seeding_skips_unreadable_files(
        self, watcher: StoreWatcher, json_store: JsonFileStore
    ) -> None:
        json_store.conversations_dir.mkdir(parents=True)
        bad = json_store.conversations_dir / "bad.json"
        bad.write_text("{oops")

        try:
            await watcher.start()
            assert bad.resolve() not in watcher._path_to_id
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, watcher: StoreWatcher) -> None:
        await watcher.stop()
        assert watcher.is_running is False
