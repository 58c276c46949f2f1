"""Keeps the search index in step with a JsonFileStore on disk."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from watchfiles import Change, awatch

from conversation_search.indexer import DataIndexer
from conversation_search.models import Conversation, Message
from conversation_search.store import JsonFileStore

logger = logging.getLogger(__name__)


def _is_record_file(path: Path) -> bool:
    # Skips the store's own temp files (".store_*.json.tmp")
    return path.suffix == ".json" and not path.name.startswith(".")


@dataclass
class StoreWatcher:
    """Watches the store's conversation and message directories.

    Added or modified record files are re-read and re-indexed; deleted
    files are removed from the index. Uses the watchfiles library for
    change detection (inotify on Linux, kqueue on macOS).
    """

    store: JsonFileStore
    indexer: DataIndexer
    debounce_ms: int = 100

    # Record id per resolved file path, so deletions map back to an id
    _path_to_id: dict[Path, str] = field(default_factory=dict)
    _running: bool = False
    _watch_task: asyncio.Task | None = field(default=None, repr=False)
    _stop_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently running."""
        return self._running

    async def start(self) -> None:
        """Start watching the store directories in the background."""
        if self._running:
            return

        self.store.conversations_dir.mkdir(parents=True, exist_ok=True)
        self.store.messages_dir.mkdir(parents=True, exist_ok=True)
        self._scan_existing()

        self._running = True
        self._stop_event.clear()
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(f"Watching conversation store at {self.store.root}")

    async def stop(self) -> None:
        """Stop watching and wait for the watch loop to end."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

    def _scan_existing(self) -> None:
        """Seed the path -> id map from the records already on disk.

        File names are sanitized ids, so the id is read from each record.
        Unreadable files are skipped; a later delete falls back to the stem.
        """
        for directory, record_type in (
            (self.store.conversations_dir, Conversation),
            (self.store.messages_dir, Message),
        ):
            for path in directory.glob("*.json"):
                if not _is_record_file(path):
                    continue
                doc_id = self.store.read_record_id(path, record_type)
                if doc_id is not None:
                    self._path_to_id[path.resolve()] = doc_id

    async def _watch_loop(self) -> None:
        watch_paths = (self.store.conversations_dir, self.store.messages_dir)
        while self._running:
            try:
                async for changes in awatch(
                    *watch_paths,
                    stop_event=self._stop_event,
                    debounce=self.debounce_ms,
                    recursive=False,
                ):
                    if not self._running:
                        break
                    await self.handle_changes(changes)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in store watch loop: {e}")
                await asyncio.sleep(0.5)

    async def handle_changes(self, changes: set[tuple[Change, str]]) -> None:
        """Apply a batch of file change events to the index.

        Args:
            changes: Set of (change_type, path) tuples from watchfiles.
        """
        conversations_dir = self.store.conversations_dir.resolve()
        messages_dir = self.store.messages_dir.resolve()

        for change_type, path_str in sorted(changes, key=lambda c: c[1]):
            path = Path(path_str).resolve()
            if not _is_record_file(path):
                continue

            try:
                if path.parent == conversations_dir:
                    await self._conversation_changed(change_type, path)
                elif path.parent == messages_dir:
                    await self._message_changed(change_type, path)
            except Exception as e:
                logger.error(f"Error applying store change for {path.name}: {e}")

    async def _conversation_changed(self, change_type: Change, path: Path) -> None:
        if change_type == Change.deleted:
            doc_id = self._path_to_id.pop(path, path.stem)
            await self.indexer.remove_conversation_from_index(doc_id)
            return

        conversation = await self.store.get_conversation(path.stem)
        if conversation is None:
            return
        self._path_to_id[path] = conversation.id
        await self.indexer.update_conversation_index(conversation)

    async def _message_changed(self, change_type: Change, path: Path) -> None:
        if change_type == Change.deleted:
            doc_id = self._path_to_id.pop(path, path.stem)
            await self.indexer.remove_message_from_index(doc_id)
            return

        message = await self.store.get_message(path.stem)
        if message is None:
            return
        self._path_to_id[path] = message.id
        await self.indexer.update_message_index(message)
