"""Conversation store collaborator.

The indexer reads documents from any object implementing ConversationStore.
Two implementations ship here:

- JsonFileStore: one JSON file per conversation and per message on disk
- MemoryStore: dict-backed store for tests and embedding applications
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Protocol, TypeVar, runtime_checkable

from conversation_search.models import (
    Conversation,
    ConversationFilter,
    Message,
    MessageFilter,
    matches_conversation_filter,
    matches_message_filter,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", Conversation, Message)

# Directory mtimes newer than this are not trusted to catch a later change
MTIME_RESOLUTION_NS = 1_000_000_000


class StoreError(Exception):
    """Raised when a stored document exists but cannot be read."""


@runtime_checkable
class ConversationStore(Protocol):
    """Read interface the indexer and search engine depend on."""

    async def get_conversations(
        self, filter: ConversationFilter | None = None
    ) -> list[Conversation]:
        """Return all conversations matching the filter, newest first."""
        ...

    async def get_conversation(self, id: str) -> Conversation | None:
        """Return one conversation, or None if it does not exist."""
        ...

    async def get_messages(
        self, conversation_id: str, filter: MessageFilter | None = None
    ) -> list[Message]:
        """Return the messages of a conversation, oldest first."""
        ...

    async def get_message(self, id: str) -> Message | None:
        """Return one message, or None if it does not exist."""
        ...


def sanitize_id(doc_id: str) -> str:
    """Make a document id safe to use as a filename.

    Args:
        doc_id: The raw id issued by the store.

    Returns:
        The id with filesystem-hostile characters replaced by underscores.
    """
    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f]', "_", doc_id)
    sanitized = re.sub(r"_+", "_", sanitized)
    sanitized = sanitized.strip("_.")
    if not sanitized:
        sanitized = "_"
    return sanitized


# ---------------------------------------------------------------------------
# JsonFileStore
# ---------------------------------------------------------------------------


class JsonFileStore:
    """Store backed by JSON files.

    Layout::

        root/
            conversations/<conversation_id>.json
            messages/<message_id>.json

    Parsed records are cached per file and re-read only when the file's
    inode, mtime or size changes. Message files are grouped by conversation
    in one pass over ``messages/``; the grouping is rebuilt when the
    directory's mtime changes (every save or delete renames or unlinks a
    file in it), or on every call while that mtime is too recent to trust.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()
        self.conversations_dir = self.root / "conversations"
        self.messages_dir = self.root / "messages"

        self._records: dict[Path, tuple[tuple[int, int, int], Conversation | Message]] = {}
        self._message_groups: dict[str, list[Path]] = {}
        self._message_groups_stamp: int | None = None

    def conversation_path(self, conversation_id: str) -> Path:
        return self.conversations_dir / f"{sanitize_id(conversation_id)}.json"

    def message_path(self, message_id: str) -> Path:
        return self.messages_dir / f"{sanitize_id(message_id)}.json"

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    async def get_conversations(
        self, filter: ConversationFilter | None = None
    ) -> list[Conversation]:
        conversations: list[Conversation] = []
        for path in self._list_json(self.conversations_dir):
            try:
                conversation = self._load(path, Conversation)
            except StoreError as e:
                logger.warning(f"Skipping conversation file {path.name}: {e}")
                continue
            if matches_conversation_filter(conversation, filter):
                conversations.append(conversation)

        conversations.sort(key=lambda c: c.timestamp, reverse=True)
        return conversations

    async def get_conversation(self, id: str) -> Conversation | None:
        path = self.conversation_path(id)
        if not path.exists():
            return None
        return self._load(path, Conversation)

    async def get_messages(
        self, conversation_id: str, filter: MessageFilter | None = None
    ) -> list[Message]:
        messages: list[Message] = []
        for path in self._message_paths(conversation_id):
            try:
                message = self._load(path, Message)
            except StoreError as e:
                logger.warning(f"Skipping message file {path.name}: {e}")
                continue
            # Rewritten in place since the grouping was built
            if message.conversation_id != conversation_id:
                continue
            if matches_message_filter(message, filter):
                messages.append(message)

        messages.sort(key=lambda m: m.timestamp)
        return messages

    async def get_message(self, id: str) -> Message | None:
        path = self.message_path(id)
        if not path.exists():
            return None
        return self._load(path, Message)

    def read_record_id(self, path: Path, record_type: type[RecordT]) -> str | None:
        """Return the id stored in a conversation or message file.

        Returns:
            The record id, or None if the file is missing or unreadable.
        """
        try:
            return self._load(path, record_type).id
        except StoreError as e:
            logger.debug(f"Cannot read record id from {path.name}: {e}")
            return None

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    async def save_conversation(self, conversation: Conversation) -> None:
        self._write(self.conversation_path(conversation.id), conversation.to_dict())

    async def save_message(self, message: Message) -> None:
        self._write(self.message_path(message.id), message.to_dict())

    async def delete_conversation(self, id: str) -> None:
        """Delete a conversation and every message that belongs to it."""
        for message in await self.get_messages(id):
            await self.delete_message(message.id)
        self._unlink(self.conversation_path(id))

    async def delete_message(self, id: str) -> None:
        self._unlink(self.message_path(id))

    # -----------------------------------------------------------------------
    # File helpers
    # -----------------------------------------------------------------------

    def _list_json(self, directory: Path) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.suffix == ".json")

    def _message_paths(self, conversation_id: str) -> list[Path]:
        """Message files of one conversation, regrouping if the directory changed."""
        try:
            stamp = self.messages_dir.stat().st_mtime_ns
        except FileNotFoundError:
            self._message_groups = {}
            self._message_groups_stamp = None
            return []

        if stamp != self._message_groups_stamp:
            groups: dict[str, list[Path]] = {}
            for path in self._list_json(self.messages_dir):
                try:
                    message = self._load(path, Message)
                except StoreError as e:
                    logger.warning(f"Skipping message file {path.name}: {e}")
                    continue
                groups.setdefault(message.conversation_id, []).append(path)
            self._message_groups = groups
            # A change in the same clock tick would leave the mtime as is
            recent = time.time_ns() - stamp < MTIME_RESOLUTION_NS
            self._message_groups_stamp = None if recent else stamp
            self._forget_missing(self.messages_dir, [p for paths in groups.values() for p in paths])

        return list(self._message_groups.get(conversation_id, []))

    def _forget_missing(self, directory: Path, present: list[Path]) -> None:
        keep = set(present)
        for path in [p for p in self._records if p.parent == directory and p not in keep]:
            del self._records[path]

    def _unlink(self, path: Path) -> None:
        path.unlink(missing_ok=True)
        self._records.pop(path, None)

    def _load(self, path: Path, record_type: type[RecordT]) -> RecordT:
        """Parse a record file, reusing the cached record while it is unchanged."""
        try:
            stat = path.stat()
        except OSError as e:
            self._records.pop(path, None)
            raise StoreError(f"Cannot read {path}: {e}") from e

        file_stamp = (stat.st_ino, stat.st_mtime_ns, stat.st_size)
        cached = self._records.get(path)
        if cached is not None and cached[0] == file_stamp and isinstance(cached[1], record_type):
            return cached[1]

        self._records.pop(path, None)
        record = self._parse(path, record_type)
        self._records[path] = (file_stamp, record)
        return record

    def _read(self, path: Path) -> dict:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read {path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"Expected a JSON object in {path}")
        if "id" not in data:
            raise StoreError(f"Missing id in {path}")
        return data

    def _parse(self, path: Path, record_type: type[RecordT]) -> RecordT:
        data = self._read(path)
        try:
            return record_type.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Malformed record in {path}: {e}") from e

    def _write(self, path: Path, data: dict) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".store_",
            suffix=".json.tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise


# ---------------------------------------------------------------------------
# MemoryStore
# ---------------------------------------------------------------------------


class MemoryStore:
    """In-memory store keyed by document id."""

    def __init__(
        self,
        conversations: list[Conversation] | None = None,
        messages: list[Message] | None = None,
    ) -> None:
        self.conversations: dict[str, Conversation] = {c.id: c for c in conversations or []}
        self.messages: dict[str, Message] = {m.id: m for m in messages or []}

    async def get_conversations(
        self, filter: ConversationFilter | None = None
    ) -> list[Conversation]:
        result = [
            c for c in self.conversations.values() if matches_conversation_filter(c, filter)
        ]
        result.sort(key=lambda c: c.timestamp, reverse=True)
        return result

    async def get_conversation(self, id: str) -> Conversation | None:
        return self.conversations.get(id)

    async def get_messages(
        self, conversation_id: str, filter: MessageFilter | None = None
    ) -> list[Message]:
        result = [
            m
            for m in self.messages.values()
            if m.conversation_id == conversation_id and matches_message_filter(m, filter)
        ]
        result.sort(key=lambda m: m.timestamp)
        return result

    async def get_message(self, id: str) -> Message | None:
        return self.messages.get(id)

    async def save_conversation(self, conversation: Conversation) -> None:
        self.conversations[conversation.id] = conversation

    async def save_message(self, message: Message) -> None:
        self.messages[message.id] = message

    async def delete_conversation(self, id: str) -> None:
        """Delete a conversation and every message that belongs to it."""
        self.conversations.pop(id, None)
        for message_id in [m.id for m in self.messages.values() if m.conversation_id == id]:
            del self.messages[message_id]

    async def delete_message(self, id: str) -> None:
        self.messages.pop(id, None)
