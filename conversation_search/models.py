"""Conversation and message records plus the filters applied to them.

Records are read from the conversation store and serialized with camelCase
keys so the JSON files on disk stay compatible with the store layout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Sender = Literal["user", "ai"]
ChangeType = Literal["create", "modify", "delete"]
ConversationStatus = Literal["active", "archived"]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class CodeChange:
    """A file change attached to a message."""

    file_path: str
    change_type: ChangeType = "modify"
    before_content: str | None = None
    after_content: str | None = None

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        result: dict = {
            "filePath": self.file_path,
            "changeType": self.change_type,
        }
        if self.before_content is not None:
            result["beforeContent"] = self.before_content
        if self.after_content is not None:
            result["afterContent"] = self.after_content
        return result

    @classmethod
    def from_dict(cls, data: dict) -> CodeChange:
        """Deserialize from dictionary."""
        return cls(
            file_path=data["filePath"],
            change_type=data.get("changeType", "modify"),
            before_content=data.get("beforeContent"),
            after_content=data.get("afterContent"),
        )


@dataclass
class Message:
    """A single message inside a conversation."""

    id: str
    conversation_id: str
    content: str
    sender: Sender = "user"
    timestamp: int = 0  # epoch milliseconds
    code_changes: list[CodeChange] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    @property
    def has_code_changes(self) -> bool:
        return len(self.code_changes) > 0

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "content": self.content,
            "sender": self.sender,
            "timestamp": self.timestamp,
            "codeChanges": [c.to_dict() for c in self.code_changes],
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            conversation_id=data["conversationId"],
            content=data.get("content") or "",
            sender=data.get("sender", "user"),
            timestamp=int(data.get("timestamp", 0)),
            code_changes=[CodeChange.from_dict(c) for c in data.get("codeChanges") or []],
            tags=list(data.get("tags") or []),
        )


@dataclass
class Conversation:
    """Conversation header; messages are fetched separately from the store."""

    id: str
    title: str
    timestamp: int = 0  # epoch milliseconds
    status: ConversationStatus = "active"
    tags: list[str] = field(default_factory=list)
    message_count: int = 0

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "title": self.title,
            "timestamp": self.timestamp,
            "status": self.status,
            "metadata": {
                "tags": list(self.tags),
                "messageCount": self.message_count,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> Conversation:
        """Deserialize from dictionary."""
        metadata = data.get("metadata") or {}
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            timestamp=int(data.get("timestamp", 0)),
            status=data.get("status", "active"),
            tags=list(metadata.get("tags") or []),
            message_count=int(metadata.get("messageCount", 0)),
        )


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass
class DateRange:
    """Inclusive timestamp range in epoch milliseconds."""

    start: int
    end: int

    def contains(self, timestamp: int) -> bool:
        return self.start <= timestamp <= self.end


@dataclass
class ConversationFilter:
    """Structured constraints for conversation listings and searches."""

    status: Literal["active", "archived", "all"] | None = None
    tags: list[str] = field(default_factory=list)
    date_range: DateRange | None = None

    def matches(self, conversation: Conversation) -> bool:
        """Check if a conversation satisfies every constraint that is set.

        Tags use OR semantics: the conversation needs at least one of them.
        """
        if self.status and self.status != "all":
            if conversation.status != self.status:
                return False

        if self.tags:
            if not any(tag in conversation.tags for tag in self.tags):
                return False

        if self.date_range is not None:
            if not self.date_range.contains(conversation.timestamp):
                return False

        return True


@dataclass
class MessageFilter:
    """Structured constraints for message listings and searches."""

    conversation_id: str | None = None
    sender: Literal["user", "ai", "all"] | None = None
    has_code_changes: bool | None = None
    date_range: DateRange | None = None

    def matches(self, message: Message) -> bool:
        """Check if a message satisfies every constraint that is set."""
        if self.conversation_id and message.conversation_id != self.conversation_id:
            return False

        if self.sender and self.sender != "all" and message.sender != self.sender:
            return False

        if self.has_code_changes is not None:
            if message.has_code_changes != self.has_code_changes:
                return False

        if self.date_range is not None:
            if not self.date_range.contains(message.timestamp):
                return False

        return True


def matches_conversation_filter(
    conversation: Conversation, filter: ConversationFilter | None
) -> bool:
    """Apply an optional conversation filter."""
    return filter is None or filter.matches(conversation)


def matches_message_filter(message: Message, filter: MessageFilter | None) -> bool:
    """Apply an optional message filter."""
    return filter is None or filter.matches(message)
