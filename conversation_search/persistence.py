"""On-disk persistence for the search index.

The index is a CACHE: it can always be rebuilt from the conversation store.
Each structure is stored as its own JSON artifact so that one corrupt file
only empties that structure instead of failing the whole load:

- conversation-index.json   {term: {conversation_id: weight}}
- message-index.json        {term: {message_id: weight}}
- term-frequency.json       {"conversations": {term: weight}, "messages": {...}}
- document-frequency.json   {"conversations": {term: count}, "messages": {...}}
- index-metadata.json       counts, timestamps, size estimate, format version

Counters are derived from the postings on load; the stored counters are only
compared against them so drift gets logged.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from conversation_search.inverted_index import InvertedIndex

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0.0"

CONVERSATION_INDEX_FILE = "conversation-index.json"
MESSAGE_INDEX_FILE = "message-index.json"
TERM_FREQUENCY_FILE = "term-frequency.json"
DOCUMENT_FREQUENCY_FILE = "document-frequency.json"
METADATA_FILE = "index-metadata.json"


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def serialize_index(index: InvertedIndex) -> str:
    """Encode an index's postings as a JSON object of objects."""
    return json.dumps(index.to_dict(), sort_keys=True)


def deserialize_index(text: str, name: str = "index") -> InvertedIndex:
    """Decode postings produced by serialize_index.

    Raises:
        ValueError: If the text is not valid JSON or not a term -> postings object.
        TypeError: If a postings entry has the wrong shape.
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("index artifact must be a JSON object")
    return InvertedIndex.from_dict(data, name=name)


def _parse_version(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class IndexMetadata:
    """Summary persisted next to the index; every field is recomputable."""

    conversation_count: int = 0
    message_count: int = 0
    term_count: int = 0
    last_updated: int = 0  # epoch milliseconds of the last build
    index_size: int = 0
    version: str = FORMAT_VERSION

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "conversationCount": self.conversation_count,
            "messageCount": self.message_count,
            "termCount": self.term_count,
            "lastUpdated": self.last_updated,
            "indexSize": self.index_size,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict) -> IndexMetadata:
        """Deserialize from dictionary."""
        return cls(
            conversation_count=int(data.get("conversationCount", 0)),
            message_count=int(data.get("messageCount", 0)),
            term_count=int(data.get("termCount", 0)),
            last_updated=int(data.get("lastUpdated", 0)),
            index_size=int(data.get("indexSize", 0)),
            version=str(data.get("version", FORMAT_VERSION)),
        )


@dataclass
class LoadedIndex:
    """Result of IndexStore.load()."""

    conversations: InvertedIndex = field(
        default_factory=lambda: InvertedIndex(name="conversations")
    )
    messages: InvertedIndex = field(default_factory=lambda: InvertedIndex(name="messages"))
    metadata: IndexMetadata = field(default_factory=IndexMetadata)
    # Artifacts that were missing or unreadable
    missing: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return len(self.conversations) == 0 and len(self.messages) == 0


# ---------------------------------------------------------------------------
# IndexStore
# ---------------------------------------------------------------------------


class IndexStore:
    """Reads and writes the index artifacts in one directory.

    A save first writes every artifact to a temp file in the same
    directory and only renames them into place once all temp writes
    succeeded, so a failed write leaves the previous set untouched.
    """

    def __init__(self, index_dir: Path) -> None:
        self.index_dir = Path(index_dir).expanduser()

    def _path(self, name: str) -> Path:
        return self.index_dir / name

    # -----------------------------------------------------------------------
    # Save
    # -----------------------------------------------------------------------

    def save(
        self,
        conversations: InvertedIndex,
        messages: InvertedIndex,
        metadata: IndexMetadata,
    ) -> bool:
        """Persist both indexes, their counters and the metadata summary.

        Returns:
            True if every artifact was written.
        """
        artifacts = {
            CONVERSATION_INDEX_FILE: serialize_index(conversations),
            MESSAGE_INDEX_FILE: serialize_index(messages),
            TERM_FREQUENCY_FILE: json.dumps(
                {
                    "conversations": conversations.term_weights_dict(),
                    "messages": messages.term_weights_dict(),
                },
                sort_keys=True,
            ),
            DOCUMENT_FREQUENCY_FILE: json.dumps(
                {
                    "conversations": conversations.document_frequency_dict(),
                    "messages": messages.document_frequency_dict(),
                },
                sort_keys=True,
            ),
            METADATA_FILE: json.dumps(metadata.to_dict(), indent=2),
        }

        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create index directory {self.index_dir}: {e}")
            return False

        ok = True
        staged: list[tuple[str, str]] = []
        try:
            for name, content in artifacts.items():
                staged.append((self._write_temp(self._path(name), content), name))
        except OSError as e:
            logger.error(f"Failed to save index artifact {name}: {e}")
            self._discard(temp for temp, _ in staged)
            return False

        for position, (temp_path, name) in enumerate(staged):
            try:
                os.replace(temp_path, self._path(name))
            except OSError as e:
                logger.error(f"Failed to save index artifact {name}: {e}")
                self._discard(temp for temp, _ in staged[position:])
                ok = False
                break

        if ok:
            logger.debug(
                f"Saved search index ({metadata.conversation_count} conversations, "
                f"{metadata.message_count} messages) to {self.index_dir}"
            )
        return ok

    def _write_temp(self, path: Path, content: str) -> str:
        """Write content to a temp file beside path and return the temp path."""
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=".index_",
            suffix=".json.tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
        except Exception:
            os.unlink(temp_path)
            raise
        return temp_path

    @staticmethod
    def _discard(temp_paths) -> None:
        for temp_path in temp_paths:
            try:
                os.unlink(temp_path)
            except FileNotFoundError:
                pass

    # -----------------------------------------------------------------------
    # Load
    # -----------------------------------------------------------------------

    def load(self) -> LoadedIndex:
        """Load whatever artifacts are readable.

        A missing, unreadable or malformed artifact leaves its structure
        empty; it never aborts the rest of the load.
        """
        result = LoadedIndex()

        if not self.index_dir.is_dir():
            logger.debug(f"No persisted index at {self.index_dir}")
            result.missing = [
                CONVERSATION_INDEX_FILE,
                MESSAGE_INDEX_FILE,
                TERM_FREQUENCY_FILE,
                DOCUMENT_FREQUENCY_FILE,
                METADATA_FILE,
            ]
            return result

        metadata_data = self._read_json(METADATA_FILE, result.missing)
        if isinstance(metadata_data, dict):
            try:
                metadata = IndexMetadata.from_dict(metadata_data)
                if _parse_version(metadata.version) > _parse_version(FORMAT_VERSION):
                    logger.warning(
                        f"Index metadata version {metadata.version} is newer than "
                        f"supported {FORMAT_VERSION}, ignoring it"
                    )
                    result.missing.append(METADATA_FILE)
                else:
                    result.metadata = metadata
            except (TypeError, ValueError) as e:
                logger.warning(f"Malformed index metadata: {e}")
                result.missing.append(METADATA_FILE)

        result.conversations = self._load_index(
            CONVERSATION_INDEX_FILE, "conversations", result.missing
        )
        result.messages = self._load_index(MESSAGE_INDEX_FILE, "messages", result.missing)

        term_weights = self._read_json(TERM_FREQUENCY_FILE, result.missing)
        document_frequency = self._read_json(DOCUMENT_FREQUENCY_FILE, result.missing)
        for key, index in (
            ("conversations", result.conversations),
            ("messages", result.messages),
        ):
            self._check_counters(index, key, term_weights, document_frequency)

        self._check_counts(result)

        logger.info(
            f"Loaded search index from {self.index_dir}: "
            f"{result.conversations.document_count} conversations, "
            f"{result.messages.document_count} messages, "
            f"{result.conversations.term_count + result.messages.term_count} terms"
        )
        return result

    def _read_json(self, name: str, missing: list[str]) -> object | None:
        path = self._path(name)
        if not path.exists():
            missing.append(name)
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read index artifact {name}: {e}")
            missing.append(name)
            return None

    def _load_index(self, name: str, index_name: str, missing: list[str]) -> InvertedIndex:
        data = self._read_json(name, missing)
        if data is None:
            return InvertedIndex(name=index_name)
        if not isinstance(data, dict):
            logger.warning(f"Index artifact {name} is not a JSON object, ignoring it")
            missing.append(name)
            return InvertedIndex(name=index_name)
        try:
            return InvertedIndex.from_dict(data, name=index_name)
        except (TypeError, ValueError) as e:
            logger.warning(f"Malformed index artifact {name}: {e}")
            missing.append(name)
            return InvertedIndex(name=index_name)

    def _check_counters(
        self,
        index: InvertedIndex,
        key: str,
        term_weights: object | None,
        document_frequency: object | None,
    ) -> None:
        """Log drift between stored counters and counters derived from postings."""
        if isinstance(document_frequency, dict):
            stored = document_frequency.get(key)
            if isinstance(stored, dict) and stored != index.document_frequency_dict():
                logger.warning(
                    f"Stored document frequency for {key} disagrees with postings, "
                    "using values derived from postings"
                )
        if isinstance(term_weights, dict):
            stored = term_weights.get(key)
            if isinstance(stored, dict) and set(stored) != set(index.terms()):
                logger.warning(
                    f"Stored term weights for {key} disagree with postings, "
                    "using values derived from postings"
                )

    def _check_counts(self, result: LoadedIndex) -> None:
        metadata = result.metadata
        if METADATA_FILE in result.missing:
            return
        if (
            metadata.conversation_count != result.conversations.document_count
            or metadata.message_count != result.messages.document_count
        ):
            logger.info(
                f"Index metadata counts ({metadata.conversation_count} conversations, "
                f"{metadata.message_count} messages) differ from postings "
                f"({result.conversations.document_count}, {result.messages.document_count})"
            )
