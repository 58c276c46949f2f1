"""Conversation Search: full-text TF-IDF search over a conversation history store."""

from conversation_search.fuzzy import is_fuzzy_match, levenshtein_distance
from conversation_search.indexer import BuildResult, DataIndexer, IndexerConfig, IndexStats
from conversation_search.inverted_index import InvertedIndex
from conversation_search.models import (
    CodeChange,
    Conversation,
    ConversationFilter,
    DateRange,
    Message,
    MessageFilter,
)
from conversation_search.persistence import (
    IndexMetadata,
    IndexStore,
    deserialize_index,
    serialize_index,
)
from conversation_search.search import (
    ConversationSearchResult,
    Match,
    MessageSearchResult,
    SearchEngine,
    SearchOptions,
)
from conversation_search.store import ConversationStore, JsonFileStore, MemoryStore, StoreError
from conversation_search.tokenizer import tokenize

__version__ = "0.1.0"

__all__ = [
    # Models
    "CodeChange",
    "Conversation",
    "ConversationFilter",
    "DateRange",
    "Message",
    "MessageFilter",
    # Text
    "tokenize",
    "is_fuzzy_match",
    "levenshtein_distance",
    # Index
    "InvertedIndex",
    "IndexMetadata",
    "IndexStore",
    "serialize_index",
    "deserialize_index",
    # Lifecycle
    "BuildResult",
    "DataIndexer",
    "IndexerConfig",
    "IndexStats",
    # Search
    "ConversationSearchResult",
    "Match",
    "MessageSearchResult",
    "SearchEngine",
    "SearchOptions",
    # Store
    "ConversationStore",
    "JsonFileStore",
    "MemoryStore",
    "StoreError",
]
