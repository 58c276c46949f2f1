"""Query engine over the conversation and message indexes.

This module provides:
- SearchEngine: tokenizes a query, walks the index (exact and fuzzy), ranks
  documents by TF-IDF and loads them from the store
- SearchOptions: per-query knobs with defaults
- Result types carrying the document, its 0-100 score and highlight spans
- Highlight helpers: literal case-insensitive substring scans per field
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from conversation_search.fuzzy import is_fuzzy_match
from conversation_search.indexer import DataIndexer
from conversation_search.inverted_index import InvertedIndex
from conversation_search.models import (
    Conversation,
    ConversationFilter,
    Message,
    MessageFilter,
    matches_conversation_filter,
    matches_message_filter,
)
from conversation_search.scoring import FUZZY_PENALTY, MAX_NORMALIZED_SCORE, ScoreAccumulator
from conversation_search.tokenizer import tokenize

logger = logging.getLogger(__name__)

DEFAULT_CONVERSATION_LIMIT = 50
DEFAULT_MESSAGE_LIMIT = 100
CONTEXT_CHARS = 20


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class SearchOptions:
    """Options for a single search.

    ``limit`` and ``fields`` default per document class when left as None;
    ``fields`` is informational and does not restrict the index lookup.
    """

    limit: int | None = None
    fields: list[str] | None = None
    fuzzy: bool = True
    min_score: float = 0.0
    include_highlights: bool = True


@dataclass
class Match:
    """One highlighted occurrence of a query term.

    ``start``/``end`` are offsets into ``text``, which is either the whole
    field or a context window around the occurrence.
    """

    field: str
    text: str
    start: int
    end: int

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "text": self.text,
            "positions": [{"start": self.start, "end": self.end}],
        }


@dataclass
class ConversationSearchResult:
    conversation: Conversation
    score: float
    matches: list[Match] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "conversation": self.conversation.to_dict(),
            "score": self.score,
            "matches": [m.to_dict() for m in self.matches],
        }


@dataclass
class MessageSearchResult:
    message: Message
    score: float
    matches: list[Match] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "message": self.message.to_dict(),
            "score": self.score,
            "matches": [m.to_dict() for m in self.matches],
        }


# ---------------------------------------------------------------------------
# Scoring over an index
# ---------------------------------------------------------------------------


def score_documents(
    index: InvertedIndex,
    query_terms: list[str],
    fuzzy: bool = True,
) -> ScoreAccumulator:
    """Accumulate raw TF-IDF scores per document for the query terms.

    Exact postings of each query term score in full. With fuzzy matching,
    every index term is also tested against the query term and matching
    postings add half their score; the exact term matches itself there too.
    """
    scores = ScoreAccumulator()

    for query_term in query_terms:
        for doc_id, weight in index.postings(query_term).items():
            scores.add(doc_id, index.score(query_term, weight))

        if not fuzzy:
            continue

        for index_term, postings in index.items():
            if not is_fuzzy_match(query_term, index_term):
                continue
            for doc_id, weight in postings.items():
                scores.add(doc_id, index.score(index_term, weight) * FUZZY_PENALTY)

    return scores


# ---------------------------------------------------------------------------
# Highlighting
# ---------------------------------------------------------------------------


def _occurrences(text_lower: str, term: str) -> Iterable[int]:
    pos = text_lower.find(term)
    while pos != -1:
        yield pos
        pos = text_lower.find(term, pos + 1)


def _full_matches(field_name: str, text: str, query_terms: list[str]) -> list[Match]:
    lowered = text.lower()
    return [
        Match(field=field_name, text=text, start=pos, end=pos + len(term))
        for term in query_terms
        for pos in _occurrences(lowered, term)
    ]


def _context_matches(field_name: str, text: str, query_terms: list[str]) -> list[Match]:
    lowered = text.lower()
    matches: list[Match] = []
    for term in query_terms:
        for pos in _occurrences(lowered, term):
            start = max(0, pos - CONTEXT_CHARS)
            end = min(len(text), pos + len(term) + CONTEXT_CHARS)
            matches.append(
                Match(
                    field=field_name,
                    text=text[start:end],
                    start=pos - start,
                    end=pos - start + len(term),
                )
            )
    return matches


def find_conversation_matches(conversation: Conversation, query_terms: list[str]) -> list[Match]:
    """Every occurrence of each query term in the conversation title."""
    return _full_matches("title", conversation.title, query_terms)


def find_message_matches(message: Message, query_terms: list[str]) -> list[Match]:
    """Every occurrence of each query term in a message.

    Content and code-change after-content matches carry a window of up to
    20 characters on each side; file path matches carry the whole path.
    """
    matches = _context_matches("content", message.content, query_terms)
    for i, change in enumerate(message.code_changes):
        matches.extend(_full_matches(f"codeChanges[{i}].filePath", change.file_path, query_terms))
        if change.after_content:
            matches.extend(
                _context_matches(f"codeChanges[{i}].afterContent", change.after_content, query_terms)
            )
    return matches


# ---------------------------------------------------------------------------
# SearchEngine
# ---------------------------------------------------------------------------


class SearchEngine:
    """Ranks conversations and messages for free-text queries.

    Reads the indexer's indexes without mutating them and loads matching
    documents from the indexer's store.
    """

    def __init__(self, indexer: DataIndexer) -> None:
        """Initialize the search engine.

        Args:
            indexer: The data indexer whose indexes and store are searched.
        """
        self.indexer = indexer

    @property
    def store(self):
        return self.indexer.store

    async def search_conversations(
        self,
        query: str,
        filter: ConversationFilter | None = None,
        options: SearchOptions | None = None,
    ) -> list[ConversationSearchResult]:
        """Search conversations by title.

        A blank query lists the conversations matching ``filter`` unranked,
        each with score 100.

        Args:
            query: Free-text query.
            filter: Structured constraints, applied after ranking too.
            options: Search options. Uses defaults if not provided.

        Returns:
            Results sorted by score, highest first, at most ``limit``.
        """
        options = options or SearchOptions()
        limit = options.limit if options.limit is not None else DEFAULT_CONVERSATION_LIMIT

        if not query or not query.strip():
            conversations = await self.store.get_conversations(filter)
            return [
                ConversationSearchResult(conversation=c, score=MAX_NORMALIZED_SCORE)
                for c in conversations[:limit]
            ]

        query_terms = tokenize(query)
        if not query_terms:
            return []

        scores = score_documents(self.indexer.conversation_index, query_terms, options.fuzzy)
        results: list[ConversationSearchResult] = []

        for doc_id, score in scores.normalized(len(query_terms), options.min_score):
            try:
                conversation = await self.store.get_conversation(doc_id)
            except Exception as e:
                logger.warning(f"Failed to retrieve conversation {doc_id} for search results: {e}")
                continue

            if conversation is None:
                logger.debug(f"Indexed conversation {doc_id} is no longer in the store")
                continue
            if not matches_conversation_filter(conversation, filter):
                continue

            matches = (
                find_conversation_matches(conversation, query_terms)
                if options.include_highlights
                else []
            )
            results.append(
                ConversationSearchResult(conversation=conversation, score=score, matches=matches)
            )

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def search_messages(
        self,
        query: str,
        filter: MessageFilter | None = None,
        options: SearchOptions | None = None,
    ) -> list[MessageSearchResult]:
        """Search messages by content and code changes.

        A blank query lists the messages of ``filter.conversation_id``
        unranked, each with score 100; without a conversation id it returns
        nothing, since messages are only listed per conversation.

        Args:
            query: Free-text query.
            filter: Structured constraints, applied after ranking too.
            options: Search options. Uses defaults if not provided.

        Returns:
            Results sorted by score, highest first, at most ``limit``.
        """
        options = options or SearchOptions()
        limit = options.limit if options.limit is not None else DEFAULT_MESSAGE_LIMIT

        if not query or not query.strip():
            if filter is None or not filter.conversation_id:
                return []
            messages = await self.store.get_messages(filter.conversation_id, filter)
            return [
                MessageSearchResult(message=m, score=MAX_NORMALIZED_SCORE)
                for m in messages[:limit]
            ]

        query_terms = tokenize(query)
        if not query_terms:
            return []

        scores = score_documents(self.indexer.message_index, query_terms, options.fuzzy)
        results: list[MessageSearchResult] = []

        for doc_id, score in scores.normalized(len(query_terms), options.min_score):
            try:
                message = await self.store.get_message(doc_id)
            except Exception as e:
                logger.warning(f"Failed to retrieve message {doc_id} for search results: {e}")
                continue

            if message is None:
                logger.debug(f"Indexed message {doc_id} is no longer in the store")
                continue
            if not matches_message_filter(message, filter):
                continue

            matches = (
                find_message_matches(message, query_terms) if options.include_highlights else []
            )
            results.append(MessageSearchResult(message=message, score=score, matches=matches))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]
