"""TF-IDF scoring and score normalization."""

from __future__ import annotations

import math
from collections.abc import Iterator

FUZZY_PENALTY = 0.5
MAX_TERM_SCORE = 10.0  # assumed ceiling for a single query term
MAX_NORMALIZED_SCORE = 100.0

# A term present in every document would otherwise score exactly 0.
IDF_FLOOR = 0.1


def inverse_document_frequency(document_frequency: int, total_doc_count: int) -> float:
    """Natural-log IDF; an unseen term counts as occurring in one document."""
    if total_doc_count <= 0:
        return 0.0
    df = document_frequency or 1
    return max(math.log(total_doc_count / df), IDF_FLOOR)


def score(document_frequency: int, term_weight: float, total_doc_count: int) -> float:
    """Relevance of one term in one document.

    Args:
        document_frequency: Number of documents containing the term.
        term_weight: Accumulated weight of the term in the document.
        total_doc_count: Number of documents in the index.

    Returns:
        ``term_weight * idf``.
    """
    return term_weight * inverse_document_frequency(document_frequency, total_doc_count)


def normalize(raw_score: float, query_term_count: int) -> float:
    """Scale a summed score to the 0-100 range."""
    if query_term_count <= 0:
        return 0.0
    max_possible = query_term_count * MAX_TERM_SCORE
    return min(MAX_NORMALIZED_SCORE, raw_score / max_possible * 100)


class ScoreAccumulator:
    """Running per-document score totals for one query."""

    def __init__(self) -> None:
        self._scores: dict[str, float] = {}

    def add(self, doc_id: str, value: float) -> None:
        self._scores[doc_id] = self._scores.get(doc_id, 0.0) + value

    def get(self, doc_id: str) -> float:
        return self._scores.get(doc_id, 0.0)

    def __len__(self) -> int:
        return len(self._scores)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._scores

    def items(self) -> Iterator[tuple[str, float]]:
        return iter(self._scores.items())

    def normalized(self, query_term_count: int, min_score: float = 0.0) -> list[tuple[str, float]]:
        """Normalize every total and drop those below ``min_score``.

        Returns:
            (doc_id, normalized score) pairs in accumulation order.
        """
        results: list[tuple[str, float]] = []
        for doc_id, raw in self._scores.items():
            value = normalize(raw, query_term_count)
            if value < min_score:
                continue
            results.append((doc_id, value))
        return results
