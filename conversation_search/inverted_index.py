"""Incrementally maintained inverted index for one document class.

Each instance maps term -> {doc_id: accumulated weight} and keeps two
counters tied to the same mutations:

- term weights: total weight each term contributes, used for size estimates
- document frequency: number of distinct documents holding each term,
  used for ranking

Only ``add_term`` and ``remove_document`` touch the counters, so for every
term present ``document_frequency(term) == len(postings(term))``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from conversation_search.scoring import score as tfidf_score
from conversation_search.tokenizer import MIN_TERM_LENGTH


class InvertedIndex:
    """Term postings, term weights and document frequency for one document class."""

    def __init__(self, name: str = "index") -> None:
        self.name = name
        self._postings: dict[str, dict[str, float]] = {}
        self._term_weights: dict[str, float] = {}
        self._document_frequency: dict[str, int] = {}
        self._document_count = 0

    # -----------------------------------------------------------------------
    # Mutation
    # -----------------------------------------------------------------------

    def add_term(self, term: str, doc_id: str, weight: float) -> None:
        """Add weight for a term occurrence in a document.

        The document frequency is bumped only on the first posting of
        ``doc_id`` in this term's bucket, so it counts documents rather than
        occurrences.
        """
        if len(term) < MIN_TERM_LENGTH:
            return

        bucket = self._postings.get(term)
        if bucket is None:
            bucket = {}
            self._postings[term] = bucket

        first_occurrence = doc_id not in bucket
        bucket[doc_id] = bucket.get(doc_id, 0.0) + weight
        self._term_weights[term] = self._term_weights.get(term, 0.0) + weight

        if first_occurrence:
            self._document_frequency[term] = self._document_frequency.get(term, 0) + 1

    def add_document(self, doc_id: str, weighted_terms: Iterable[tuple[str, float]]) -> bool:
        """Index a document from (term, weight) pairs.

        Returns:
            True if at least one posting was added and the document counted.
        """
        added = False
        for term, weight in weighted_terms:
            if len(term) < MIN_TERM_LENGTH:
                continue
            self.add_term(term, doc_id, weight)
            added = True

        if added:
            self._document_count += 1
        return added

    def remove_document(self, doc_id: str) -> bool:
        """Drop every posting of a document.

        Scans the whole vocabulary; there is no reverse doc -> terms map.
        Terms whose bucket becomes empty are removed from the postings and
        from both counters.

        Returns:
            True if the document was present.
        """
        emptied: list[str] = []
        found = False

        for term, bucket in self._postings.items():
            if doc_id not in bucket:
                continue
            found = True
            del bucket[doc_id]
            df = self._document_frequency.get(term, 0)
            self._document_frequency[term] = max(0, df - 1)
            if not bucket:
                emptied.append(term)

        for term in emptied:
            del self._postings[term]
            self._term_weights.pop(term, None)
            self._document_frequency.pop(term, None)

        if found:
            self._document_count = max(0, self._document_count - 1)
        return found

    def clear(self) -> None:
        """Drop all postings and counters."""
        self._postings.clear()
        self._term_weights.clear()
        self._document_frequency.clear()
        self._document_count = 0

    # -----------------------------------------------------------------------
    # Read access
    # -----------------------------------------------------------------------

    def contains(self, doc_id: str) -> bool:
        """Check whether any term bucket references the document."""
        return any(doc_id in bucket for bucket in self._postings.values())

    def postings(self, term: str) -> Mapping[str, float]:
        """Read-only view of a term's postings (empty if unknown)."""
        bucket = self._postings.get(term)
        if bucket is None:
            return MappingProxyType({})
        return MappingProxyType(bucket)

    def items(self) -> Iterator[tuple[str, Mapping[str, float]]]:
        """Iterate over (term, read-only postings) pairs."""
        for term, bucket in self._postings.items():
            yield term, MappingProxyType(bucket)

    def terms(self) -> list[str]:
        return list(self._postings)

    def document_frequency(self, term: str) -> int:
        return self._document_frequency.get(term, 0)

    def term_weight(self, term: str) -> float:
        return self._term_weights.get(term, 0.0)

    def document_ids(self) -> set[str]:
        """All document ids with at least one posting."""
        ids: set[str] = set()
        for bucket in self._postings.values():
            ids.update(bucket)
        return ids

    def score(self, term: str, weight: float) -> float:
        """TF-IDF score of ``term`` carrying ``weight`` in one document."""
        return tfidf_score(self.document_frequency(term), weight, self._document_count)

    @property
    def document_count(self) -> int:
        return self._document_count

    @property
    def term_count(self) -> int:
        return len(self._postings)

    def __len__(self) -> int:
        return len(self._postings)

    def __contains__(self, term: object) -> bool:
        return term in self._postings

    def estimate_size(self) -> int:
        """Rough in-memory footprint in bytes."""
        size = 0
        for term, bucket in self._postings.items():
            size += len(term) * 2  # term string
            size += 8  # bucket overhead
            size += len(bucket) * 16  # doc id + weight
        size += len(self._term_weights) * 24
        size += len(self._document_frequency) * 24
        return size

    def check_invariants(self) -> list[str]:
        """Describe every violated bookkeeping invariant (empty when consistent)."""
        problems: list[str] = []
        for term, bucket in self._postings.items():
            if not bucket:
                problems.append(f"term {term!r} has an empty bucket")
            df = self._document_frequency.get(term, 0)
            if df != len(bucket):
                problems.append(
                    f"term {term!r} has document frequency {df} but {len(bucket)} postings"
                )
        for term in self._document_frequency:
            if term not in self._postings:
                problems.append(f"document frequency for absent term {term!r}")
        for term in self._term_weights:
            if term not in self._postings:
                problems.append(f"term weight for absent term {term!r}")
        return problems

    # -----------------------------------------------------------------------
    # Serialization helpers
    # -----------------------------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, float]]:
        """Copy of the postings as plain nested dicts."""
        return {term: dict(bucket) for term, bucket in self._postings.items()}

    def term_weights_dict(self) -> dict[str, float]:
        return dict(self._term_weights)

    def document_frequency_dict(self) -> dict[str, int]:
        return dict(self._document_frequency)

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, float]], name: str = "index") -> InvertedIndex:
        """Rebuild an index from postings; counters are derived, not trusted.

        Raises:
            TypeError: If a bucket is not a mapping.
            ValueError: If a weight is not numeric or is negative.
        """
        index = cls(name=name)
        documents: set[str] = set()
        for term, bucket in data.items():
            if not isinstance(bucket, Mapping):
                raise TypeError(f"postings for {term!r} must be a mapping")
            for doc_id, weight in bucket.items():
                weight = float(weight)
                if weight < 0:
                    raise ValueError(f"negative weight for {term!r}/{doc_id!r}")
                index.add_term(str(term), str(doc_id), weight)
                documents.add(str(doc_id))
        index._document_count = len(documents)
        return index
