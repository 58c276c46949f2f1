"""Approximate term matching by prefix and bounded edit distance."""

from __future__ import annotations

MAX_LENGTH_DIFFERENCE = 2
SHORT_TERM_LENGTH = 5


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit cost insertion, deletion and substitution."""
    rows = len(a) + 1
    cols = len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            if a[i - 1] == b[j - 1]:
                matrix[i][j] = matrix[i - 1][j - 1]
            else:
                matrix[i][j] = min(
                    matrix[i - 1][j - 1] + 1,  # substitution
                    matrix[i][j - 1] + 1,  # insertion
                    matrix[i - 1][j] + 1,  # deletion
                )

    return matrix[-1][-1]


def is_fuzzy_match(a: str, b: str) -> bool:
    """Check whether two terms are close enough to count as a match.

    Rules, in order:
    - identical terms match
    - a length difference above 2 never matches (checked before the
      edit-distance computation)
    - a term that is a prefix of the other matches
    - otherwise the edit distance must be at most 1 for short terms
      (5 characters or fewer) and at most 2 for longer ones

    The short/long decision uses the shorter of the two terms so that
    ``is_fuzzy_match(a, b) == is_fuzzy_match(b, a)``.
    """
    if a == b:
        return True

    if abs(len(a) - len(b)) > MAX_LENGTH_DIFFERENCE:
        return False

    if a.startswith(b) or b.startswith(a):
        return True

    max_distance = 1 if min(len(a), len(b)) <= SHORT_TERM_LENGTH else 2
    return levenshtein_distance(a, b) <= max_distance
