"""Text normalization into index terms."""

from __future__ import annotations

import re

MIN_TERM_LENGTH = 2

# Runs of letters or digits; underscore and all punctuation act as separators.
_WORD_RE = re.compile(r"[^\W_]+")


def tokenize(text: str | None) -> list[str]:
    """Split text into normalized terms.

    The text is lowercased, split on whitespace, and every non-alphanumeric
    character inside a word separates it further, so ``"Login-Bug!!"``
    yields ``["login", "bug"]``. Terms shorter than two characters are
    dropped. Order and duplicates are preserved; callers accumulate
    frequencies themselves.

    Args:
        text: Arbitrary text, possibly empty or None.

    Returns:
        Ordered list of terms.
    """
    if not text:
        return []

    terms: list[str] = []
    for word in text.lower().split():
        for piece in _WORD_RE.findall(word):
            if len(piece) >= MIN_TERM_LENGTH:
                terms.append(piece)
    return terms
