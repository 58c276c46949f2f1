"""Tests for fuzzy term matching."""

from __future__ import annotations

import pytest

from conversation_search.fuzzy import is_fuzzy_match, levenshtein_distance


class TestLevenshteinDistance:
    """Tests for levenshtein_distance()."""

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("", "", 0),
            ("abc", "", 3),
            ("", "abc", 3),
            ("login", "login", 0),
            ("login", "logn", 1),
            ("kitten", "sitting", 3),
            ("flaw", "lawn", 2),
        ],
    )
    def test_distances(self, a: str, b: str, expected: int) -> None:
        assert levenshtein_distance(a, b) == expected

    def test_symmetric(self) -> None:
        assert levenshtein_distance("search", "serch") == levenshtein_distance("serch", "search")


class TestIsFuzzyMatch:
    """Tests for is_fuzzy_match()."""

    def test_identical(self) -> None:
        assert is_fuzzy_match("login", "login")

    def test_one_deletion_short_term(self) -> None:
        assert is_fuzzy_match("login", "logn")

    def test_unrelated_terms(self) -> None:
        assert not is_fuzzy_match("login", "register")

    def test_length_difference_over_two_rejected(self) -> None:
        """Length check happens before prefix and distance rules."""
        assert not is_fuzzy_match("log", "logging")

    def test_prefix_matches(self) -> None:
        assert is_fuzzy_match("auth", "authz")
        assert is_fuzzy_match("migrat", "migrate")

    def test_short_terms_allow_one_edit(self) -> None:
        assert is_fuzzy_match("cat", "cut")
        assert not is_fuzzy_match("cat", "dog")

    def test_long_terms_allow_two_edits(self) -> None:
        assert is_fuzzy_match("database", "databsae")
        assert not is_fuzzy_match("database", "dxtxbxse")

    def test_boundary_uses_shorter_term(self) -> None:
        """Five-char vs six-char terms are judged by the five-char budget."""
        # distance 2 but the shorter term has 5 characters
        assert not is_fuzzy_match("abcde", "xbcdey")
        assert not is_fuzzy_match("xbcdey", "abcde")

    @pytest.mark.parametrize(
        ("a", "b"),
        [
            ("login", "logn"),
            ("abcde", "xbcdey"),
            ("session", "sesion"),
            ("migration", "migrations"),
            ("error", "errors"),
            ("cat", "dog"),
            ("handler", "handle"),
        ],
    )
    def test_symmetry(self, a: str, b: str) -> None:
        assert is_fuzzy_match(a, b) == is_fuzzy_match(b, a)
