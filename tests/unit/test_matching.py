"""Unit tests for keyword and flow-name fuzzy matching."""

import pytest

from taskmaster.matching import (
    flow_match_score,
    keyword_match_score,
    levenshtein,
    match_score,
    matched_terms,
    normalize_terms,
    similarity,
)


class TestEditDistance:
    """Test cases for the edit-distance helpers."""

    @pytest.mark.parametrize("a, b, expected", [
        ("kitten", "sitting", 3),
        ("", "abc", 3),
        ("abc", "", 3),
        ("same", "same", 0),
        ("flaw", "lawn", 2),
    ])
    def test_levenshtein(self, a, b, expected):
        assert levenshtein(a, b) == expected

    def test_similarity(self):
        assert similarity("", "") == 1.0
        assert similarity("abc", "abc") == 1.0
        assert similarity("abcd", "abce") == pytest.approx(0.75)

    def test_normalize_terms(self):
        assert normalize_terms([" Auth ", "", "LOGIN"]) == ["auth", "login"]
        assert normalize_terms("Single") == ["single"]
        assert normalize_terms(None) == []


class TestMatchScore:
    """Test cases for tiered match scoring."""

    def test_exact_match(self):
        assert keyword_match_score(["auth"], ["auth"]) == 1.0

    def test_case_insensitive(self):
        assert keyword_match_score(["AUTH"], [" auth "]) == 1.0

    def test_substring_tiers_differ_by_context(self):
        """Flow names award more for substrings than keywords."""
        assert keyword_match_score(["auth"], ["authentication"]) == pytest.approx(0.7)
        assert flow_match_score(["auth"], ["authentication"]) == pytest.approx(0.8)

    def test_similarity_tier(self):
        """One typo in a long word still scores in both contexts."""
        assert keyword_match_score(["authentication"], ["authentcation"]) == pytest.approx(0.5)
        assert flow_match_score(["authentication"], ["authentcation"]) == pytest.approx(0.6)

    def test_similarity_threshold_is_stricter_for_flows(self):
        """A similarity of 0.875 passes both thresholds, 0.8125 passes only the keyword one."""
        # 2 edits over 16 characters: similarity 0.875
        assert keyword_match_score(["user-registratio"], ["user-registrxtix"]) == pytest.approx(0.5)
        assert flow_match_score(["user-registratio"], ["user-registrxtix"]) == pytest.approx(0.6)
        # 3 edits over 16 characters: similarity 0.8125
        assert keyword_match_score(["user-registratio"], ["user-regixtrxtix"]) == pytest.approx(0.5)
        assert flow_match_score(["user-registratio"], ["user-regixtrxtix"]) == 0.0

    def test_unrelated_terms(self):
        assert keyword_match_score(["auth"], ["billing"]) == 0.0

    def test_normalized_by_larger_set(self):
        """The total is divided by the size of the larger term set."""
        assert keyword_match_score(["auth", "login"], ["auth", "security", "tokens"]) == pytest.approx(1 / 3)

    def test_score_is_capped_at_one(self):
        assert keyword_match_score(["a", "ab"], ["ab", "abc"]) == 1.0

    def test_empty_sets_score_zero(self):
        assert keyword_match_score([], ["auth"]) == 0.0
        assert keyword_match_score(["auth"], []) == 0.0

    def test_unknown_context(self):
        with pytest.raises(ValueError):
            match_score(["a"], ["a"], "tags")


class TestMatchedTerms:
    """Test cases for match explanations."""

    def test_matched_terms_keep_original_spelling(self):
        assert matched_terms(["auth"], ["Auth", "billing", "authentication"]) == ["Auth", "authentication"]

    def test_matched_terms_agree_with_score(self):
        """Every candidate reported as matched contributes to a non-zero score."""
        query = ["checkout", "payment"]
        candidates = ["Checkout Flow", "Payments", "Reporting"]
        matched = matched_terms(query, candidates, "flow")
        assert matched == ["Checkout Flow", "Payments"]
        for term in matched:
            assert flow_match_score(query, [term]) > 0
        assert flow_match_score(query, ["Reporting"]) == 0.0
