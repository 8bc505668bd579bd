"""Tests for lexical relevance scoring."""

from __future__ import annotations

import pytest

from relevance import JaccardScorer, tokenize


class TestTokenize:
    """Test whitespace tokenization."""

    def test_lowercases_and_deduplicates(self):
        """Tokens are lowercased and collected into a set."""
        assert tokenize("The API the api  THE\tapi\n") == {"the", "api"}

    def test_empty_text(self):
        assert tokenize("") == set()
        assert tokenize("   ") == set()


class TestJaccardScorer:
    """Test Jaccard similarity between token sets."""

    def setup_method(self):
        self.scorer = JaccardScorer()

    def test_identical_sets_score_one(self):
        """Identical non-empty token sets score exactly 1.0."""
        assert self.scorer.score("design the api", "design the api") == 1.0

    def test_same_tokens_different_case_and_order(self):
        assert self.scorer.score("Design the API", "api THE design design") == 1.0

    def test_disjoint_sets_score_zero(self):
        """Disjoint non-empty token sets score exactly 0.0."""
        assert self.scorer.score("alpha beta", "gamma delta") == 0.0

    def test_partial_overlap(self):
        """One shared token out of four distinct tokens scores 0.25."""
        assert self.scorer.score("alpha beta", "alpha gamma delta") == pytest.approx(0.25)

    def test_empty_candidate_scores_zero(self):
        """An empty candidate against a non-empty query is 0, not an error."""
        assert self.scorer.score("alpha beta", "") == 0.0

    def test_both_empty_scores_zero(self):
        assert self.scorer.score("", "") == 0.0

    def test_score_is_within_unit_interval(self):
        score = self.scorer.score("one two three four", "three four five")
        assert 0.0 <= score <= 1.0
        assert score == pytest.approx(2 / 5)
