"""
Relevance scoring between the live window text and archived context.

Scorers are interchangeable: anything with a score(query, candidate) method
returning a float in [0, 1] can be handed to the ContextStore.
"""

from typing import Protocol, Set


class RelevanceScorer(Protocol):
    def score(self, query: str, candidate: str) -> float:
        ...


def tokenize(text: str) -> Set[str]:
    """Lowercase whitespace-delimited tokens of text as a set."""
    return set(text.lower().split())


class JaccardScorer:
    """Token-overlap similarity: |intersection| / |union| of the two token sets."""

    def score(self, query: str, candidate: str) -> float:
        query_tokens = tokenize(query)
        candidate_tokens = tokenize(candidate)
        union = query_tokens | candidate_tokens
        if not union:
            return 0.0
        return len(query_tokens & candidate_tokens) / len(union)
