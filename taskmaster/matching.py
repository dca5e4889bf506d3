"""Fuzzy matching of keyword and flow-name term sets.

Scores are tiered: exact match, substring match, then edit-distance
similarity above a context specific threshold. Flow names use stricter
thresholds than keywords.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass(frozen=True, slots=True)
class MatchTiers:
    """Points awarded per term pair in a matching context."""

    exact: float
    substring: float
    similar: float
    similarity_threshold: float


KEYWORD_TIERS = MatchTiers(exact=1.0, substring=0.7, similar=0.5, similarity_threshold=0.8)
FLOW_TIERS = MatchTiers(exact=1.0, substring=0.8, similar=0.6, similarity_threshold=0.85)

_CONTEXTS = {"keyword": KEYWORD_TIERS, "flow": FLOW_TIERS}


def levenshtein(a: str, b: str) -> int:
    """Classic single-character edit distance with unit costs."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Return ``1 - distance / max(len)``; two empty strings are fully similar."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def normalize_terms(terms: Optional[Iterable[str]]) -> List[str]:
    if not terms:
        return []
    if isinstance(terms, str):
        terms = [terms]
    return [str(term).strip().lower() for term in terms if str(term).strip()]


def _tiers(context: str) -> MatchTiers:
    try:
        return _CONTEXTS[context]
    except KeyError:
        raise ValueError(f"Unknown match context '{context}'. Use 'keyword' or 'flow'") from None


def pair_score(query: str, candidate: str, tiers: MatchTiers) -> float:
    """Points for one already-normalised term pair."""
    if query == candidate:
        return tiers.exact
    if query in candidate or candidate in query:
        return tiers.substring
    if similarity(query, candidate) > tiers.similarity_threshold:
        return tiers.similar
    return 0.0


def match_score(query_terms: Iterable[str], candidate_terms: Iterable[str], context: str = "keyword") -> float:
    """Aggregate match score in ``[0, 1]`` between two term sets."""
    tiers = _tiers(context)
    query = normalize_terms(query_terms)
    candidates = normalize_terms(candidate_terms)
    if not query or not candidates:
        return 0.0

    total = sum(pair_score(q, c, tiers) for q in query for c in candidates)
    return min(total / max(len(query), len(candidates)), 1.0)


def keyword_match_score(query_terms: Iterable[str], candidate_terms: Iterable[str]) -> float:
    return match_score(query_terms, candidate_terms, "keyword")


def flow_match_score(query_terms: Iterable[str], candidate_terms: Iterable[str]) -> float:
    return match_score(query_terms, candidate_terms, "flow")


def matched_terms(query_terms: Iterable[str], candidate_terms: Iterable[str], context: str = "keyword") -> List[str]:
    """Candidate terms (original spelling) that earned points against any query term.

    Uses the same predicate as ``match_score`` so the explanation never
    disagrees with the score.
    """
    tiers = _tiers(context)
    query = normalize_terms(query_terms)
    if not query or not candidate_terms:
        return []

    matched = []
    for original in candidate_terms:
        candidate = str(original).strip().lower()
        if not candidate:
            continue
        if any(pair_score(q, candidate, tiers) > 0 for q in query) and original not in matched:
            matched.append(original)
    return matched
