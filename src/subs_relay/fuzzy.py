"""Edit-distance plus token-containment similarity for near-miss titles."""

from __future__ import annotations

from dataclasses import dataclass

from .normalize import normalize

LEVENSHTEIN_WEIGHT = 0.6
OVERLAP_WEIGHT = 0.4
MATCH_THRESHOLD = 0.78


@dataclass(frozen=True)
class FuzzyResult:
    match: bool
    score: float
    lev: float = 0.0
    overlap: float = 0.0
    reason: str = ""


def levenshtein(a: str, b: str) -> int:
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
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def normalized_similarity(a: str, b: str) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return 1.0 - levenshtein(a, b) / longest


def token_containment(a: str, b: str) -> float:
    """Fraction of b's whitespace tokens that literally occur inside a."""
    b_tokens = [token for token in b.split(" ") if token]
    if not b_tokens:
        return 0.0
    return sum(1 for token in b_tokens if token in a) / len(b_tokens)


def similarity(a: str, b: str) -> float:
    left = normalize(a)
    right = normalize(b)
    return (
        normalized_similarity(left, right) * LEVENSHTEIN_WEIGHT
        + token_containment(left, right) * OVERLAP_WEIGHT
    )


def _contains_phrase(haystack: str, needle: str) -> bool:
    # Token-bounded so "up" is not found inside "upside down".
    return f" {needle} " in f" {haystack} "


def fuzzy_match(candidate: str, title: str) -> FuzzyResult:
    a = normalize(candidate)
    b = normalize(title)
    if not a or not b:
        return FuzzyResult(match=False, score=0.0)

    if _contains_phrase(a, b) or _contains_phrase(b, a):
        return FuzzyResult(match=True, score=1.0, lev=1.0, overlap=1.0, reason="contains")

    lev = normalized_similarity(a, b)
    overlap = token_containment(a, b)
    score = lev * LEVENSHTEIN_WEIGHT + overlap * OVERLAP_WEIGHT
    return FuzzyResult(match=score >= MATCH_THRESHOLD, score=score, lev=lev, overlap=overlap, reason="similarity")


__all__ = [
    "FuzzyResult",
    "MATCH_THRESHOLD",
    "fuzzy_match",
    "levenshtein",
    "normalized_similarity",
    "similarity",
    "token_containment",
]
