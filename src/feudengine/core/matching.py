"""Approximate matching between normalized answers.

Both inputs of every function here are expected to be in the form produced
by :func:`feudengine.core.normalize.normalize_answer`.
"""

from __future__ import annotations

from typing import Optional, Sequence

SIMILARITY_THRESHOLD = 0.6
SHORT_SUBSEQUENCE_LENGTH = 2
THREE_CHAR_MAX_DISTANCE = 2


def is_subsequence(needle: str, haystack: str) -> bool:
    """Return True when the characters of ``needle`` appear in order in ``haystack``."""

    if not needle:
        return False
    cursor = 0
    for char in haystack:
        if char == needle[cursor]:
            cursor += 1
            if cursor == len(needle):
                return True
    return False


def levenshtein_distance(a: str, b: str) -> int:
    """Unit-cost edit distance (insert, delete, substitute)."""

    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            )
        previous = current
    return previous[len(b)]


def similarity(a: str, b: str) -> float:
    """Return ``1 - distance / max(len(a), len(b))``; 0.0 when both are empty."""

    max_length = max(len(a), len(b))
    if max_length == 0:
        return 0.0
    return 1.0 - levenshtein_distance(a, b) / max_length


def loosely_matches(a: str, b: str) -> bool:
    """Decide whether two normalized strings name the same answer.

    Rules are evaluated in order and the first satisfied one wins:

    1. an empty side never matches (not even another empty string);
    2. exact equality;
    3. the shorter string is a substring of the longer one;
    4. a shorter string of one or two characters is a subsequence of the longer;
    5. a three character shorter string is a subsequence of the longer and the
       full edit distance is at most two;
    6. relative similarity of at least ``SIMILARITY_THRESHOLD``.

    Short strings get the stricter subsequence gates because plain edit
    distance produces false positives on them.
    """

    if not a or not b:
        return False
    if a == b:
        return True

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)

    if shorter in longer:
        return True

    if len(shorter) <= SHORT_SUBSEQUENCE_LENGTH and is_subsequence(shorter, longer):
        return True

    if len(shorter) == 3 and is_subsequence(shorter, longer):
        if levenshtein_distance(shorter, longer) <= THREE_CHAR_MAX_DISTANCE:
            return True

    return similarity(a, b) >= SIMILARITY_THRESHOLD


def find_match_index(normalized_answers: Sequence[str], normalized_guess: str) -> Optional[int]:
    """Return the first index whose canonical answer loosely matches the guess."""

    if not normalized_guess:
        return None
    for index, candidate in enumerate(normalized_answers):
        if loosely_matches(candidate, normalized_guess):
            return index
    return None
