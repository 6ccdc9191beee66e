"""Seeded randomness helpers for deterministic decks."""

import random
from typing import List


def build_rng(*, seed: int | None = None) -> random.Random:
    """Return a deterministic random generator."""
    return random.Random(seed)


def shuffled_indices(rng: random.Random, count: int) -> List[int]:
    """Return a uniformly shuffled permutation of ``range(count)``.

    Args:
        rng: Random number generator
        count: Size of the permutation

    Returns:
        List of indices in Fisher-Yates shuffled order
    """
    order = list(range(count))
    rng.shuffle(order)
    return order
