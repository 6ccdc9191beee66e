"""Shuffled, non-repeating traversal over a question pool."""

from __future__ import annotations

import random
from typing import List, Optional, Sequence, Tuple

from ..utils.rng import build_rng, shuffled_indices
from .schemas import DeckRecord, Question


class QuestionDeck:
    """Yields every question of the pool once per pass, then reshuffles.

    Only :meth:`draw` reshuffles. :meth:`peek` reports what the next draw
    would return within the current pass and therefore returns ``None`` at
    the end of a pass even though the following draw will reshuffle and
    succeed. Callers needing a guaranteed question must draw.

    A reshuffle may place the last question of one pass first in the next;
    no guard exists against that back-to-back repeat.
    """

    def __init__(
        self,
        questions: Sequence[Question],
        *,
        rng: Optional[random.Random] = None,
        order: Optional[List[int]] = None,
        index: int = 0,
    ) -> None:
        self._questions: Tuple[Question, ...] = tuple(questions)
        self._rng = rng or build_rng()
        if order is None:
            self._order = shuffled_indices(self._rng, len(self._questions))
            self._index = 0
        else:
            self._order = list(order)
            self._index = index

    # ------------------------------------------------------------------
    # Deck operations
    # ------------------------------------------------------------------

    def draw(self) -> Optional[Question]:
        if not self._questions:
            return None
        if self._index >= len(self._order):
            self._reshuffle()
        question = self._questions[self._order[self._index]]
        self._index += 1
        return question

    def peek(self) -> Optional[Question]:
        if not self._questions or self._index >= len(self._order):
            return None
        return self._questions[self._order[self._index]]

    def reset(self) -> None:
        """Discard the current position and start a freshly shuffled pass."""
        self._reshuffle()

    def _reshuffle(self) -> None:
        self._order = shuffled_indices(self._rng, len(self._questions))
        self._index = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    @property
    def order(self) -> List[int]:
        return list(self._order)

    @property
    def index(self) -> int:
        return self._index

    @property
    def total(self) -> int:
        return len(self._questions)

    @property
    def remaining(self) -> int:
        """Questions left in the current pass."""
        return max(0, len(self._order) - self._index)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_record(self) -> DeckRecord:
        return DeckRecord(order=self.order, index=self._index)

    @classmethod
    def from_record(
        cls,
        questions: Sequence[Question],
        record: Optional[DeckRecord],
        *,
        rng: Optional[random.Random] = None,
    ) -> "QuestionDeck":
        """Restore a deck position, or shuffle afresh if it no longer fits the pool."""

        if record is None or not _is_permutation(record.order, len(questions)):
            return cls(questions, rng=rng)
        index = min(record.index, len(record.order))
        return cls(questions, rng=rng, order=record.order, index=index)


def _is_permutation(order: Sequence[int], size: int) -> bool:
    return len(order) == size and sorted(order) == list(range(size))
