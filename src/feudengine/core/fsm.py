"""Finite state machine governing rounds, strikes, steals and scoring."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import ClassVar, List, Optional, Tuple, Union

from .schemas import (
    MAX_STRIKES,
    GamePhase,
    GameRecord,
    HistoryRecord,
    Question,
    QuestionRecord,
    RoundRecord,
    TeamRecord,
)

TEAM_COUNT = 2
DEFAULT_TEAM_NAMES: Tuple[str, str] = ("Team A", "Team B")
DEFAULT_TEAM_COLORS: Tuple[str, str] = ("#ef4444", "#3b82f6")
DEFAULT_HISTORY_LIMIT = 50


def other_team(index: int) -> int:
    return 1 - index


# ---------------------------------------------------------------------------
# Phase variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetupPhase:
    """Team names not yet confirmed."""

    label: ClassVar[GamePhase] = GamePhase.SETUP


@dataclass(frozen=True)
class PlayingPhase:
    """The active team is answering (or a round just finished by full reveal)."""

    label: ClassVar[GamePhase] = GamePhase.PLAYING


@dataclass(frozen=True)
class StealPhase:
    """The non-active team holds one guess after three strikes."""

    original_team: int
    label: ClassVar[GamePhase] = GamePhase.STEAL


@dataclass(frozen=True)
class StealResolvedPhase:
    """Steal guess consumed; the round waits for the next question."""

    label: ClassVar[GamePhase] = GamePhase.STEAL


@dataclass(frozen=True)
class ResultsPhase:
    """Game over."""

    label: ClassVar[GamePhase] = GamePhase.RESULTS


PhaseState = Union[SetupPhase, PlayingPhase, StealPhase, StealResolvedPhase, ResultsPhase]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Team:
    """One of the two competing teams."""

    name: str
    color: str
    score: int = 0


@dataclass
class RoundState:
    """Per-question mutable state."""

    revealed: List[bool]
    strikes: int = 0
    round_pot: int = 0

    @classmethod
    def for_question(cls, question: Question) -> "RoundState":
        return cls(revealed=[False] * len(question.answers))

    @property
    def all_revealed(self) -> bool:
        return all(self.revealed)

    def reveal_all(self) -> None:
        self.revealed = [True] * len(self.revealed)


@dataclass(frozen=True)
class RoundHistoryEntry:
    """Append-only audit record of a finalized round."""

    question: str
    revealed: Tuple[bool, ...]
    strikes: int
    winning_team: Optional[int]
    awarded_points: int
    timestamp: float


@dataclass
class GameState:
    """Container for tracking game state.

    ``current_question`` and ``round`` are always both set or both ``None``.
    The steal bookkeeping lives on the phase variant, so the original team
    only exists while a steal is open.
    """

    teams: List[Team] = field(default_factory=lambda: _default_teams())
    active_team_index: int = 0
    phase_state: PhaseState = field(default_factory=SetupPhase)
    current_question: Optional[Question] = None
    round: Optional[RoundState] = None
    round_winner: Optional[int] = None
    history: List[RoundHistoryEntry] = field(default_factory=list)
    voice_enabled: bool = True

    strike_limit: int = MAX_STRIKES
    history_limit: int = DEFAULT_HISTORY_LIMIT

    def __post_init__(self) -> None:
        if self.strike_limit < 1:
            raise ValueError("strike_limit must be positive")
        if len(self.teams) != TEAM_COUNT:
            raise ValueError("Exactly two teams are required")

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def phase(self) -> GamePhase:
        return self.phase_state.label

    @property
    def steal_original_team_index(self) -> Optional[int]:
        if isinstance(self.phase_state, StealPhase):
            return self.phase_state.original_team
        return None

    @property
    def active_team(self) -> Team:
        return self.teams[self.active_team_index]

    @property
    def round_finalized(self) -> bool:
        return self.round is not None and self.round.all_revealed

    @property
    def round_ended(self) -> bool:
        """All answers revealed, or a steal with nothing left to steal."""
        if self.round is None or self.current_question is None:
            return False
        if self.round.all_revealed:
            return True
        return self.phase is GamePhase.STEAL and self.round.round_pot == 0

    def accepts_answers(self) -> bool:
        return (
            isinstance(self.phase_state, PlayingPhase)
            and self.round is not None
            and not self.round.all_revealed
        )

    def accepts_steal(self) -> bool:
        return isinstance(self.phase_state, StealPhase) and self.round is not None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_game(
        self,
        team_a: str,
        team_b: str,
        *,
        default_names: Tuple[str, str] = DEFAULT_TEAM_NAMES,
        colors: Tuple[str, str] = DEFAULT_TEAM_COLORS,
    ) -> None:
        """Reset everything for a brand-new game; the first question comes next."""

        names = (team_a.strip() or default_names[0], team_b.strip() or default_names[1])
        self.teams = [Team(name=name, color=color) for name, color in zip(names, colors)]
        self.active_team_index = 0
        self.phase_state = SetupPhase()
        self.current_question = None
        self.round = None
        self.round_winner = None
        self.history = []

    def set_next_question(self, question: Question) -> bool:
        if isinstance(self.phase_state, ResultsPhase):
            return False
        self.current_question = question
        self.round = RoundState.for_question(question)
        self.round_winner = None
        self.phase_state = PlayingPhase()
        return True

    def reveal_answer(self, index: int) -> bool:
        """Reveal one answer, add its points to the pot and finalize on full reveal."""

        if not self.accepts_answers():
            return False
        assert self.round is not None and self.current_question is not None
        if not 0 <= index < len(self.round.revealed) or self.round.revealed[index]:
            return False
        self.round.revealed[index] = True
        self.round.round_pot += self.current_question.answers[index].points
        if self.round.all_revealed:
            self._finalize_round(self.active_team_index)
        return True

    def register_strike(self) -> bool:
        """Count a miss; reaching the strike limit hands the steal to the other team."""

        if not self.accepts_answers():
            return False
        assert self.round is not None
        strikes = self.round.strikes + 1
        if strikes >= self.strike_limit:
            original = self.active_team_index
            self.round.strikes = self.strike_limit
            self.active_team_index = other_team(original)
            self.phase_state = StealPhase(original_team=original)
        else:
            self.round.strikes = strikes
        return True

    def resolve_steal(self, index: Optional[int]) -> bool:
        """Consume the steal guess.

        ``index`` is the unrevealed answer the stealing team named, or
        ``None`` for a miss. The pot is never increased by the steal guess:
        a hit banks it to the stealing team, a miss to the original team.
        Every answer is revealed for display either way.
        """

        if not self.accepts_steal():
            return False
        assert self.round is not None
        original = self.phase_state.original_team  # type: ignore[union-attr]
        hit = index is not None and 0 <= index < len(self.round.revealed) and not self.round.revealed[index]
        winner = self.active_team_index if hit else original
        self.round.reveal_all()
        self.phase_state = StealResolvedPhase()
        self._finalize_round(winner)
        return True

    def bank_round_to_team(self, team_index: int) -> bool:
        """Move the current pot to a team without ending the round."""

        if self.round is None or team_index not in (0, 1):
            return False
        if isinstance(self.phase_state, (SetupPhase, ResultsPhase)):
            return False
        pot = self.round.round_pot
        self.teams[team_index].score += pot
        self.round.round_pot = 0
        if pot > 0:
            self.round_winner = team_index
        return True

    def end_round_advance(self) -> bool:
        """Pass the turn to the other team and clear the board for the next question."""

        if isinstance(self.phase_state, (SetupPhase, ResultsPhase)):
            return False
        self.active_team_index = other_team(self.active_team_index)
        self.phase_state = PlayingPhase()
        self.current_question = None
        self.round = None
        self.round_winner = None
        return True

    def end_game(self) -> bool:
        if isinstance(self.phase_state, ResultsPhase):
            return False
        self.phase_state = ResultsPhase()
        self.current_question = None
        self.round = None
        return True

    def clear_history(self) -> None:
        self.history = []

    def toggle_voice(self, enabled: bool) -> None:
        self.voice_enabled = bool(enabled)

    def _finalize_round(self, winner: int) -> None:
        assert self.round is not None and self.current_question is not None
        awarded = self.round.round_pot
        self.teams[winner].score += awarded
        self.round.round_pot = 0
        self.round_winner = winner if awarded > 0 else None
        self.history.append(
            RoundHistoryEntry(
                question=self.current_question.question,
                revealed=tuple(self.round.revealed),
                strikes=self.round.strikes,
                winning_team=winner,
                awarded_points=awarded,
                timestamp=time.time(),
            )
        )
        overflow = len(self.history) - self.history_limit
        if overflow > 0:
            del self.history[:overflow]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_record(self) -> GameRecord:
        question = None
        if self.current_question is not None:
            question = QuestionRecord.model_validate(self.current_question.model_dump(mode="json"))
        round_record = None
        if self.round is not None:
            round_record = RoundRecord(
                strikes=self.round.strikes,
                revealed=list(self.round.revealed),
                round_pot=self.round.round_pot,
            )
        return GameRecord(
            teams=[TeamRecord(name=t.name, color=t.color, score=t.score) for t in self.teams],
            active_team_index=self.active_team_index,
            phase=self.phase,
            current_question=question,
            round=round_record,
            round_winner=self.round_winner,
            history=[
                HistoryRecord(
                    question=entry.question,
                    revealed=list(entry.revealed),
                    strikes=entry.strikes,
                    winning_team=entry.winning_team,
                    awarded_points=entry.awarded_points,
                    timestamp=entry.timestamp,
                )
                for entry in self.history
            ],
            steal_original_team_index=self.steal_original_team_index,
            voice_enabled=self.voice_enabled,
        )

    @classmethod
    def from_record(
        cls,
        record: GameRecord,
        *,
        strike_limit: int = MAX_STRIKES,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        default_names: Tuple[str, str] = DEFAULT_TEAM_NAMES,
        colors: Tuple[str, str] = DEFAULT_TEAM_COLORS,
    ) -> "GameState":
        """Rebuild a state from a field-sanitized record, restoring cross-field invariants."""

        teams = [
            Team(
                name=team.name.strip() or default_names[i],
                color=team.color or colors[i],
                score=team.score,
            )
            for i, team in enumerate(record.teams)
        ]

        question: Optional[Question] = None
        round_state: Optional[RoundState] = None
        if record.current_question is not None and record.round is not None:
            question = record.current_question.to_question()
            size = len(question.answers)
            revealed = (list(record.round.revealed) + [False] * size)[:size]
            round_state = RoundState(
                revealed=revealed,
                strikes=min(record.round.strikes, strike_limit),
                round_pot=record.round.round_pot,
            )

        phase_state = _restore_phase(record, round_state)
        if isinstance(phase_state, (SetupPhase, ResultsPhase)):
            question, round_state = None, None

        history = [
            RoundHistoryEntry(
                question=entry.question,
                revealed=tuple(entry.revealed),
                strikes=entry.strikes,
                winning_team=entry.winning_team,
                awarded_points=entry.awarded_points,
                timestamp=entry.timestamp,
            )
            for entry in record.history
        ][-history_limit:]

        return cls(
            teams=teams,
            active_team_index=record.active_team_index,
            phase_state=phase_state,
            current_question=question,
            round=round_state,
            round_winner=record.round_winner,
            history=history,
            voice_enabled=record.voice_enabled,
            strike_limit=strike_limit,
            history_limit=history_limit,
        )


def _default_teams() -> List[Team]:
    return [Team(name=name, color=color) for name, color in zip(DEFAULT_TEAM_NAMES, DEFAULT_TEAM_COLORS)]


def _restore_phase(record: GameRecord, round_state: Optional[RoundState]) -> PhaseState:
    if record.phase is GamePhase.SETUP:
        return SetupPhase()
    if record.phase is GamePhase.RESULTS:
        return ResultsPhase()
    if record.phase is GamePhase.STEAL and round_state is not None:
        if round_state.all_revealed:
            return StealResolvedPhase()
        # The stored index is redundant with two teams; never trust it over the active team.
        return StealPhase(original_team=other_team(record.active_team_index))
    return PlayingPhase()
