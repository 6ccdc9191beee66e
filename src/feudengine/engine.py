"""Game control surface: the single writer of game state."""

from __future__ import annotations

import random
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import structlog

from .config.settings import EngineConfig
from .core.deck import QuestionDeck
from .core.fsm import GameState, RoundHistoryEntry, RoundState, Team
from .core.normalize import normalize_answer
from .core.packs import PackLibrary, QuestionPack
from .core.persistence import GameSnapshotAdapter, JsonFileStore, KeyValueStore
from .core.schemas import GamePhase, Question
from .core.store import StateStore
from .core.validation import LOCAL_CONFIDENCE, AnswerResolution, ValidationGate, match_locally
from .providers.offline import OfflineValidator
from .providers.providers import AnswerValidator, ValidatorError, ValidatorFactory
from .utils.rng import build_rng

LOGGER = structlog.get_logger(__name__)


class FeudEngine:
    """Runs one game: transitions, answer submission, deck and persistence.

    Every transition goes through a :class:`StateStore`, so subscribers
    (and the snapshot writer) see each change exactly once. Submissions
    are ``async`` because an unmatched guess may be sent to the semantic
    validator; the engine refuses a second submission while one is
    waiting and drops a verdict that arrives after the round moved on.
    """

    def __init__(
        self,
        *,
        config: Optional[EngineConfig] = None,
        validator: Optional[AnswerValidator] = None,
        storage: Optional[KeyValueStore] = None,
        packs: Optional[PackLibrary] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.validator = validator or OfflineValidator()
        gate_kwargs = {"clock": clock} if clock is not None else {}
        self.gate = ValidationGate(
            self.validator,
            timeout=self.config.validator_timeout,
            confidence_floor=self.config.confidence_floor,
            fallback_confidence=self.config.fallback_confidence,
            failure_threshold=self.config.failure_threshold,
            cooldown_seconds=self.config.cooldown_seconds,
            **gate_kwargs,
        )
        self.packs = packs or PackLibrary(storage)
        self._rng = rng or build_rng()
        self._snapshots: Optional[GameSnapshotAdapter] = None
        if storage is not None:
            self._snapshots = GameSnapshotAdapter(
                storage,
                strike_limit=self.config.strike_limit,
                history_limit=self.config.history_limit,
                default_names=self.config.default_team_names,
                colors=self.config.team_colors,
            )

        state, deck_record = self._fresh_state(), None
        loaded = self._snapshots.load() if self._snapshots is not None else None
        if loaded is not None:
            state, deck_record = loaded
        self.deck = QuestionDeck.from_record(self.packs.active_pack.questions, deck_record, rng=self._rng)
        self._store: StateStore[GameState] = StateStore(state)
        self._store.subscribe(self._persist)
        self._unsubscribe_packs = self.packs.subscribe_active(self._on_pack_changed)
        self._pending = False
        self._persist_suspended = False

    @classmethod
    def from_config(cls, config: EngineConfig, *, storage_dir: Optional[Path] = None) -> "FeudEngine":
        """Build an engine with file storage and the configured validator."""

        try:
            validator = ValidatorFactory.create(config.validator_provider, **config.validator_kwargs())
        except ValidatorError as exc:
            LOGGER.warning("engine.validator_unavailable", provider=config.validator_provider, error=str(exc))
            validator = OfflineValidator()
        storage = JsonFileStore(storage_dir or config.storage_dir)
        return cls(config=config, validator=validator, storage=storage)

    def close(self) -> None:
        self._unsubscribe_packs()
        self.validator.close()

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> GameState:
        return self._store.value

    @property
    def teams(self) -> List[Team]:
        return self.state.teams

    @property
    def phase(self) -> GamePhase:
        return self.state.phase

    @property
    def active_team_index(self) -> int:
        return self.state.active_team_index

    @property
    def current_question(self) -> Optional[Question]:
        return self.state.current_question

    @property
    def round(self) -> Optional[RoundState]:
        return self.state.round

    @property
    def round_winner(self) -> Optional[int]:
        return self.state.round_winner

    @property
    def history(self) -> List[RoundHistoryEntry]:
        return self.state.history

    @property
    def steal_original_team_index(self) -> Optional[int]:
        return self.state.steal_original_team_index

    @property
    def round_ended(self) -> bool:
        return self.state.round_ended

    @property
    def voice_enabled(self) -> bool:
        return self.state.voice_enabled

    @property
    def submission_pending(self) -> bool:
        return self._pending

    def subscribe(self, listener: Callable[[GameState], None]) -> Callable[[], None]:
        return self._store.subscribe(listener)

    # ------------------------------------------------------------------
    # Game lifecycle
    # ------------------------------------------------------------------

    def start_game(self, team_a: str, team_b: str) -> bool:
        """Reset scores and history, then put the first drawn question on the board."""

        with self._store.mutate() as state:
            state.start_game(
                team_a,
                team_b,
                default_names=self.config.default_team_names,
                colors=self.config.team_colors,
            )
            question = self.deck.draw()
            if question is not None:
                state.set_next_question(question)
        LOGGER.info(
            "engine.game_started",
            teams=[team.name for team in self.state.teams],
            has_question=question is not None,
        )
        return question is not None

    def set_next_question(self, question: Question) -> bool:
        with self._store.mutate() as state:
            accepted = state.set_next_question(question)
        if not accepted:
            LOGGER.debug("engine.question_rejected", phase=self.phase.value)
        return accepted

    def end_round_advance(self) -> bool:
        with self._store.mutate() as state:
            if state.round is not None and not state.round_ended and state.round.round_pot:
                LOGGER.info("engine.pot_discarded", pot=state.round.round_pot)
            advanced = state.end_round_advance()
        return advanced

    def next_round(self) -> Optional[Question]:
        """Advance the turn and draw the next question; an empty pool ends the game."""

        with self._store.mutate() as state:
            if not state.end_round_advance():
                return None
            question = self.deck.draw()
            if question is None:
                state.end_game()
            else:
                state.set_next_question(question)
        if question is None:
            LOGGER.info("engine.pool_exhausted")
        return question

    def end_game(self) -> bool:
        with self._store.mutate() as state:
            ended = state.end_game()
        if ended:
            LOGGER.info("engine.game_ended", scores=[team.score for team in self.state.teams])
        return ended

    def clear_history(self) -> None:
        with self._store.mutate() as state:
            state.clear_history()

    def toggle_voice(self, enabled: bool) -> None:
        with self._store.mutate() as state:
            state.toggle_voice(enabled)

    def reset_persistent_state(self) -> None:
        """Forget the saved game and start over from a fresh setup state and deck."""

        if self._snapshots is not None:
            self._snapshots.clear()
        self.deck.reset()
        # Storage stays empty until the next real transition.
        self._persist_suspended = True
        try:
            self._store.replace(self._fresh_state())
        finally:
            self._persist_suspended = False
        LOGGER.info("engine.state_reset")

    # ------------------------------------------------------------------
    # Host overrides
    # ------------------------------------------------------------------

    def reveal_answer_by_index(self, index: int) -> bool:
        with self._store.mutate() as state:
            revealed = state.reveal_answer(index)
        if not revealed:
            LOGGER.debug("engine.reveal_ignored", index=index, phase=self.phase.value)
        return revealed

    def register_strike(self) -> bool:
        with self._store.mutate() as state:
            registered = state.register_strike()
        if registered:
            self._log_strike()
        return registered

    def bank_round_to_team(self, team_index: int) -> bool:
        with self._store.mutate() as state:
            banked = state.bank_round_to_team(team_index)
        return banked

    # ------------------------------------------------------------------
    # Deck access
    # ------------------------------------------------------------------

    def draw_next_question(self) -> Optional[Question]:
        question = self.deck.draw()
        self._persist(self.state)
        return question

    def peek_next_question(self) -> Optional[Question]:
        return self.deck.peek()

    def reset_question_deck(self) -> None:
        self.deck.reset()
        self._persist(self.state)

    def question_counts(self) -> Tuple[int, int]:
        """``(remaining in this pass, pool size)``."""
        return self.deck.remaining, self.deck.total

    # ------------------------------------------------------------------
    # Answer submission
    # ------------------------------------------------------------------

    async def submit_answer(self, text: str) -> AnswerResolution:
        """Judge a guess from the active team during ``playing``."""
        return await self._submit(text, steal=False)

    async def submit_steal(self, text: str) -> AnswerResolution:
        """Judge the stealing team's single guess."""
        return await self._submit(text, steal=True)

    async def _submit(self, text: str, *, steal: bool) -> AnswerResolution:
        logger = LOGGER.bind(steal=steal)
        if not self._accepts(steal):
            logger.debug("engine.submit_ignored", phase=self.phase.value)
            return AnswerResolution(matched=False)
        if self._pending:
            logger.info("engine.submit_busy")
            return AnswerResolution(matched=False, busy=True)

        question = self.state.current_question
        round_state = self.state.round
        assert question is not None and round_state is not None

        if not normalize_answer(text or ""):
            self._apply(None, steal=steal)
            return AnswerResolution(matched=False, source="empty")

        index = match_locally(question, text)
        if index is not None:
            answer = question.answers[index]
            resolution = AnswerResolution(
                matched=True,
                index=index,
                matched_answer=answer.text,
                confidence=LOCAL_CONFIDENCE,
                points=answer.points,
                source="local",
            )
        else:
            self._pending = True
            try:
                resolution = await self.gate.resolve(question, text)
            finally:
                self._pending = False
            if self.state.round is not round_state or not self._accepts(steal):
                logger.info("engine.stale_verdict_discarded", matched=resolution.matched)
                return AnswerResolution(matched=False, timed_out=resolution.timed_out, source=resolution.source)

        if resolution.matched and resolution.index is not None and round_state.revealed[resolution.index]:
            logger.info("engine.duplicate_answer", matched_answer=resolution.matched_answer)
            resolution = AnswerResolution(matched=False, source=resolution.source)

        self._apply(resolution.index if resolution.matched else None, steal=steal)
        return resolution

    def _accepts(self, steal: bool) -> bool:
        return self.state.accepts_steal() if steal else self.state.accepts_answers()

    def _apply(self, index: Optional[int], *, steal: bool) -> None:
        with self._store.mutate() as state:
            if steal:
                state.resolve_steal(index)
            elif index is not None:
                state.reveal_answer(index)
            else:
                state.register_strike()

        if steal:
            LOGGER.info(
                "engine.steal_resolved",
                stolen=index is not None,
                winner=self.state.round_winner,
            )
        elif index is not None:
            LOGGER.info("engine.answer_revealed", index=index, round_ended=self.state.round_ended)
        else:
            self._log_strike()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fresh_state(self) -> GameState:
        return GameState(
            teams=[
                Team(name=name, color=color)
                for name, color in zip(self.config.default_team_names, self.config.team_colors)
            ],
            strike_limit=self.config.strike_limit,
            history_limit=self.config.history_limit,
        )

    def _log_strike(self) -> None:
        state = self.state
        if state.phase is GamePhase.STEAL:
            LOGGER.info("engine.steal_started", original_team=state.steal_original_team_index)
        elif state.round is not None:
            LOGGER.info("engine.strike_registered", strikes=state.round.strikes)

    def _persist(self, state: GameState) -> None:
        if self._snapshots is not None and not self._persist_suspended:
            self._snapshots.save(state, self.deck)

    def _on_pack_changed(self, pack: QuestionPack) -> None:
        self.deck = QuestionDeck(pack.questions, rng=self._rng)
        LOGGER.info("engine.deck_rebuilt", pack_id=pack.id, total=self.deck.total)
        self._persist(self.state)
