"""Answer resolution: local fuzzy matching first, semantic validator second."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

import structlog

from .matching import find_match_index
from .normalize import normalize_all, normalize_answer
from .schemas import Question, ValidationRequest, ValidationResponse

if TYPE_CHECKING:  # pragma: no cover - import cycle guard for type checkers
    from ..providers.providers import AnswerValidator

LOGGER = structlog.get_logger(__name__)

LOCAL_CONFIDENCE = 1.0
DEFAULT_TIMEOUT = 3.0
DEFAULT_CONFIDENCE_FLOOR = 0.8
DEFAULT_FALLBACK_CONFIDENCE = 0.85
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 30.0


@dataclass(slots=True)
class AnswerResolution:
    """Which canonical answer (if any) a guess resolved to, and how."""

    matched: bool
    index: Optional[int] = None
    matched_answer: Optional[str] = None
    confidence: Optional[float] = None
    points: Optional[int] = None
    timed_out: bool = False
    source: str = "none"
    busy: bool = False

    def to_response(self) -> ValidationResponse:
        if not self.matched:
            return ValidationResponse(matched=False, timed_out=self.timed_out)
        return ValidationResponse(
            matched=True,
            matched_answer=self.matched_answer,
            confidence=self.confidence,
            points=self.points,
            timed_out=self.timed_out,
        )


def match_locally(question: Question, player_answer: str) -> Optional[int]:
    """Index of the first canonical answer that loosely matches the guess."""

    canonical = normalize_all(answer.text for answer in question.answers)
    return find_match_index(canonical, normalize_answer(player_answer))


class ValidationGate:
    """Calls the semantic validator under a deadline and a failure cool-down.

    Timeouts, :class:`ValidatorError`, malformed or sub-floor verdicts all
    collapse to "no match". After ``failure_threshold`` consecutive
    failures the gate stops calling the validator for ``cooldown_seconds``
    and answers "no match" straight away.
    """

    def __init__(
        self,
        validator: "AnswerValidator",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR,
        fallback_confidence: float = DEFAULT_FALLBACK_CONFIDENCE,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.validator = validator
        self.timeout = timeout
        self.confidence_floor = confidence_floor
        self.fallback_confidence = fallback_confidence
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._consecutive_failures = 0
        self._cooldown_until: Optional[float] = None

    @property
    def cooling_down(self) -> bool:
        if self._cooldown_until is None:
            return False
        if self._clock() >= self._cooldown_until:
            self._cooldown_until = None
            return False
        return True

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def resolve(self, question: Question, player_answer: str) -> AnswerResolution:
        """Ask the validator about a guess that failed local matching."""

        logger = LOGGER.bind(validator=getattr(self.validator, "name", "unknown"))
        if self.cooling_down:
            logger.info("validator.skipped_cooldown")
            return AnswerResolution(matched=False, source="cooldown")

        request = ValidationRequest(
            question=question.question,
            board_answers=list(question.answers),
            player_answer=player_answer,
        )
        try:
            response = await asyncio.wait_for(self.validator.validate(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("validator.timeout", timeout=self.timeout)
            self._record_failure()
            return AnswerResolution(matched=False, timed_out=True, source="validator")
        except Exception as exc:  # noqa: BLE001 - collaborator failures never reach the game
            logger.warning("validator.failed", error=str(exc), error_type=type(exc).__name__)
            self._record_failure()
            return AnswerResolution(matched=False, source="validator")

        if response.timed_out:
            self._record_failure()
            return AnswerResolution(matched=False, timed_out=True, source="validator")
        self._record_success()

        if not response.matched or not response.matched_answer:
            return AnswerResolution(matched=False, source="validator")

        confidence = response.confidence if response.confidence is not None else self.fallback_confidence
        if confidence < self.confidence_floor:
            logger.info("validator.below_floor", confidence=confidence, floor=self.confidence_floor)
            return AnswerResolution(matched=False, source="validator")

        index = match_locally(question, response.matched_answer)
        if index is None:
            logger.info("validator.unresolved_answer", matched_answer=response.matched_answer)
            return AnswerResolution(matched=False, source="validator")

        answer = question.answers[index]
        return AnswerResolution(
            matched=True,
            index=index,
            matched_answer=answer.text,
            confidence=confidence,
            points=answer.points,
            source="validator",
        )

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            self._cooldown_until = self._clock() + self.cooldown_seconds
            self._consecutive_failures = 0
            LOGGER.warning("validator.cooldown_started", seconds=self.cooldown_seconds)

    def _record_success(self) -> None:
        self._consecutive_failures = 0
