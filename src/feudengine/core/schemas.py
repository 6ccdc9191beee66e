"""Pydantic contracts for questions, validator traffic and persisted records.

Two families of models live here. Domain contracts (``Answer``,
``Question``, ``ValidationRequest``, ``ValidationResponse``) are strict and
raise :class:`SchemaValidationError` through :func:`validate_payload`.
Persisted records (``*Record``) are lenient: every field falls back to its
default instead of failing, and malformed list items are dropped, so a stale
snapshot from an older build degrades field by field.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Annotated, Any, Callable, List, Optional, Tuple, Type, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    WrapValidator,
)

M = TypeVar("M", bound=BaseModel)

MAX_STRIKES = 3


class GamePhase(str, Enum):
    """Game phases."""

    SETUP = "setup"
    PLAYING = "playing"
    STEAL = "steal"
    RESULTS = "results"


class PackOrigin(str, Enum):
    """Where a question pack came from."""

    BUILTIN = "builtin"
    CUSTOM = "custom"
    IMPORTED = "imported"


# ---------------------------------------------------------------------------
# Domain contracts
# ---------------------------------------------------------------------------


class Answer(BaseModel):
    """A canonical board answer."""

    model_config = ConfigDict(frozen=True)

    text: str
    points: int = Field(0, ge=0)


class Question(BaseModel):
    """A survey prompt and its ordered board answers."""

    model_config = ConfigDict(frozen=True)

    question: str
    answers: Tuple[Answer, ...] = ()


class ValidationRequest(BaseModel):
    """Payload sent to the semantic validator."""

    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    board_answers: List[Answer] = Field(default_factory=list, alias="boardAnswers")
    player_answer: str = Field("", alias="playerAnswer")


class ValidationResponse(BaseModel):
    """Reply of the semantic validator (and of engine submissions)."""

    model_config = ConfigDict(populate_by_name=True)

    matched: bool
    matched_answer: Optional[str] = Field(None, alias="matchedAnswer")
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    points: Optional[int] = None
    timed_out: bool = Field(False, alias="timedOut")

    def to_wire(self) -> dict:
        """Return the camelCase JSON form, omitting unset optional fields."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        if not self.timed_out:
            data.pop("timedOut", None)
        return data


class AnswerImport(BaseModel):
    text: str
    points: int = Field(..., ge=0)


class QuestionImport(BaseModel):
    question: str
    answers: List[AnswerImport] = Field(..., min_length=1)


class PackImport(BaseModel):
    """Strict shape accepted when importing a shared question pack."""

    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    origin: Optional[PackOrigin] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None
    version: Optional[int] = Field(None, ge=1)
    questions: List[QuestionImport]


class SchemaValidationError(Exception):
    """Raised when a payload fails schema validation."""
    def __init__(self, kind: str, errors: list):
        self.kind = kind
        self.errors = errors
        super().__init__(f"Validation failed for {kind}: {errors}")


_CONTRACTS: dict[str, Type[BaseModel]] = {
    "question": Question,
    "validation_request": ValidationRequest,
    "validation_response": ValidationResponse,
    "pack": PackImport,
}


def validate_payload(*, kind: str, payload: Any) -> BaseModel:
    """Validate a raw payload against the named contract or raise SchemaValidationError."""
    model = _CONTRACTS.get(kind)
    if model is None:
        raise SchemaValidationError(kind, [f"Unknown payload kind: {kind}"])
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise SchemaValidationError(kind, e.errors())


# ---------------------------------------------------------------------------
# Lenient persisted records
# ---------------------------------------------------------------------------


def _or_default(factory: Callable[[], Any]) -> WrapValidator:
    def validator(value: Any, handler: Callable[[Any], Any]) -> Any:
        try:
            return handler(value)
        except ValidationError:
            return factory()

    return WrapValidator(validator)


def _whole_number(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("booleans are not counts")
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("non-finite number")
        return math.floor(value)
    return value


def _clamp(low: int, high: Optional[int] = None) -> AfterValidator:
    def validator(value: int) -> int:
        value = max(low, value)
        if high is not None:
            value = min(high, value)
        return value

    return AfterValidator(validator)


def _team_index(value: Any) -> Any:
    if isinstance(value, bool) or value not in (0, 1):
        raise ValueError("team index must be 0 or 1")
    return int(value)


def _flags(value: Any) -> List[bool]:
    if not isinstance(value, list):
        raise ValueError("expected a list of flags")
    return [item is True for item in value]


def _items_of(model: Type[M], *, require_list: bool = False) -> BeforeValidator:
    def validator(value: Any) -> List[M]:
        if not isinstance(value, list):
            if require_list:
                raise ValueError("expected a list")
            return []
        kept: List[M] = []
        for item in value:
            try:
                kept.append(model.model_validate(item))
            except ValidationError:
                continue
        return kept

    return BeforeValidator(validator)


Count = Annotated[int, BeforeValidator(_whole_number), _clamp(0), _or_default(int)]
Strikes = Annotated[int, BeforeValidator(_whole_number), _clamp(0, MAX_STRIKES), _or_default(int)]
TeamIndex = Annotated[int, BeforeValidator(_team_index), _or_default(int)]
OptionalTeamIndex = Annotated[Optional[int], BeforeValidator(lambda v: None if v is None else _team_index(v)), _or_default(lambda: None)]
Flags = Annotated[List[bool], BeforeValidator(_flags), _or_default(list)]
Text = Annotated[str, _or_default(str)]


class AnswerRecord(BaseModel):
    text: str
    points: Count = 0


class QuestionRecord(BaseModel):
    question: str
    answers: Annotated[List[AnswerRecord], _items_of(AnswerRecord)] = Field(default_factory=list)

    def to_question(self) -> Question:
        return Question(
            question=self.question,
            answers=tuple(Answer(text=a.text, points=a.points) for a in self.answers),
        )


class TeamRecord(BaseModel):
    name: Text = ""
    color: Text = ""
    score: Count = 0


class RoundRecord(BaseModel):
    strikes: Strikes = 0
    revealed: Flags = Field(default_factory=list)
    round_pot: Count = 0


class HistoryRecord(BaseModel):
    question: str
    revealed: Flags = Field(default_factory=list)
    strikes: Strikes = 0
    winning_team: OptionalTeamIndex = None
    awarded_points: Count = 0
    timestamp: Annotated[float, _or_default(float)] = 0.0


class DeckRecord(BaseModel):
    order: Annotated[List[int], _or_default(list)] = Field(default_factory=list)
    index: Count = 0


def _optional_record(model: Type[M]) -> BeforeValidator:
    def validator(value: Any) -> Optional[M]:
        if value is None:
            return None
        try:
            return model.model_validate(value)
        except ValidationError:
            return None

    return BeforeValidator(validator)


def _teams(value: Any) -> List[TeamRecord]:
    if not isinstance(value, list) or len(value) != 2:
        raise ValueError("exactly two teams are required")
    return [TeamRecord.model_validate(item if isinstance(item, (dict, TeamRecord)) else {}) for item in value]


class GameRecord(BaseModel):
    """Field-level sanitized view of a persisted game state.

    Cross-field invariants (question/round pairing, steal bookkeeping) are
    restored by :meth:`feudengine.core.fsm.GameState.from_record`.
    """

    teams: Annotated[List[TeamRecord], BeforeValidator(_teams), _or_default(lambda: [TeamRecord(), TeamRecord()])] = Field(
        default_factory=lambda: [TeamRecord(), TeamRecord()]
    )
    active_team_index: TeamIndex = 0
    phase: Annotated[GamePhase, _or_default(lambda: GamePhase.SETUP)] = GamePhase.SETUP
    current_question: Annotated[Optional[QuestionRecord], _optional_record(QuestionRecord)] = None
    round: Annotated[Optional[RoundRecord], _optional_record(RoundRecord)] = None
    round_winner: OptionalTeamIndex = None
    history: Annotated[List[HistoryRecord], _items_of(HistoryRecord)] = Field(default_factory=list)
    steal_original_team_index: OptionalTeamIndex = None
    voice_enabled: Annotated[bool, _or_default(lambda: True)] = True


class GameSnapshotPayload(BaseModel):
    state: Annotated[GameRecord, _or_default(GameRecord)] = Field(default_factory=GameRecord)
    deck: Annotated[Optional[DeckRecord], _optional_record(DeckRecord)] = None


class SnapshotEnvelope(BaseModel):
    """Versioned wrapper written to the key-value store."""

    model_config = ConfigDict(strict=True)

    version: int
    timestamp: float
    payload: Any

    @classmethod
    def parse(cls, raw: Any) -> Optional["SnapshotEnvelope"]:
        """Return the envelope, or None when the outer shape is malformed."""
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return None


class PackRecord(BaseModel):
    """Lenient stored form of a question pack."""

    id: Text = ""
    name: Text = ""
    description: Text = ""
    origin: Annotated[PackOrigin, _or_default(lambda: PackOrigin.CUSTOM)] = PackOrigin.CUSTOM
    created_at: Annotated[Optional[float], _or_default(lambda: None)] = None
    updated_at: Annotated[Optional[float], _or_default(lambda: None)] = None
    version: Annotated[int, BeforeValidator(_whole_number), _clamp(1), _or_default(lambda: 1)] = 1
    questions: Annotated[List[QuestionRecord], _items_of(QuestionRecord, require_list=True)]


class PackLibraryRecord(BaseModel):
    packs: Annotated[List[PackRecord], _items_of(PackRecord)] = Field(default_factory=list)
    active_pack_id: Annotated[Optional[str], _or_default(lambda: None)] = None
