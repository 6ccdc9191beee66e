from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from feudengine.config.settings import EngineConfig
from feudengine.core.packs import PackLibrary
from feudengine.core.persistence import MemoryStore
from feudengine.core.schemas import Answer, Question, ValidationRequest, ValidationResponse
from feudengine.engine import FeudEngine
from feudengine.providers.providers import AnswerValidator, ValidatorError
from feudengine.utils.rng import build_rng


BEDTIME = Question(
    question="Name something people do right before going to bed",
    answers=(
        Answer(text="Watch TV", points=40),
        Answer(text="Read", points=30),
        Answer(text="Check phone", points=18),
        Answer(text="Eat", points=8),
        Answer(text="Exercise", points=4),
    ),
)


class ScriptedValidator(AnswerValidator):
    """Replays canned verdicts (or raises canned errors) in order."""

    name = "scripted"

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests: List[ValidationRequest] = []
        self.release: Optional[asyncio.Event] = None
        self.delay = 0.0

    async def validate(self, request: ValidationRequest) -> ValidationResponse:
        self.requests.append(request)
        if self.release is not None:
            await self.release.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else ValidationResponse(matched=False)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def bedtime() -> Question:
    return BEDTIME


@pytest.fixture
def scripted_validator():
    def factory(*outcomes) -> ScriptedValidator:
        return ScriptedValidator(*outcomes)

    return factory


@pytest.fixture
def validator_error():
    return ValidatorError("service unavailable")


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def make_engine(store):
    def factory(*, validator: Optional[AnswerValidator] = None, config: Optional[EngineConfig] = None, seed: int = 7, **kwargs):
        return FeudEngine(
            config=config or EngineConfig(),
            validator=validator,
            storage=store,
            packs=kwargs.pop("packs", None) or PackLibrary(store),
            rng=build_rng(seed=seed),
            **kwargs,
        )

    return factory
