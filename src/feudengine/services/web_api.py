"""FastAPI application exposing the answer-validation service and pack listing."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ..config.settings import EngineConfig, load_engine_config
from ..core.packs import PackLibrary
from ..core.persistence import JsonFileStore
from ..core.schemas import SchemaValidationError, ValidationRequest, ValidationResponse, validate_payload
from ..providers.providers import AnswerValidator, ValidatorError, ValidatorFactory

LOGGER = structlog.get_logger(__name__)

NO_MATCH: Dict[str, Any] = {"matched": False}


class ServiceState:
    """Lazily built collaborators; tests swap them through :func:`configure`."""

    def __init__(self) -> None:
        self.config: Optional[EngineConfig] = None
        self.validator: Optional[AnswerValidator] = None
        self.packs: Optional[PackLibrary] = None

    def get_config(self) -> EngineConfig:
        if self.config is None:
            self.config = load_engine_config()
        return self.config

    def get_validator(self) -> AnswerValidator:
        if self.validator is None:
            config = self.get_config()
            self.validator = ValidatorFactory.create(
                "openai",
                model=config.openai_model,
                confidence_floor=config.confidence_floor,
                default_confidence=config.fallback_confidence,
            )
        return self.validator

    def get_packs(self) -> PackLibrary:
        if self.packs is None:
            self.packs = PackLibrary(JsonFileStore(self.get_config().storage_dir))
        return self.packs


STATE = ServiceState()


def configure(
    *,
    config: Optional[EngineConfig] = None,
    validator: Optional[AnswerValidator] = None,
    packs: Optional[PackLibrary] = None,
) -> None:
    STATE.config = config
    STATE.validator = validator
    STATE.packs = packs


app = FastAPI(title="Feud Engine API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/api/validate-answer")
async def validate_answer(request: Request) -> Dict[str, Any]:
    """Judge one guess; every failure is reported as ``{"matched": false}`` with HTTP 200."""

    try:
        body = await request.json()
    except ValueError:
        LOGGER.info("api.invalid_json")
        return NO_MATCH

    try:
        payload: ValidationRequest = validate_payload(kind="validation_request", payload=body)  # type: ignore[assignment]
    except SchemaValidationError as exc:
        LOGGER.info("api.invalid_request", errors=len(exc.errors))
        return NO_MATCH

    if not payload.question or not payload.board_answers or not payload.player_answer.strip():
        return NO_MATCH

    try:
        verdict: ValidationResponse = await STATE.get_validator().validate(payload)
    except ValidatorError as exc:
        LOGGER.warning("api.validator_failed", error=str(exc))
        return NO_MATCH
    except Exception as exc:  # noqa: BLE001 - the contract is HTTP 200 no matter what
        LOGGER.error("api.validator_crashed", error=str(exc), error_type=type(exc).__name__)
        return NO_MATCH

    return verdict.to_wire()


@app.get("/api/packs")
async def list_packs() -> Dict[str, List[Dict[str, Any]]]:
    """Return every pack (builtin first) with its question count."""

    library = STATE.get_packs()
    active_id = library.active_pack.id
    return {
        "packs": [
            {
                "id": pack.id,
                "name": pack.name,
                "description": pack.description,
                "origin": pack.origin.value,
                "questions": len(pack.questions),
                "active": pack.id == active_id,
            }
            for pack in library.packs
        ]
    }
