"""LLM-backed semantic validator speaking the OpenAI chat completions API."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, List, Optional

import orjson
import structlog
from dotenv import load_dotenv
from openai import OpenAI

from ..core.schemas import (
    Answer,
    SchemaValidationError,
    ValidationRequest,
    ValidationResponse,
    validate_payload,
)
from .providers import AnswerValidator, ValidatorError, ValidatorFactory

load_dotenv()

LOGGER = structlog.get_logger(__name__)

DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_TIMEOUT = 10.0
DEFAULT_CONFIDENCE = 0.85
CONFIDENCE_FLOOR = 0.8
MAX_OUTPUT_TOKENS = 60


def build_prompt(request: ValidationRequest) -> str:
    """Render the judging prompt for one guess."""

    board_text = ", ".join(f"{answer.text.upper()} ({answer.points})" for answer in request.board_answers)
    return "\n".join(
        [
            f'Question: "{request.question}"',
            f"Board answers: {board_text}",
            f'Player answered: "{request.player_answer}"',
            "",
            "Does this answer match ANY board answer conceptually?",
            "Be GENEROUS - accept if core concept matches.",
            "Return ONLY JSON with fields: matched (boolean), matchedAnswer (UPPERCASE board answer text), confidence (0-1).",
        ]
    )


def resolve_board_answer(answers: List[Answer], matched_text: str) -> Optional[Answer]:
    """Return the board answer named by ``matched_text`` (trimmed, case-insensitive)."""

    wanted = matched_text.strip().lower()
    for answer in answers:
        if answer.text.strip().lower() == wanted:
            return answer
    return None


class OpenAIAnswerValidator(AnswerValidator):
    """Asks a chat model whether a guess names a board answer.

    The model reply is held to the same contract as the remote validator
    service: it must name a board answer verbatim (ignoring case and outer
    whitespace) and clear the confidence floor, otherwise the verdict is a
    plain ``matched=False``.
    """

    name = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        confidence_floor: float = CONFIDENCE_FLOOR,
        default_confidence: float = DEFAULT_CONFIDENCE,
        client: Any = None,
        **kwargs: Any,
    ) -> None:
        self.model = model
        self.confidence_floor = confidence_floor
        self.default_confidence = default_confidence
        if client is not None:
            self._client = client
            return

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValidatorError("OPENAI_API_KEY is not set")
        self._client = OpenAI(
            api_key=self.api_key,
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
            timeout=timeout,
            **kwargs,
        )

    def close(self) -> None:
        """Close the underlying OpenAI client."""
        close = getattr(self._client, "close", None)
        if callable(close):
            close()

    async def validate(self, request: ValidationRequest) -> ValidationResponse:
        if not request.question or not request.board_answers or not request.player_answer.strip():
            return ValidationResponse(matched=False)
        return await asyncio.to_thread(self._validate_sync, request)

    # Internal helpers ------------------------------------------------------------------

    def _validate_sync(self, request: ValidationRequest) -> ValidationResponse:
        logger = LOGGER.bind(model=self.model, player_answer=request.player_answer)

        create_kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": build_prompt(request)}],
            "temperature": 0.1,
            "max_tokens": MAX_OUTPUT_TOKENS,
            "response_format": {"type": "json_object"},
        }
        try:
            response = self._client.chat.completions.create(**create_kwargs)
        except Exception as exc:
            logger.error("openai.api_error", error=str(exc))
            raise ValidatorError(f"OpenAI API error: {exc}") from exc

        raw_response = response.model_dump() if hasattr(response, "model_dump") else dict(response)
        try:
            verdict = self._parse_verdict(raw_response)
        except (ValueError, KeyError, SchemaValidationError) as exc:
            logger.warning("openai.payload_parse_failed", error=str(exc))
            raise ValidatorError(f"Failed to parse OpenAI verdict: {exc}") from exc

        if not verdict.matched or not verdict.matched_answer:
            logger.info("openai.no_match")
            return ValidationResponse(matched=False)

        canonical = resolve_board_answer(request.board_answers, verdict.matched_answer)
        if canonical is None:
            logger.info("openai.unknown_answer", matched_answer=verdict.matched_answer)
            return ValidationResponse(matched=False)

        confidence = verdict.confidence if verdict.confidence is not None else self.default_confidence
        if confidence < self.confidence_floor:
            logger.info("openai.below_floor", confidence=confidence)
            return ValidationResponse(matched=False)

        logger.info("openai.match", matched_answer=canonical.text, confidence=confidence, usage=raw_response.get("usage"))
        return ValidationResponse(
            matched=True,
            matched_answer=canonical.text,
            confidence=confidence,
            points=canonical.points,
        )

    @staticmethod
    def _parse_verdict(data: Dict[str, Any]) -> ValidationResponse:
        choices = data.get("choices")
        if not choices or not choices[0]:
            raise ValueError("OpenAI response missing 'choices'")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise ValueError("OpenAI response missing text content")
        try:
            parsed = orjson.loads(content)
        except orjson.JSONDecodeError as exc:
            raise ValueError(f"OpenAI content was not valid JSON: {exc}") from exc
        return validate_payload(kind="validation_response", payload=parsed)  # type: ignore[return-value]


ValidatorFactory.register("openai", OpenAIAnswerValidator)
