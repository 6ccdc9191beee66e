"""Validator used when no semantic service is configured."""

from __future__ import annotations

from typing import Any

from ..core.schemas import ValidationRequest, ValidationResponse
from .providers import AnswerValidator, ValidatorFactory


class OfflineValidator(AnswerValidator):
    """Never matches, so only local fuzzy matching decides."""

    name = "offline"

    def __init__(self, **_kwargs: Any) -> None:
        pass

    async def validate(self, request: ValidationRequest) -> ValidationResponse:
        return ValidationResponse(matched=False)


ValidatorFactory.register("offline", OfflineValidator)
