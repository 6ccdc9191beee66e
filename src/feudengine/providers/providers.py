"""Semantic answer-validator abstraction layer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..core.schemas import ValidationRequest, ValidationResponse


class ValidatorError(RuntimeError):
    """Raised when a validator cannot produce a trustworthy verdict."""


class AnswerValidator(ABC):
    """Abstract base class for semantic answer validators.

    Implementations answer the question "does this guess name one of the
    board answers?" and may take arbitrarily long; callers bound them with
    their own deadline. Transport and parse failures surface as
    :class:`ValidatorError`; a confident rejection is a normal
    ``matched=False`` response.
    """

    name: str = "abstract"

    @abstractmethod
    async def validate(self, request: ValidationRequest) -> ValidationResponse:
        """Return the verdict for ``request``."""

    def close(self) -> None:
        """Close any underlying connections."""

    def __enter__(self) -> "AnswerValidator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ValidatorFactory:
    """Factory for creating validator instances."""

    _validators: Dict[str, type[AnswerValidator]] = {}

    @classmethod
    def register(cls, name: str, validator_class: type[AnswerValidator]) -> None:
        """Register a validator class with the factory."""
        cls._validators[name] = validator_class

    @classmethod
    def create(cls, validator_name: str, **kwargs: Any) -> AnswerValidator:
        """Create a validator instance by name."""
        if validator_name not in cls._validators:
            raise ValidatorError(f"Unknown validator: {validator_name}")

        validator_class = cls._validators[validator_name]
        return validator_class(**kwargs)

    @classmethod
    def list_validators(cls) -> List[str]:
        """List all registered validator names."""
        return list(cls._validators.keys())
