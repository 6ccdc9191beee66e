"""Semantic answer-validator implementations."""

from . import (
    http_validator,
    offline,
    openai_validator,
    providers,
)

# Ensure all validators are imported so they can self-register
_ = (
    http_validator,
    offline,
    openai_validator,
    providers,
)

__all__ = [
    "http_validator",
    "offline",
    "openai_validator",
    "providers",
]
