"""Core package for the survey-game engine."""

from . import engine, narrator
from .core import deck, fsm, matching, normalize, packs, persistence, schemas, store, validation
from .utils import rng
from .providers import providers
from .services import cli

from .engine import FeudEngine

__all__ = [
    "FeudEngine",
    "engine",
    "narrator",
    "cli",
    "deck",
    "fsm",
    "matching",
    "normalize",
    "packs",
    "persistence",
    "schemas",
    "store",
    "validation",
    "rng",
    "providers",
]
