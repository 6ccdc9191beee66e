"""Core game logic and data structures."""

from . import deck, fsm, matching, normalize, packs, persistence, schemas, store, validation

__all__ = ["deck", "fsm", "matching", "normalize", "packs", "persistence", "schemas", "store", "validation"]
