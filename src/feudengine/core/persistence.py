"""Versioned snapshots over a flat string-keyed store.

Nothing in this module raises to its caller: storage faults, corrupt JSON
and schema drift are logged and treated as "no prior state" on read and as
a silent no-op on write.
"""

from __future__ import annotations

import re
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Tuple

import orjson
import structlog

from .deck import QuestionDeck
from .fsm import DEFAULT_HISTORY_LIMIT, DEFAULT_TEAM_COLORS, DEFAULT_TEAM_NAMES, GameState
from .schemas import MAX_STRIKES, DeckRecord, GameSnapshotPayload, SnapshotEnvelope

LOGGER = structlog.get_logger(__name__)

GAME_STATE_KEY = "feud:game-state"
GAME_STATE_VERSION = 1

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class KeyValueStore(Protocol):
    """Durable string store; last write wins."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """In-process store, handy for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """One file per key inside ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)


class SnapshotStore:
    """Reads and writes ``{version, timestamp, payload}`` envelopes under one key."""

    def __init__(self, store: KeyValueStore, *, key: str, version: int) -> None:
        self.store = store
        self.key = key
        self.version = version

    def read(self) -> Optional[Any]:
        """Return the stored payload, or None when absent, corrupt or from another version."""

        logger = LOGGER.bind(key=self.key)
        try:
            raw = self.store.get(self.key)
        except Exception as exc:  # noqa: BLE001 - storage faults mean "no prior state"
            logger.warning("persistence.read_failed", error=str(exc))
            return None
        if raw is None:
            return None
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            logger.warning("persistence.corrupt_snapshot", error=str(exc))
            return None

        envelope = SnapshotEnvelope.parse(data)
        if envelope is None:
            logger.warning("persistence.malformed_envelope")
            return None
        if envelope.version != self.version:
            logger.info("persistence.version_mismatch", found=envelope.version, expected=self.version)
            return None
        return envelope.payload

    def write(self, payload: Any) -> bool:
        envelope = {"version": self.version, "timestamp": time.time(), "payload": payload}
        try:
            self.store.set(self.key, orjson.dumps(envelope).decode("utf-8"))
        except Exception as exc:  # noqa: BLE001 - a lost save must not stop the game
            LOGGER.warning("persistence.write_failed", key=self.key, error=str(exc))
            return False
        return True

    def clear(self) -> None:
        try:
            self.store.remove(self.key)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("persistence.clear_failed", key=self.key, error=str(exc))


class GameSnapshotAdapter:
    """Loads and saves the game state together with its deck position."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = GAME_STATE_KEY,
        version: int = GAME_STATE_VERSION,
        strike_limit: int = MAX_STRIKES,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        default_names: Tuple[str, str] = DEFAULT_TEAM_NAMES,
        colors: Tuple[str, str] = DEFAULT_TEAM_COLORS,
    ) -> None:
        self.snapshots = SnapshotStore(store, key=key, version=version)
        self.strike_limit = strike_limit
        self.history_limit = history_limit
        self.default_names = default_names
        self.colors = colors

    def load(self) -> Optional[Tuple[GameState, Optional[DeckRecord]]]:
        payload = self.snapshots.read()
        if payload is None:
            return None
        try:
            snapshot = GameSnapshotPayload.model_validate(payload if isinstance(payload, dict) else {})
            state = GameState.from_record(
                snapshot.state,
                strike_limit=self.strike_limit,
                history_limit=self.history_limit,
                default_names=self.default_names,
                colors=self.colors,
            )
        except Exception as exc:  # noqa: BLE001 - any drift means "no prior state"
            LOGGER.warning("persistence.load_failed", error=str(exc))
            return None
        LOGGER.debug("persistence.loaded", phase=state.phase.value)
        return state, snapshot.deck

    def save(self, state: GameState, deck: Optional[QuestionDeck] = None) -> bool:
        try:
            payload = GameSnapshotPayload(
                state=state.to_record(),
                deck=deck.to_record() if deck is not None else None,
            ).model_dump(mode="json")
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("persistence.serialize_failed", error=str(exc))
            return False
        return self.snapshots.write(payload)

    def clear(self) -> None:
        self.snapshots.clear()
