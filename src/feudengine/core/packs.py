"""Question packs: the bundled pack, user packs, sharing and the active selection."""

from __future__ import annotations

import base64
import binascii
import time
from dataclasses import dataclass, replace
from functools import lru_cache
from importlib import resources
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

import orjson
import structlog

from .persistence import KeyValueStore, SnapshotStore
from .schemas import (
    PackLibraryRecord,
    PackOrigin,
    PackRecord,
    Question,
    SchemaValidationError,
    validate_payload,
)
from .store import StateStore

LOGGER = structlog.get_logger(__name__)

PACKS_KEY = "feud:question-packs"
PACKS_VERSION = 1

BUILTIN_PACK_ID = "builtin"
UNTITLED_PACK_NAME = "Untitled Pack"


@dataclass(frozen=True)
class QuestionPack:
    """A named, ordered collection of questions."""

    id: str
    name: str
    questions: Tuple[Question, ...] = ()
    description: str = ""
    origin: PackOrigin = PackOrigin.CUSTOM
    created_at: float = 0.0
    updated_at: float = 0.0
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "origin": self.origin.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
            "questions": [question.model_dump(mode="json") for question in self.questions],
        }


@dataclass(frozen=True)
class PackLibraryState:
    """User packs (builtin excluded) plus the selected pack id."""

    packs: Tuple[QuestionPack, ...] = ()
    active_pack_id: Optional[str] = None


def generate_pack_id() -> str:
    return f"pack_{int(time.time() * 1000):x}_{uuid4().hex[:8]}"


@lru_cache(maxsize=1)
def builtin_pack() -> QuestionPack:
    """The pack shipped in ``feudengine/data/questions.json``."""

    raw = resources.files("feudengine").joinpath("data/questions.json").read_bytes()
    data = orjson.loads(raw)
    questions = tuple(
        validate_payload(kind="question", payload=item)  # type: ignore[misc]
        for item in data.get("questions", [])
    )
    return QuestionPack(
        id=BUILTIN_PACK_ID,
        name="Default Pack",
        description="Built-in survey questions",
        origin=PackOrigin.BUILTIN,
        questions=questions,
    )


# ---------------------------------------------------------------------------
# Sanitization and snapshot helpers
# ---------------------------------------------------------------------------


def pack_from_record(record: PackRecord, *, now: Optional[float] = None) -> QuestionPack:
    """Fill the gaps a lenient record leaves: id, name and timestamps."""

    now = time.time() if now is None else now
    return QuestionPack(
        id=record.id if record.id.strip() else generate_pack_id(),
        name=record.name if record.name.strip() else UNTITLED_PACK_NAME,
        description=record.description,
        origin=record.origin,
        created_at=record.created_at if record.created_at is not None else now,
        updated_at=record.updated_at if record.updated_at is not None else now,
        version=record.version,
        questions=tuple(question.to_question() for question in record.questions),
    )


def sanitize_library(payload: Any) -> PackLibraryState:
    record = PackLibraryRecord.model_validate(payload if isinstance(payload, dict) else {})
    packs = tuple(
        pack
        for pack in (pack_from_record(item) for item in record.packs)
        if pack.id != BUILTIN_PACK_ID
    )
    return PackLibraryState(packs=packs, active_pack_id=record.active_pack_id)


def library_payload(state: PackLibraryState) -> Dict[str, Any]:
    return {
        "packs": [pack.to_dict() for pack in state.packs],
        "active_pack_id": state.active_pack_id,
    }


def merge_with_builtin(state: PackLibraryState) -> List[QuestionPack]:
    """Builtin pack first, then user packs ordered by name."""

    custom = sorted(
        (pack for pack in state.packs if pack.id != BUILTIN_PACK_ID),
        key=lambda pack: (pack.name.casefold(), pack.name),
    )
    return [builtin_pack(), *custom]


def active_pack(state: PackLibraryState) -> QuestionPack:
    if state.active_pack_id:
        for pack in merge_with_builtin(state):
            if pack.id == state.active_pack_id:
                return pack
    return builtin_pack()


_UNCHANGED = object()


def update_pack_list(
    current: PackLibraryState,
    packs: List[QuestionPack],
    active_pack_id: Any = _UNCHANGED,
) -> PackLibraryState:
    """Replace the user packs, optionally re-selecting; a dangling selection falls back to builtin."""

    kept = tuple(pack for pack in packs if pack.id != BUILTIN_PACK_ID)
    active = current.active_pack_id if active_pack_id is _UNCHANGED else active_pack_id
    if active != BUILTIN_PACK_ID and not any(pack.id == active for pack in kept):
        active = BUILTIN_PACK_ID
    return PackLibraryState(packs=kept, active_pack_id=active)


def create_empty_pack(name: str) -> QuestionPack:
    now = time.time()
    return QuestionPack(
        id=generate_pack_id(),
        name=(name or "").strip() or UNTITLED_PACK_NAME,
        origin=PackOrigin.CUSTOM,
        created_at=now,
        updated_at=now,
    )


def duplicate_pack(pack: QuestionPack) -> QuestionPack:
    now = time.time()
    return replace(
        pack,
        id=generate_pack_id(),
        name=f"Copy of {pack.name}",
        origin=PackOrigin.CUSTOM,
        created_at=now,
        updated_at=now,
    )


def prepare_for_save(pack: QuestionPack, *, origin: Optional[PackOrigin] = None) -> QuestionPack:
    """Stamp a pack before it enters the library; builtin sources become new custom packs."""

    now = time.time()
    from_builtin = pack.origin is PackOrigin.BUILTIN or pack.id == BUILTIN_PACK_ID
    return replace(
        pack,
        id=generate_pack_id() if from_builtin or not pack.id else pack.id,
        name=pack.name.strip() or UNTITLED_PACK_NAME,
        origin=origin or (PackOrigin.CUSTOM if from_builtin else pack.origin),
        created_at=now if from_builtin or not pack.created_at else pack.created_at,
        updated_at=now,
        version=max(1, int(pack.version)),
    )


# ---------------------------------------------------------------------------
# Serialization and share tokens
# ---------------------------------------------------------------------------


def serialize_pack(pack: QuestionPack) -> str:
    """Pretty JSON for export (camelCase keys, two-space indent)."""

    data = {
        "id": pack.id,
        "name": pack.name,
        "description": pack.description,
        "origin": pack.origin.value,
        "createdAt": pack.created_at,
        "updatedAt": pack.updated_at,
        "version": pack.version,
        "questions": [question.model_dump(mode="json") for question in pack.questions],
    }
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode("utf-8")


def deserialize_pack(value: Any) -> Optional[QuestionPack]:
    """Validate an imported payload strictly, then sanitize it like stored packs."""

    if isinstance(value, dict):
        value = {_SNAKE_KEYS.get(key, key): item for key, item in value.items()}
    try:
        validate_payload(kind="pack", payload=value)
    except SchemaValidationError as exc:
        LOGGER.info("packs.import_rejected", errors=len(exc.errors))
        return None
    return pack_from_record(PackRecord.model_validate(value))


_SNAKE_KEYS = {"createdAt": "created_at", "updatedAt": "updated_at"}


def encode_pack_token(pack: QuestionPack) -> str:
    """URL-safe base64 of :func:`serialize_pack`, padding stripped."""

    encoded = base64.urlsafe_b64encode(serialize_pack(pack).encode("utf-8"))
    return encoded.decode("ascii").rstrip("=")


def decode_pack_token(token: str) -> Optional[QuestionPack]:
    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = orjson.loads(raw)
    except (binascii.Error, UnicodeError, ValueError):
        return None
    return deserialize_pack(data)


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------


ActivePackListener = Callable[[QuestionPack], None]


class PackLibrary:
    """Owns the pack collection, persists it and announces active-pack changes.

    Subscribers registered through :meth:`subscribe_active` are called only
    when the active pack actually changes (another pack selected, or the
    selected pack's questions edited).
    """

    def __init__(self, store: Optional[KeyValueStore] = None) -> None:
        self._snapshots = SnapshotStore(store, key=PACKS_KEY, version=PACKS_VERSION) if store is not None else None
        self._state: StateStore[PackLibraryState] = StateStore(self._load())
        self._active = active_pack(self._state.value)
        self._state.subscribe(self._on_change)
        self._active_listeners: List[ActivePackListener] = []

    def _load(self) -> PackLibraryState:
        if self._snapshots is None:
            return PackLibraryState()
        payload = self._snapshots.read()
        if payload is None:
            return PackLibraryState()
        return sanitize_library(payload)

    def _on_change(self, state: PackLibraryState) -> None:
        if self._snapshots is not None:
            self._snapshots.write(library_payload(state))
        current = active_pack(state)
        if current == self._active:
            return
        self._active = current
        LOGGER.info("packs.active_changed", pack_id=current.id, questions=len(current.questions))
        for listener in list(self._active_listeners):
            try:
                listener(current)
            except Exception as exc:  # noqa: BLE001 - listeners are side effects
                LOGGER.warning("packs.listener_failed", error=str(exc))

    def subscribe_active(self, listener: ActivePackListener) -> Callable[[], None]:
        self._active_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._active_listeners:
                self._active_listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def state(self) -> PackLibraryState:
        return self._state.value

    @property
    def packs(self) -> List[QuestionPack]:
        return merge_with_builtin(self._state.value)

    @property
    def custom_packs(self) -> Tuple[QuestionPack, ...]:
        return self._state.value.packs

    @property
    def active_pack(self) -> QuestionPack:
        return self._active

    def get(self, pack_id: str) -> Optional[QuestionPack]:
        for pack in self.packs:
            if pack.id == pack_id:
                return pack
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_active(self, pack_id: Optional[str]) -> QuestionPack:
        current = self._state.value
        self._state.replace(update_pack_list(current, list(current.packs), pack_id))
        return self._active

    def create_pack(self, name: str) -> QuestionPack:
        pack = create_empty_pack(name)
        self._upsert(pack, activate=True)
        return pack

    def save_pack(self, pack: QuestionPack, *, activate: Optional[bool] = None) -> QuestionPack:
        """Insert or replace ``pack``; new packs become active unless ``activate`` says otherwise."""

        prepared = prepare_for_save(pack)
        self._upsert(prepared, activate=activate)
        return prepared

    def delete_pack(self, pack_id: str) -> None:
        current = self._state.value
        remaining = [pack for pack in current.packs if pack.id != pack_id]
        selection = None if current.active_pack_id == pack_id else _UNCHANGED
        self._state.replace(update_pack_list(current, remaining, selection))

    def duplicate(self, pack_id: str) -> Optional[QuestionPack]:
        source = self.get(pack_id)
        if source is None:
            return None
        copy = prepare_for_save(duplicate_pack(source), origin=PackOrigin.CUSTOM)
        self._upsert(copy, activate=True)
        return copy

    def import_pack(self, pack: QuestionPack) -> QuestionPack:
        imported = prepare_for_save(replace(pack, id=generate_pack_id()), origin=PackOrigin.IMPORTED)
        self._upsert(imported, activate=True)
        LOGGER.info("packs.imported", pack_id=imported.id, questions=len(imported.questions))
        return imported

    def import_json(self, text: str) -> Optional[QuestionPack]:
        try:
            data = orjson.loads(text)
        except orjson.JSONDecodeError:
            return None
        pack = deserialize_pack(data)
        return self.import_pack(pack) if pack is not None else None

    def export_pack(self, pack_id: str) -> Optional[str]:
        pack = self.get(pack_id)
        return serialize_pack(pack) if pack is not None else None

    def share_token(self, pack_id: str) -> Optional[str]:
        pack = self.get(pack_id)
        return encode_pack_token(pack) if pack is not None else None

    def reset(self) -> None:
        """Forget every user pack and select the builtin pack."""
        if self._snapshots is not None:
            self._snapshots.clear()
        self._state.replace(PackLibraryState())

    def _upsert(self, pack: QuestionPack, *, activate: Optional[bool]) -> None:
        current = self._state.value
        exists = any(entry.id == pack.id for entry in current.packs)
        packs = [entry for entry in current.packs if entry.id != pack.id] + [pack]
        if activate or (activate is None and not exists):
            self._state.replace(update_pack_list(current, packs, pack.id))
        else:
            self._state.replace(update_pack_list(current, packs))
