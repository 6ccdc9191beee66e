"""Single-writer state container with change notification."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Generic, Iterator, List, TypeVar

import structlog

LOGGER = structlog.get_logger(__name__)

S = TypeVar("S")
Listener = Callable[[S], None]


class StateStore(Generic[S]):
    """Owns one state value and notifies subscribers after every mutation.

    Mutations go through :meth:`mutate`, which refuses to nest so that two
    transitions can never interleave. Listener failures are logged and do
    not abort the remaining listeners or the caller.
    """

    def __init__(self, value: S) -> None:
        self._value = value
        self._listeners: List[Listener[S]] = []
        self._writing = False

    @property
    def value(self) -> S:
        return self._value

    def subscribe(self, listener: Listener[S]) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def mutate(self) -> Iterator[S]:
        if self._writing:
            raise RuntimeError("StateStore mutations cannot be nested")
        self._writing = True
        try:
            yield self._value
        finally:
            self._writing = False
        self.notify()

    def replace(self, value: S) -> None:
        if self._writing:
            raise RuntimeError("StateStore mutations cannot be nested")
        self._value = value
        self.notify()

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._value)
            except Exception as exc:  # noqa: BLE001 - listeners are side effects
                LOGGER.warning("store.listener_failed", listener=getattr(listener, "__name__", repr(listener)), error=str(exc))
