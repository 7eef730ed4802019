"""Synchronous observer list shared by the session context and notification store."""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ObserverList(Generic[T]):
    """Ordered listeners notified synchronously with one event value.

    Dispatch iterates over a snapshot taken when it starts, so listeners that
    unsubscribe (themselves or others) mid-dispatch do not change who receives
    the event already in flight.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            self._listeners = [item for item in self._listeners if item is not listener]

        return _unsubscribe

    def dispatch(self, event: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("observer_listener_failed observers=%s", self._name)
