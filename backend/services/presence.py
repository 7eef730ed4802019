"""Online operators indicator.

Presence is cosmetic: nothing in the transaction lifecycle reads it, and
channel failures are logged without reaching callers.
"""

from __future__ import annotations

import logging
import random
import threading
from datetime import datetime, timedelta
from typing import Callable, Protocol
from uuid import uuid4

from shared.models import OperatorPresence, PresenceEvent, PresenceJoin, PresenceLeave, PresenceSync, utc_now
from shared.observers import ObserverList


logger = logging.getLogger(__name__)

MAX_VISIBLE_OPERATORS = 8
PLACEHOLDER_COUNT = 3
DEFAULT_PRESENCE_TTL_SECONDS = 60.0

STATIC_OPERATORS = (
    OperatorPresence(id="static-1", initials="JM", color="hsl(199, 80%, 55%)"),
    OperatorPresence(id="static-2", initials="AR", color="hsl(152, 60%, 45%)"),
    OperatorPresence(id="static-3", initials="LC", color="hsl(32, 85%, 55%)"),
)


def anonymous_presence(rng: random.Random | None = None) -> OperatorPresence:
    """Return the record a viewer tracks: random id, `OP` initials, random hue."""
    hue = (rng or random).randint(0, 359)
    return OperatorPresence(id=str(uuid4()), initials="OP", color=f"hsl({hue}, 70%, 50%)")


def placeholder_avatars() -> list[OperatorPresence]:
    avatars = []
    for index in range(PLACEHOLDER_COUNT):
        start = f"hsl({199 + index * 10} 80% {55 + index * 5}%)"
        end = f"hsl({210 + index * 10} 75% {45 + index * 5}%)"
        avatars.append(
            OperatorPresence(
                id=f"placeholder-{index}",
                initials=chr(ord("A") + index),
                color=f"linear-gradient(135deg, {start}, {end})",
            )
        )
    return avatars


class PresenceChannel(Protocol):
    def track(self, presence: OperatorPresence, *, owner_id: str | None = None) -> None:
        """Announce this viewer on the channel."""

    def heartbeat(self, operator_id: str, *, owner_id: str | None = None) -> bool:
        """Refresh a tracked viewer; False when it is unknown or owned by someone else."""

    def untrack(self, operator_id: str, *, owner_id: str | None = None) -> bool:
        """Withdraw a tracked viewer; False when it is unknown or owned by someone else."""

    def prune(self) -> None:
        """Drop viewers whose last heartbeat is older than the channel TTL."""

    def subscribe(self, listener: Callable[[PresenceEvent], None]) -> Callable[[], None]:
        """Register a listener; it receives the current snapshot first."""


class InMemoryPresenceChannel:
    """Process-local presence channel shared by every viewer of one dashboard.

    Viewers that stop sending heartbeats leave the channel once `ttl_seconds`
    have elapsed since their last one.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_PRESENCE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._state: dict[str, OperatorPresence] = {}
        self._owners: dict[str, str] = {}
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._observers: ObserverList[PresenceEvent] = ObserverList("presence_channel")

    def _snapshot(self) -> PresenceSync:
        with self._lock:
            return PresenceSync(operators=list(self._state.values()))

    def _owned_by(self, operator_id: str, owner_id: str | None) -> bool:
        return owner_id is None or self._owners.get(operator_id) in (None, owner_id)

    def track(self, presence: OperatorPresence, *, owner_id: str | None = None) -> None:
        record = presence.model_copy(update={"online_at": self._clock()})
        with self._lock:
            self._state[record.id] = record
            if owner_id is not None:
                self._owners[record.id] = owner_id
        self._observers.dispatch(PresenceJoin(operator=record))
        self._observers.dispatch(self._snapshot())

    def heartbeat(self, operator_id: str, *, owner_id: str | None = None) -> bool:
        with self._lock:
            current = self._state.get(operator_id)
            if current is None or not self._owned_by(operator_id, owner_id):
                return False
            self._state[operator_id] = current.model_copy(update={"online_at": self._clock()})
            return True

    def untrack(self, operator_id: str, *, owner_id: str | None = None) -> bool:
        with self._lock:
            if operator_id not in self._state or not self._owned_by(operator_id, owner_id):
                return False
            self._state.pop(operator_id)
            self._owners.pop(operator_id, None)
        self._observers.dispatch(PresenceLeave(operator_id=operator_id))
        self._observers.dispatch(self._snapshot())
        return True

    def prune(self) -> None:
        cutoff = self._clock() - self._ttl
        with self._lock:
            stale = [operator_id for operator_id, record in self._state.items() if record.online_at < cutoff]
            for operator_id in stale:
                self._state.pop(operator_id)
                self._owners.pop(operator_id, None)
        if not stale:
            return
        logger.info("presence_expired count=%s", len(stale))
        for operator_id in stale:
            self._observers.dispatch(PresenceLeave(operator_id=operator_id))
        self._observers.dispatch(self._snapshot())

    def subscribe(self, listener: Callable[[PresenceEvent], None]) -> Callable[[], None]:
        self.prune()
        unsubscribe = self._observers.subscribe(listener)
        listener(self._snapshot())
        return unsubscribe


class StaticPresenceChannel:
    """Degraded presence without connectivity: three fixed operators."""

    def track(self, presence: OperatorPresence, *, owner_id: str | None = None) -> None:
        return None

    def heartbeat(self, operator_id: str, *, owner_id: str | None = None) -> bool:
        return True

    def untrack(self, operator_id: str, *, owner_id: str | None = None) -> bool:
        return True

    def prune(self) -> None:
        return None

    def subscribe(self, listener: Callable[[PresenceEvent], None]) -> Callable[[], None]:
        listener(PresenceSync(operators=list(STATIC_OPERATORS)))
        return lambda: None


class OnlineOperators:
    """Consumes presence events and exposes the avatars to display."""

    def __init__(self, channel: PresenceChannel, *, presence: OperatorPresence | None = None) -> None:
        self._channel = channel
        self._presence = presence
        self._operators: dict[str, OperatorPresence] = {}
        self._lock = threading.Lock()
        self._unsubscribe: Callable[[], None] | None = None

    def connect(self) -> None:
        try:
            self._unsubscribe = self._channel.subscribe(self.handle_event)
            if self._presence is not None:
                self._channel.track(self._presence)
        except Exception:
            logger.warning("presence_connect_failed channel=%s", type(self._channel).__name__, exc_info=True)

    def disconnect(self) -> None:
        try:
            if self._presence is not None:
                self._channel.untrack(self._presence.id)
            if self._unsubscribe is not None:
                self._unsubscribe()
        except Exception:
            logger.warning("presence_disconnect_failed channel=%s", type(self._channel).__name__, exc_info=True)
        finally:
            self._unsubscribe = None

    def refresh(self) -> None:
        """Ask the channel to drop expired viewers before rendering."""
        try:
            self._channel.prune()
        except Exception:
            logger.warning("presence_refresh_failed channel=%s", type(self._channel).__name__, exc_info=True)

    def handle_event(self, event: PresenceEvent) -> None:
        with self._lock:
            if isinstance(event, PresenceSync):
                self._operators = {operator.id: operator for operator in event.operators}
            elif isinstance(event, PresenceJoin):
                self._operators[event.operator.id] = event.operator
            elif isinstance(event, PresenceLeave):
                self._operators.pop(event.operator_id, None)

    def visible(self) -> list[OperatorPresence]:
        """Up to eight distinct operators, or the placeholders when nobody is online."""
        with self._lock:
            operators = list(self._operators.values())[:MAX_VISIBLE_OPERATORS]
        return operators or placeholder_avatars()

    @property
    def online_count(self) -> int:
        with self._lock:
            return len(self._operators)
