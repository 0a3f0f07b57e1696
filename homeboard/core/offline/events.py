"""Typed publish/subscribe channel owned by the network state store."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Type

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


@dataclass(frozen=True)
class OfflineStateChanged:
    """Broadcast on every offline/online transition."""

    is_offline: bool
    name: str = "offline-state-changed"


@dataclass(frozen=True)
class NetworkRecoveryStarted:
    """Broadcast when a recovery sequence begins; sources refetch immediately."""

    name: str = "network-recovery-started"


class EventBus:
    """Synchronous, in-order delivery to the listeners registered at publish time.

    Listeners may be plain callables or coroutine functions. Awaitables returned
    by listeners are collected and handed back to the publisher, which decides
    whether to await them. A listener that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._listeners: Dict[type, List[Listener]] = {}

    def subscribe(self, event_type: Type[Any], listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(event_type, []).append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, listener)

        return _unsubscribe

    def unsubscribe(self, event_type: Type[Any], listener: Listener) -> None:
        listeners = self._listeners.get(event_type)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            pass

    def listener_count(self, event_type: Type[Any]) -> int:
        return len(self._listeners.get(event_type, []))

    def publish(self, event: Any) -> List[Awaitable[Any]]:
        # Snapshot: listeners added during delivery do not receive this event.
        listeners = list(self._listeners.get(type(event), []))
        logger.debug("Publishing %s to %d listener(s)", getattr(event, "name", event), len(listeners))

        pending: List[Awaitable[Any]] = []
        for listener in listeners:
            try:
                result = listener(event)
            except Exception:
                logger.exception("Listener %r failed handling %s", listener, getattr(event, "name", event))
                continue
            if inspect.isawaitable(result):
                pending.append(result)
        return pending

    def clear(self) -> None:
        self._listeners.clear()
