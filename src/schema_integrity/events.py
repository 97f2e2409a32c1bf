"""Lifecycle event listeners.

Components that report lifecycle events (connection manager, drift
detector) own an ``EventRegistry`` with a fixed set of event names.
Every emitted event is logged; registered callbacks receive the payload
dict.

Usage:
    events = EventRegistry({"connected", "disconnected"})
    events.on("connected", lambda payload: print(payload["engine"]))
    events.emit("connected", {"engine": "postgres"})
"""

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class EventRegistry:
    """Named event listeners with logging of every emission."""

    def __init__(self, names: Iterable[str], source: str = "schema_integrity") -> None:
        self._names = frozenset(names)
        self._source = source
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    @property
    def names(self) -> frozenset[str]:
        return self._names

    def on(self, event: str, callback: Listener) -> None:
        """Register ``callback`` for ``event``.

        Raises:
            ValueError: If ``event`` is not one of the registry's names.
        """
        if event not in self._names:
            raise ValueError(
                f"Unknown event '{event}' (expected one of: {', '.join(sorted(self._names))})"
            )
        self._listeners[event].append(callback)

    def emit(self, event: str, payload: dict[str, Any] | None = None) -> None:
        """Log ``event`` and deliver it to registered listeners.

        A failing listener is logged and does not stop delivery to the
        remaining listeners.
        """
        payload = payload or {}
        logger.debug(f"{self._source}: {event} {payload}")
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.exception(f"Listener for '{event}' raised")
