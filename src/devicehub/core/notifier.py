"""Ordered, fire-and-forget fan-out of notifications to subscribers."""

from __future__ import annotations

from collections.abc import Callable

from devicehub.models.events import Event
from devicehub.utils.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[[Event], None]


class Notifier:
    """Delivers each event synchronously, in emission order, to every listener.

    A listener that raises is logged and skipped; it never prevents delivery
    to the remaining listeners nor propagates to the emitter.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: Event) -> None:
        logger.debug("notify", kind=event.kind.value)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("listener_failed", kind=event.kind.value)
