"""Event sinks and per-operation event streams."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from avorch.models.progress import ProgressEvent, ProgressStage

logger = logging.getLogger(__name__)

EventCallback = Callable[[ProgressEvent], None]


class EventSink(Protocol):
    """Destination for progress events (UI bridge, message bus, ...)."""

    def emit(self, event: ProgressEvent) -> None:
        ...


class NullSink:
    """Discards every event."""

    def emit(self, event: ProgressEvent) -> None:
        pass


class LoggingSink:
    """Writes events to the log."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def emit(self, event: ProgressEvent) -> None:
        if event.stage is ProgressStage.PROCESSING:
            logger.debug("%s processing %.1f%%", event.operation_id, event.percent)
            return
        logger.log(
            self.level,
            "%s %s%s",
            event.operation_id,
            event.stage.value,
            f": {event.message}" if event.message else "",
        )


class CallbackSink:
    """Forwards events to a plain callable."""

    def __init__(self, callback: EventCallback) -> None:
        self._callback = callback

    def emit(self, event: ProgressEvent) -> None:
        self._callback(event)


class EventStream:
    """Ordered event history and subscribers of one operation.

    Enforces the stream guarantees: percent never goes down, and nothing is
    delivered after the first terminal event.
    """

    def __init__(self, operation_id: str) -> None:
        self.operation_id = operation_id
        self.history: list[ProgressEvent] = []
        self._subscribers: list[EventCallback] = []
        self._last_percent = 0.0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_percent(self) -> float:
        return self._last_percent

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Replay past events to *callback*, then deliver new ones."""
        for event in list(self.history):
            _deliver(callback, event)
        if not self._closed:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> ProgressEvent | None:
        """Record and deliver *event*; returns what was delivered, if anything."""
        if self._closed:
            return None
        if event.percent < self._last_percent:
            event = event.model_copy(update={"percent": self._last_percent})
        self._last_percent = event.percent
        self.history.append(event)
        if event.is_terminal:
            self._closed = True
        for callback in list(self._subscribers):
            _deliver(callback, event)
        if self._closed:
            self._subscribers.clear()
        return event


def _deliver(callback: EventCallback, event: ProgressEvent) -> None:
    try:
        callback(event)
    except Exception:
        logger.exception("Subscriber failed for %s", event.operation_id)
