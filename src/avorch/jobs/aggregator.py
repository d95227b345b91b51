"""Aggregate progress over several operations."""

import threading

from avorch.models.progress import AggregateProgress, ProgressEvent, ProgressStage


class ProgressAggregator:
    """Keeps the latest event per tracked operation.

    The aggregate percent is the plain mean of the latest percentages; it is
    not weighted by operation duration. Updates may come from concurrent
    completion callbacks, so the map is guarded by a lock.
    """

    def __init__(self) -> None:
        self._latest: dict[str, ProgressEvent | None] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._latest)

    def track(self, key: str) -> None:
        """Start tracking *key* before it reports anything (counts as 0%)."""
        with self._lock:
            self._latest.setdefault(key, None)

    def update(self, key: str, event: ProgressEvent) -> AggregateProgress:
        """Record *event* as the latest for *key* and return the new aggregate."""
        with self._lock:
            self._latest[key] = event
            return self._snapshot()

    def remove(self, key: str) -> None:
        with self._lock:
            self._latest.pop(key, None)

    def latest(self, key: str) -> ProgressEvent | None:
        with self._lock:
            return self._latest.get(key)

    def snapshot(self) -> AggregateProgress:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> AggregateProgress:
        events = list(self._latest.values())
        if not events:
            return AggregateProgress()
        percent = sum(e.percent if e is not None else 0.0 for e in events) / len(events)
        return AggregateProgress(
            percent=percent,
            is_complete=all(e is not None and e.stage is ProgressStage.COMPLETED for e in events),
            has_error=any(e is not None and e.stage is ProgressStage.ERROR for e in events),
            tracked=len(events),
        )
