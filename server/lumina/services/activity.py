from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from lumina.errors import InvalidTransitionError


logger = logging.getLogger(__name__)


class AppStatus(str, Enum):
    """User-facing lifecycle of a studio session."""

    IDLE = "IDLE"
    CONFIGURING = "CONFIGURING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


_ALLOWED: dict[AppStatus, frozenset[AppStatus]] = {
    AppStatus.IDLE: frozenset({AppStatus.CONFIGURING, AppStatus.PROCESSING}),
    AppStatus.CONFIGURING: frozenset({AppStatus.CONFIGURING, AppStatus.PROCESSING}),
    AppStatus.PROCESSING: frozenset({AppStatus.COMPLETED, AppStatus.ERROR}),
    AppStatus.COMPLETED: frozenset({AppStatus.PROCESSING}),
    AppStatus.ERROR: frozenset({AppStatus.PROCESSING}),
}

StatusListener = Callable[[AppStatus, AppStatus], None]
LogListener = Callable[[Optional["LogEntry"]], None]


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: str
    message: str
    critical: bool = False


class StatusTracker:
    """Single-writer status holder that notifies subscribers on every change."""

    def __init__(self, initial: AppStatus = AppStatus.IDLE) -> None:
        self._status = initial
        self._listeners: list[StatusListener] = []

    @property
    def status(self) -> AppStatus:
        return self._status

    def can_transition(self, target: AppStatus) -> bool:
        return target in _ALLOWED[self._status]

    def transition(self, target: AppStatus) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(
                f"Cannot move from {self._status.value} to {target.value}"
            )
        self._set(target)

    def reset(self) -> None:
        self._set(AppStatus.IDLE)

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set(self, target: AppStatus) -> None:
        previous = self._status
        self._status = target
        logger.debug("Status %s -> %s", previous.value, target.value)
        for listener in list(self._listeners):
            listener(previous, target)


class ActivityLog:
    """Append-only activity feed, read newest-first."""

    def __init__(
        self,
        *,
        max_entries: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._entries: list[LogEntry] = []
        self._max_entries = max_entries
        self._clock = clock
        self._listeners: list[LogListener] = []

    def append(self, message: str, *, critical: bool = False) -> LogEntry:
        entry = LogEntry(
            timestamp=self._clock().strftime("%H:%M:%S"),
            message=message,
            critical=critical,
        )
        self._entries.append(entry)
        if self._max_entries is not None and len(self._entries) > self._max_entries:
            del self._entries[: len(self._entries) - self._max_entries]
        if critical:
            logger.error("%s", message)
        else:
            logger.info("%s", message)
        for listener in list(self._listeners):
            listener(entry)
        return entry

    def critical(self, message: str) -> LogEntry:
        return self.append(message, critical=True)

    def clear(self) -> None:
        self._entries.clear()
        for listener in list(self._listeners):
            listener(None)

    def entries(self) -> list[LogEntry]:
        return list(reversed(self._entries))

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Listeners get each new entry, and None when the log is cleared."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._entries)
