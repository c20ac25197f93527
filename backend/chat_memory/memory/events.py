from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from chat_memory.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Error types counted as critical by the health check.
CRITICAL_ERROR_TYPES = frozenset({"storage", "api"})
HEALTH_WINDOW = timedelta(minutes=10)


@dataclass(frozen=True)
class MemoryEvent:
    """One diagnostic emitted by a memory component."""

    level: str
    operation: str
    message: str
    timestamp: datetime
    session_id: Optional[str] = None
    error_type: Optional[str] = None


@dataclass(frozen=True)
class EventStats:
    total_errors: int
    errors_by_type: dict[str, int]
    recent_errors: list[MemoryEvent]
    last_error: Optional[MemoryEvent]


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    error_rate: float
    issues: list[str] = field(default_factory=list)


class MemoryEventLog:
    """Bounded in-process event log shared by the memory components.

    Events are forwarded to the stdlib logger and kept in a ring buffer so that
    callers (tests, the health endpoint) can inspect what happened without
    parsing log text.
    """

    def __init__(
        self,
        max_events: int = 100,
        clock: Callable[[], datetime] = utc_now,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._events: deque[MemoryEvent] = deque(maxlen=max_events)
        self._clock = clock
        self._logger = log or logger

    def record(
        self,
        level: str,
        operation: str,
        message: str,
        *,
        session_id: Optional[str] = None,
        error_type: Optional[str] = None,
        exc: Optional[BaseException] = None,
    ) -> MemoryEvent:
        event = MemoryEvent(
            level=level,
            operation=operation,
            message=message,
            timestamp=self._clock(),
            session_id=session_id,
            error_type=error_type,
        )
        self._events.append(event)

        parts = [f"[{operation}]", message]
        if session_id:
            parts.append(f"(session={session_id})")
        if exc is not None:
            parts.append(f"cause={type(exc).__name__}")
        self._logger.log(_LEVELS.get(level, logging.INFO), " ".join(parts))
        return event

    def info(self, operation: str, message: str, **kwargs) -> MemoryEvent:
        return self.record("info", operation, message, **kwargs)

    def warning(self, operation: str, message: str, **kwargs) -> MemoryEvent:
        return self.record("warning", operation, message, **kwargs)

    def error(
        self, operation: str, message: str, *, error_type: str, **kwargs
    ) -> MemoryEvent:
        return self.record("error", operation, message, error_type=error_type, **kwargs)

    def events(
        self,
        *,
        operation: Optional[str] = None,
        session_id: Optional[str] = None,
        error_type: Optional[str] = None,
        level: Optional[str] = None,
    ) -> list[MemoryEvent]:
        return [
            event
            for event in self._events
            if (operation is None or event.operation == operation)
            and (session_id is None or event.session_id == session_id)
            and (error_type is None or event.error_type == error_type)
            and (level is None or event.level == level)
        ]

    def stats(self) -> EventStats:
        errors = [event for event in self._events if event.level == "error"]
        by_type = Counter(event.error_type or "unknown" for event in errors)
        return EventStats(
            total_errors=len(errors),
            errors_by_type=dict(by_type),
            recent_errors=errors[-10:],
            last_error=errors[-1] if errors else None,
        )

    def health(self) -> HealthStatus:
        cutoff = self._clock() - HEALTH_WINDOW
        recent = [
            event
            for event in self._events
            if event.level == "error" and event.timestamp > cutoff
        ]
        error_rate = len(recent) / (HEALTH_WINDOW.total_seconds() / 60)
        issues: list[str] = []
        if error_rate > 1:
            issues.append(f"High error rate: {error_rate:.2f} errors/minute")
        critical = [event for event in recent if event.error_type in CRITICAL_ERROR_TYPES]
        if len(critical) > 3:
            issues.append(f"Multiple critical errors: {len(critical)} in last 10 minutes")
        return HealthStatus(healthy=not issues, error_rate=error_rate, issues=issues)

    def health_report(self) -> str:
        health = self.health()
        stats = self.stats()
        lines = [
            "=== Memory System Health Report ===",
            f"Status: {'HEALTHY' if health.healthy else 'ISSUES DETECTED'}",
            f"Error Rate: {health.error_rate:.2f} errors/minute",
            f"Total Errors: {stats.total_errors}",
        ]
        if health.issues:
            lines.append("Issues:")
            lines.extend(f"  - {issue}" for issue in health.issues)
        if stats.errors_by_type:
            lines.append("Errors by Type:")
            lines.extend(f"  - {kind}: {count}" for kind, count in stats.errors_by_type.items())
        return "\n".join(lines)

    def clear(self) -> None:
        self._events.clear()
