from __future__ import annotations

import asyncio
from collections.abc import MutableMapping
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Iterator, Optional

from chat_memory.memory.errors import InvalidSessionData, SessionMemoryError, StorageError
from chat_memory.memory.events import MemoryEventLog
from chat_memory.memory.types import SessionRecord, StoreStats
from chat_memory.utils.time_utils import hours_to_seconds, is_valid_timestamp, utc_now

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class _LockEntry:
    lock: asyncio.Lock
    users: int = 0


class SessionStore:
    """Exclusive owner of the ``session_id -> SessionRecord`` mapping.

    Records leave the store as copies; the only way to change stored state is
    through ``update``, ``clear`` and ``delete``. The backing mapping can be
    injected; any failure raised by it surfaces as ``StorageError``.
    """

    def __init__(
        self,
        *,
        backend: Optional[MutableMapping[str, Any]] = None,
        clock: Callable[[], datetime] = utc_now,
        events: Optional[MemoryEventLog] = None,
    ) -> None:
        self._records: MutableMapping[str, Any] = backend if backend is not None else {}
        self._clock = clock
        self._events = events or MemoryEventLog(clock=clock)
        self._locks: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def session_lock(self, session_id: str) -> AsyncIterator[None]:
        """Serialize mutations of one session; other sessions are unaffected."""

        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = _LockEntry(asyncio.Lock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(session_id, None)

    def is_locked(self, session_id: str) -> bool:
        entry = self._locks.get(session_id)
        return bool(entry and entry.lock.locked())

    def is_busy(self, session_id: str) -> bool:
        """True while a caller holds or waits for the session lock."""

        entry = self._locks.get(session_id)
        return bool(entry and entry.users)

    def create_empty(self, session_id: str) -> SessionRecord:
        return SessionRecord(session_id=session_id, last_activity=self._clock())

    def get_or_create(self, session_id: str) -> SessionRecord:
        """Return the session, creating an empty one on first touch."""

        with self._backend_guard("get_or_create", session_id):
            record = self._records.get(session_id)
            if record is None:
                record = self.create_empty(session_id)
                self._records[session_id] = record
            elif isinstance(record, SessionRecord):
                record.last_activity = self._clock()
            return _copy(record)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Return a copy of the stored record without touching its activity."""

        with self._backend_guard("get", session_id):
            record = self._records.get(session_id)
            return None if record is None else _copy(record)

    def has(self, session_id: str) -> bool:
        with self._backend_guard("has", session_id):
            return session_id in self._records

    def update(self, session_id: str, record: SessionRecord) -> None:
        reason = structural_problem(record)
        if reason is None and record.session_id != session_id:
            reason = f"record belongs to session {record.session_id}"
        if reason is not None:
            raise InvalidSessionData(session_id, reason)

        stored = record.copy()
        stored.last_activity = self._clock()
        with self._backend_guard("update", session_id):
            self._records[session_id] = stored

    def clear(self, session_id: str) -> None:
        with self._backend_guard("clear", session_id):
            self._records[session_id] = self.create_empty(session_id)

    def delete(self, session_id: str) -> bool:
        with self._backend_guard("delete", session_id):
            if session_id not in self._records:
                return False
            del self._records[session_id]
            return True

    def list_ids(self) -> list[str]:
        with self._backend_guard("list_ids"):
            return list(self._records.keys())

    def list_all(self) -> list[SessionRecord]:
        with self._backend_guard("list_all"):
            return [_copy(record) for record in self._records.values()]

    def count(self) -> int:
        with self._backend_guard("count"):
            return len(self._records)

    def inactive_sessions(self, timeout_hours: float) -> list[SessionRecord]:
        """Return sessions idle for strictly longer than ``timeout_hours``."""

        cutoff = self._idle_cutoff(timeout_hours)
        return [record for record in self.list_all() if _idle_since(record, cutoff)]

    def evict_inactive(self, timeout_hours: float) -> int:
        cutoff = self._idle_cutoff(timeout_hours)
        with self._backend_guard("evict_inactive"):
            items = list(self._records.items())
        removed = 0
        for session_id, record in items:
            if self.is_busy(session_id) or not _idle_since(record, cutoff):
                continue
            if self.delete(session_id):
                removed += 1
        if removed:
            self._events.info("evict_inactive", f"Cleaned up {removed} inactive sessions")
        return removed

    def evict_over_cap(self, max_sessions: int) -> int:
        """Delete the least recently active sessions above ``max_sessions``.

        Equal ``last_activity`` values keep the mapping's insertion order, so the
        earlier-created session goes first. Sessions with a pending mutation are
        in use and never chosen; the cap can stay exceeded until the next pass
        when every candidate is busy.
        """

        with self._backend_guard("evict_over_cap"):
            items = list(self._records.items())
        overflow = len(items) - max_sessions
        if overflow <= 0:
            return 0

        idle = [item for item in items if not self.is_busy(item[0])]
        ordered = sorted(idle, key=lambda item: _activity_key(item[1]))
        removed = 0
        for session_id, _ in ordered[:overflow]:
            if self.delete(session_id):
                removed += 1
        if removed:
            self._events.info(
                "evict_over_cap", f"Removed {removed} oldest sessions to enforce limit"
            )
        return removed

    def stats(self) -> StoreStats:
        records = [
            record for record in self.list_all() if structural_problem(record) is None
        ]
        activities = [record.last_activity for record in records]
        return StoreStats(
            total_sessions=self.count(),
            total_messages=sum(len(record.messages) for record in records),
            total_summaries=sum(len(record.summaries) for record in records),
            oldest_activity=min(activities) if activities else None,
            newest_activity=max(activities) if activities else None,
        )

    def _idle_cutoff(self, timeout_hours: float) -> datetime:
        return self._clock() - timedelta(seconds=hours_to_seconds(timeout_hours))

    @contextmanager
    def _backend_guard(self, operation: str, session_id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except SessionMemoryError:
            raise
        except Exception as exc:  # noqa: BLE001
            self._events.error(
                operation,
                f"Storage operation failed: {type(exc).__name__}",
                error_type="storage",
                session_id=session_id,
                exc=exc,
            )
            raise StorageError(f"Session store failed during {operation}") from exc


def structural_problem(record: Any) -> Optional[str]:
    """Return why ``record`` is not a well-formed SessionRecord, or None."""

    if not isinstance(record, SessionRecord):
        return "not a session record"
    if not isinstance(record.session_id, str) or not record.session_id:
        return "session id must be a non-empty string"
    if not isinstance(record.messages, list):
        return "messages must be a list"
    if not isinstance(record.summaries, list):
        return "summaries must be a list"
    if isinstance(record.message_count, bool) or not isinstance(record.message_count, int):
        return "message count must be an integer"
    if not is_valid_timestamp(record.last_activity):
        return "last activity must be a timezone-aware datetime"
    return None


def _copy(record: Any) -> Any:
    return record.copy() if isinstance(record, SessionRecord) else record


def _activity_key(record: Any) -> datetime:
    value = getattr(record, "last_activity", None)
    return value if is_valid_timestamp(value) else _OLDEST


def _idle_since(record: Any, cutoff: datetime) -> bool:
    value = getattr(record, "last_activity", None)
    return is_valid_timestamp(value) and value < cutoff
