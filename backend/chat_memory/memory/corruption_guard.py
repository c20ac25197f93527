from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from chat_memory.core.security import generate_session_id
from chat_memory.memory.errors import StorageError
from chat_memory.memory.events import MemoryEventLog
from chat_memory.memory.session_store import SessionStore
from chat_memory.memory.types import (
    VALID_ROLES,
    CorruptionReport,
    Message,
    RepairResult,
    SessionRecord,
    SweepSummary,
    ValidationReport,
)
from chat_memory.utils.time_utils import is_valid_timestamp, utc_now

logger = logging.getLogger(__name__)

_RECORD_FIELDS = ("session_id", "messages", "summaries", "message_count", "last_activity")


class CorruptionGuard:
    """Detect structurally invalid session records and repair or reset them.

    Corruption is reported as data, never raised: the worst outcome for a
    session is a reset to an empty record.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        events: Optional[MemoryEventLog] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._events = events or MemoryEventLog(clock=clock)
        self._clock = clock

    def validate(self, record: Any) -> ValidationReport:
        """Check every field of ``record``; ``warnings`` never make it invalid."""

        if not isinstance(record, SessionRecord):
            return ValidationReport(valid=False, issues=["Invalid session data structure"])

        issues: list[str] = []
        warnings: list[str] = []

        if not isinstance(record.session_id, str) or not record.session_id:
            issues.append("Invalid or missing session ID")

        if not isinstance(record.messages, list):
            issues.append("Messages is not an array")
        else:
            for index, message in enumerate(record.messages):
                if not is_valid_message(message):
                    issues.append(f"Invalid message at index {index}")

        if not isinstance(record.summaries, list):
            issues.append("Summaries is not an array")
        else:
            for index, summary in enumerate(record.summaries):
                if not is_valid_summary(summary):
                    issues.append(f"Invalid summary at index {index}")

        count = record.message_count
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            issues.append(f"Invalid message count: {count!r}")
        elif isinstance(record.messages, list) and count < len(record.messages):
            warnings.append(
                f"Message count mismatch: count={count}, retained={len(record.messages)}"
            )

        if not is_valid_timestamp(record.last_activity):
            issues.append("Invalid last activity timestamp")

        return ValidationReport(valid=not issues, issues=issues, warnings=warnings)

    def repair(self, record: Any, session_id: Optional[str] = None) -> RepairResult:
        """Best-effort fix-up of ``record``; returns a new record and the actions taken."""

        fields = {name: _read_field(record, name) for name in _RECORD_FIELDS}
        actions: list[str] = []

        repaired_id = fields["session_id"]
        if session_id and repaired_id != session_id:
            repaired_id = session_id
            actions.append("Restored session ID from store key")
        elif not isinstance(repaired_id, str) or not repaired_id:
            repaired_id = generate_session_id(prefix="recovered")
            actions.append("Generated new session ID")

        dropped = 0
        messages = fields["messages"]
        if not isinstance(messages, list):
            messages = []
            actions.append("Reset messages array")
        else:
            valid_messages = [item for item in messages if is_valid_message(item)]
            dropped = len(messages) - len(valid_messages)
            if dropped:
                actions.append(f"Removed {dropped} invalid messages")
            messages = valid_messages

        summaries = fields["summaries"]
        if not isinstance(summaries, list):
            summaries = []
            actions.append("Reset summaries array")
        else:
            valid_summaries = [item for item in summaries if is_valid_summary(item)]
            if len(valid_summaries) != len(summaries):
                actions.append(f"Removed {len(summaries) - len(valid_summaries)} invalid summaries")
            summaries = valid_summaries

        count = fields["message_count"]
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            count = len(messages)
            actions.append("Reset invalid message count")
        else:
            # Dropped messages no longer count; the lifetime total never drops below the tail.
            adjusted = max(count - dropped, len(messages))
            if adjusted != count:
                count = adjusted
                actions.append("Corrected message count")

        last_activity = fields["last_activity"]
        if not is_valid_timestamp(last_activity):
            last_activity = self._clock()
            actions.append("Reset last activity timestamp")

        repaired = SessionRecord(
            session_id=repaired_id,
            messages=messages,
            summaries=summaries,
            message_count=count,
            last_activity=last_activity,
        )
        return RepairResult(repaired=repaired, actions=actions)

    def detect_and_recover(self, session_id: str) -> CorruptionReport:
        """Validate one stored session and repair or reset it in place.

        Callers that may race with writers to the same session must hold
        ``store.session_lock(session_id)``.
        """

        report = CorruptionReport(session_id=session_id)
        try:
            if not self._store.has(session_id):
                report.issues.append("Session does not exist")
                self._store.clear(session_id)
                report.recovered = True
                report.recovery_actions.append("Created new empty session")
                return report

            record = self._store.get(session_id)
            validation = self.validate(record)
            if validation.valid and not validation.warnings:
                return report

            report.is_corrupted = not validation.valid
            report.issues = validation.issues + validation.warnings
            repair = self.repair(record, session_id=session_id)
            if self.validate(repair.repaired).valid:
                self._store.update(session_id, repair.repaired)
                report.recovery_actions = repair.actions
            else:
                self._store.clear(session_id)
                report.recovery_actions = ["Complete session reset - repair failed"]
            report.recovered = True
            self._events.warning(
                "detect_and_recover",
                f"Recovered session: {'; '.join(report.recovery_actions) or 'no changes'}",
                session_id=session_id,
            )
            return report
        except Exception as exc:  # noqa: BLE001
            self._events.error(
                "detect_and_recover",
                f"Session recovery failed: {type(exc).__name__}",
                error_type="session",
                session_id=session_id,
                exc=exc,
            )
            return self._emergency_reset(report)

    async def sweep_all(self) -> SweepSummary:
        """Run ``detect_and_recover`` over every stored session."""

        try:
            session_ids = self._store.list_ids()
        except StorageError:
            logger.exception("Corruption sweep could not enumerate sessions")
            return SweepSummary(total_sessions=0, corrupted_sessions=0, recovered_sessions=0)

        reports: list[CorruptionReport] = []
        for session_id in session_ids:
            async with self._store.session_lock(session_id):
                try:
                    if not self._store.has(session_id):
                        # Evicted since enumeration; do not resurrect it.
                        continue
                except StorageError:
                    reports.append(
                        CorruptionReport(
                            session_id=session_id,
                            is_corrupted=True,
                            issues=["Failed to perform corruption check"],
                        )
                    )
                    continue
                reports.append(self.detect_and_recover(session_id))

        summary = SweepSummary(
            total_sessions=len(session_ids),
            corrupted_sessions=sum(1 for item in reports if item.is_corrupted),
            recovered_sessions=sum(
                1 for item in reports if item.is_corrupted and item.recovered
            ),
            reports=reports,
        )
        if summary.corrupted_sessions:
            self._events.warning(
                "sweep_all",
                f"Found and recovered {summary.recovered_sessions}/"
                f"{summary.corrupted_sessions} corrupted sessions",
            )
        return summary

    def _emergency_reset(self, report: CorruptionReport) -> CorruptionReport:
        try:
            self._store.clear(report.session_id)
        except Exception:  # noqa: BLE001
            logger.exception("Emergency reset failed for session %s", report.session_id)
            report.recovered = False
            report.recovery_actions = ["Failed to recover session"]
            return report
        report.recovered = True
        report.recovery_actions = ["Emergency session reset due to recovery error"]
        return report


def is_valid_message(message: Any) -> bool:
    return (
        isinstance(message, Message)
        and isinstance(message.id, str)
        and bool(message.id)
        and message.role in VALID_ROLES
        and isinstance(message.content, str)
        and bool(message.content)
        and is_valid_timestamp(message.timestamp)
    )


def is_valid_summary(summary: Any) -> bool:
    return isinstance(summary, str) and bool(summary.strip())


def _read_field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)
