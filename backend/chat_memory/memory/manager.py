from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from chat_memory.core.config import MemoryLimits
from chat_memory.core.security import truncate_for_log
from chat_memory.memory.corruption_guard import CorruptionGuard, is_valid_message
from chat_memory.memory.errors import (
    InvalidArgument,
    InvalidSessionData,
    StorageError,
    SummarizationFailed,
    SummarizationUnavailable,
)
from chat_memory.memory.events import MemoryEventLog
from chat_memory.memory.session_store import SessionStore
from chat_memory.memory.summarizer import Summarizer
from chat_memory.memory.types import (
    VALID_ROLES,
    ConversationContext,
    Message,
    SessionRecord,
    StoreStats,
    SummarizationStats,
)
from chat_memory.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class CleanupResult:
    inactive_removed: int = 0
    over_cap_removed: int = 0

    @property
    def total_removed(self) -> int:
        return self.inactive_removed + self.over_cap_removed


def create_message(
    role: str,
    content: str,
    *,
    message_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Message:
    """Build a validated message with a generated id and the current time."""

    if role not in VALID_ROLES:
        raise InvalidArgument(f"role must be one of {', '.join(VALID_ROLES)}")
    if not isinstance(content, str) or not content.strip():
        raise InvalidArgument("content must be non-empty text")
    return Message(
        id=message_id or f"msg_{uuid.uuid4().hex}",
        role=role,  # type: ignore[arg-type]
        content=content,
        timestamp=timestamp or utc_now(),
    )


def messages_to_summarize(messages: list[Message], keep: int) -> list[Message]:
    """Return the prefix that falls outside the most recent ``keep`` messages."""

    if len(messages) <= keep:
        return []
    return messages[:-keep]


class MemoryManager:
    """Per-session conversation memory with threshold-triggered summarization."""

    def __init__(
        self,
        store: SessionStore,
        summarizer: Summarizer,
        limits: MemoryLimits,
        *,
        guard: Optional[CorruptionGuard] = None,
        events: Optional[MemoryEventLog] = None,
        summary_timeout_sec: float = 30,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._summarizer = summarizer
        self._limits = limits
        self._events = events or MemoryEventLog(clock=clock)
        self._guard = guard or CorruptionGuard(store, events=self._events, clock=clock)
        self._summary_timeout = summary_timeout_sec
        self._clock = clock

    @property
    def limits(self) -> MemoryLimits:
        return self._limits

    @property
    def summarizer(self) -> Summarizer:
        return self._summarizer

    async def add_message(self, session_id: str, message: Message) -> None:
        """Append ``message`` and compact the session when the threshold is reached.

        Summarization problems are logged and swallowed; only a failing store
        raises (``StorageError``).
        """

        if not is_valid_message(message):
            raise InvalidArgument(
                "message must have an id, a user/assistant role, text and a timestamp"
            )

        async with self._store.session_lock(session_id):
            record = self._load_for_write(session_id)
            record.messages.append(message)
            record.message_count += 1

            # Lifetime count: once crossed, every later message re-checks, and the
            # tail-length guard in _summarize makes the extra checks no-ops.
            if record.message_count >= self._limits.memory_threshold:
                await self._summarize(session_id, record)

            try:
                self._store.update(session_id, record)
            except InvalidSessionData as exc:
                self._events.error(
                    "add_message",
                    f"Rejected session update, recovering: {exc.reason}",
                    error_type="validation",
                    session_id=session_id,
                )
                self._reapply_after_recovery(session_id, message)

    async def get_context(self, session_id: str) -> ConversationContext:
        """Return summaries plus the recent-message window; empty on any failure."""

        try:
            record = self._store.get_or_create(session_id)
            if not self._guard.validate(record).valid:
                async with self._store.session_lock(session_id):
                    self._guard.detect_and_recover(session_id)
                record = self._store.get(session_id)
            recent = record.messages[-self._limits.recent_messages_limit:]
            return ConversationContext(
                summaries=list(record.summaries),
                recent_messages=list(recent),
                total_messages=record.message_count,
            )
        except Exception as exc:  # noqa: BLE001
            self._events.error(
                "get_context",
                f"Context retrieval failed: {type(exc).__name__}",
                error_type="storage",
                session_id=session_id,
                exc=exc,
            )
            return ConversationContext.empty()

    @staticmethod
    def format_for_consumption(context: ConversationContext) -> str:
        """Render context as prompt text: summaries first, then recent messages."""

        parts: list[str] = []
        if context.summaries:
            parts.append("=== Previous conversation (summaries) ===")
            parts.extend(
                f"Summary {index}: {summary}"
                for index, summary in enumerate(context.summaries, start=1)
            )
            parts.append("")
        if context.recent_messages:
            parts.append("=== Recent messages ===")
            parts.extend(
                f"[{message.timestamp.strftime(TIMESTAMP_FORMAT)}] {message.role}: {message.content}"
                for message in context.recent_messages
            )
        return "\n".join(parts).rstrip("\n")

    async def clear_session(self, session_id: str) -> None:
        async with self._store.session_lock(session_id):
            self._store.clear(session_id)
        self._events.info("clear_session", "Cleared session", session_id=session_id)

    async def cleanup_inactive_sessions(self) -> CleanupResult:
        """Evict idle sessions, then enforce the session cap. Never raises."""

        inactive_removed = 0
        over_cap_removed = 0
        try:
            inactive_removed = self._store.evict_inactive(self._limits.session_timeout_hours)
            over_cap_removed = self._store.evict_over_cap(self._limits.max_sessions)
        except Exception as exc:  # noqa: BLE001
            self._events.error(
                "cleanup_inactive_sessions",
                f"Cleanup failed: {type(exc).__name__}",
                error_type="storage",
                exc=exc,
            )
        result = CleanupResult(inactive_removed, over_cap_removed)
        if result.total_removed:
            self._events.info(
                "cleanup_inactive_sessions",
                f"Cleanup completed - removed {inactive_removed} inactive sessions, "
                f"{over_cap_removed} for limit enforcement",
            )
        return result

    def has_session(self, session_id: str) -> bool:
        return self._store.has(session_id)

    def get_memory_stats(self) -> StoreStats:
        return self._store.stats()

    def summarization_stats(self, record: SessionRecord) -> SummarizationStats:
        keep = self._limits.recent_messages_limit
        return SummarizationStats(
            total_messages=record.message_count,
            messages_to_summarize=len(messages_to_summarize(record.messages, keep)),
            recent_messages=len(record.messages[-keep:]),
            summaries_count=len(record.summaries),
            needs_summarization=record.message_count >= self._limits.memory_threshold,
        )

    def _load_for_write(self, session_id: str) -> SessionRecord:
        record = self._store.get_or_create(session_id)
        if self._guard.validate(record).valid:
            return record
        report = self._guard.detect_and_recover(session_id)
        record = self._store.get(session_id)
        if not report.recovered or not self._guard.validate(record).valid:
            raise StorageError(f"Session {session_id} could not be recovered")
        return record

    def _reapply_after_recovery(self, session_id: str, message: Message) -> None:
        record = self._load_for_write(session_id)
        record.messages.append(message)
        record.message_count += 1
        try:
            self._store.update(session_id, record)
        except InvalidSessionData as exc:
            raise StorageError(
                f"Session {session_id} could not be persisted after recovery"
            ) from exc

    async def _summarize(self, session_id: str, record: SessionRecord) -> None:
        keep = self._limits.recent_messages_limit
        pending = messages_to_summarize(record.messages, keep)
        if not pending:
            return
        if not self._summarizer.is_available():
            self._events.warning(
                "summarize",
                "Summarization not available, keeping original messages",
                session_id=session_id,
            )
            return

        before = self.summarization_stats(record)
        try:
            summary = await asyncio.wait_for(
                self._summarizer.summarize(pending), timeout=self._summary_timeout
            )
        except asyncio.TimeoutError as exc:
            self._summary_failed(session_id, "timeout", "summarize call timed out", len(pending), exc)
            return
        except SummarizationUnavailable as exc:
            self._events.warning("summarize", exc.message, session_id=session_id)
            return
        except SummarizationFailed as exc:
            self._summary_failed(session_id, exc.category, exc.detail, len(pending), exc)
            return
        except Exception as exc:  # noqa: BLE001
            self._summary_failed(session_id, "unknown", type(exc).__name__, len(pending), exc)
            return

        if not isinstance(summary, str) or not summary.strip():
            self._events.warning(
                "summarize",
                "Empty summary generated, keeping original messages",
                session_id=session_id,
            )
            return

        record.summaries.append(summary.strip())
        record.messages = record.messages[-keep:]
        after = self.summarization_stats(record)
        self._events.info(
            "summarize",
            f"Summarized {before.messages_to_summarize} messages into {len(summary.strip())} characters",
            session_id=session_id,
        )
        logger.debug(
            "Summarization report for %s: before %d messages/%d summaries, "
            "after %d retained/%d summaries",
            session_id,
            before.total_messages,
            before.summaries_count,
            after.recent_messages,
            after.summaries_count,
        )

    def _summary_failed(
        self,
        session_id: str,
        category: str,
        detail: str,
        pending: int,
        exc: BaseException,
    ) -> None:
        self._events.error(
            "summarize",
            f"Summarization failed ({category}): {truncate_for_log(detail)}; "
            f"kept {pending} messages unsummarized",
            error_type="summarization",
            session_id=session_id,
            exc=exc,
        )
