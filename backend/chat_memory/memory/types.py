from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

Role = Literal["user", "assistant"]
VALID_ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Message:
    """One chat message; immutable once created."""

    id: str
    role: Role
    content: str
    timestamp: datetime


@dataclass
class SessionRecord:
    """Conversation state for one session.

    ``messages`` is the unsummarized tail, ``summaries`` covers everything
    older, oldest first. ``message_count`` is the lifetime number of messages
    ever added, so it exceeds ``len(messages)`` once a summary exists.
    """

    session_id: str
    messages: list[Message] = field(default_factory=list)
    summaries: list[str] = field(default_factory=list)
    message_count: int = 0
    last_activity: Optional[datetime] = None

    def copy(self) -> "SessionRecord":
        # Fields may hold arbitrary values on a corrupted record; only copy real lists.
        return SessionRecord(
            session_id=self.session_id,
            messages=_copy_list(self.messages),
            summaries=_copy_list(self.summaries),
            message_count=self.message_count,
            last_activity=self.last_activity,
        )


@dataclass(frozen=True)
class ConversationContext:
    summaries: list[str] = field(default_factory=list)
    recent_messages: list[Message] = field(default_factory=list)
    total_messages: int = 0

    @classmethod
    def empty(cls) -> "ConversationContext":
        return cls()


@dataclass(frozen=True)
class StoreStats:
    total_sessions: int
    total_messages: int
    total_summaries: int
    oldest_activity: Optional[datetime]
    newest_activity: Optional[datetime]


@dataclass(frozen=True)
class SummarizationStats:
    total_messages: int
    messages_to_summarize: int
    recent_messages: int
    summaries_count: int
    needs_summarization: bool


@dataclass
class ValidationReport:
    valid: bool
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class RepairResult:
    repaired: SessionRecord
    actions: list[str] = field(default_factory=list)


@dataclass
class CorruptionReport:
    session_id: str
    is_corrupted: bool = False
    issues: list[str] = field(default_factory=list)
    recovered: bool = False
    recovery_actions: list[str] = field(default_factory=list)


@dataclass
class SweepSummary:
    total_sessions: int
    corrupted_sessions: int
    recovered_sessions: int
    reports: list[CorruptionReport] = field(default_factory=list)

    def format_report(self) -> str:
        failed = [item for item in self.reports if item.is_corrupted and not item.recovered]
        lines = [
            "=== Session Corruption Report ===",
            f"Total Sessions: {self.total_sessions}",
            f"Corrupted Sessions: {self.corrupted_sessions}",
            f"Successfully Recovered: {self.recovered_sessions}",
            f"Failed Recoveries: {len(failed)}",
        ]
        if failed:
            lines.append("")
            lines.append("Failed Recovery Sessions:")
            lines.extend(f"  - {item.session_id}: {', '.join(item.issues)}" for item in failed)
        return "\n".join(lines)


def _copy_list(value: Any) -> Any:
    return list(value) if isinstance(value, list) else value
