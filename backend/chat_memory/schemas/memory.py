from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from chat_memory.schemas.common import APIModel


class MessageCreateRequest(APIModel):
    """Payload for appending a message to a session."""

    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class MessageOut(APIModel):
    id: str
    role: str
    content: str
    timestamp: datetime


class MessageCreateResponse(APIModel):
    session_id: str
    message: MessageOut


class ContextResponse(APIModel):
    """Summaries and recent window of a session, plus the rendered prompt text."""

    session_id: str
    summaries: list[str]
    recent_messages: list[MessageOut]
    total_messages: int
    formatted: str


class ClearSessionRequest(APIModel):
    session_id: str = Field(min_length=1, max_length=200)


class PreviousStatsOut(APIModel):
    message_count: int
    summaries_count: int
    recent_messages_count: int


class ClearSessionResponse(APIModel):
    success: bool
    session_id: str
    message: str
    previous_stats: Optional[PreviousStatsOut] = Field(default=None)


class SessionInitResponse(APIModel):
    session_id: str
    is_new_session: bool
    created_at: datetime


class StatsResponse(APIModel):
    total_sessions: int
    total_messages: int
    total_summaries: int
    oldest_activity: Optional[datetime] = Field(default=None)
    newest_activity: Optional[datetime] = Field(default=None)


class SchedulerStatusOut(APIModel):
    name: str
    is_running: bool
    interval_minutes: float
    runs: int
    failures: int
    last_run_at: Optional[datetime] = Field(default=None)


class ConfigIssueOut(APIModel):
    level: str
    message: str


class HealthResponse(APIModel):
    """Error-rate health, configuration health and scheduler state."""

    healthy: bool
    error_rate: float
    issues: list[str]
    total_errors: int
    errors_by_type: dict[str, int]
    config_health: str
    config_issues: list[ConfigIssueOut]
    initialized: bool
    schedulers: list[SchedulerStatusOut]


class CorruptionReportOut(APIModel):
    session_id: str
    is_corrupted: bool
    issues: list[str]
    recovered: bool
    recovery_actions: list[str]


class SweepResponse(APIModel):
    total_sessions: int
    corrupted_sessions: int
    recovered_sessions: int
    reports: list[CorruptionReportOut]
