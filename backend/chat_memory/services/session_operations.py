from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from chat_memory.core.security import generate_unique_session_id, validate_session_id
from chat_memory.memory.errors import InvalidArgument
from chat_memory.memory.events import MemoryEventLog
from chat_memory.memory.manager import MemoryManager
from chat_memory.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviousSessionStats:
    message_count: int
    summaries_count: int
    recent_messages_count: int


@dataclass(frozen=True)
class SessionClearResult:
    success: bool
    session_id: str
    message: str
    previous_stats: Optional[PreviousSessionStats] = None


@dataclass(frozen=True)
class SessionInitResult:
    session_id: str
    is_new_session: bool
    created_at: datetime


class SessionOperations:
    """User-facing session actions built on the memory manager."""

    def __init__(self, manager: MemoryManager, *, events: Optional[MemoryEventLog] = None) -> None:
        self._manager = manager
        self._events = events or MemoryEventLog()

    async def clear_session_with_confirmation(self, session_id: str) -> SessionClearResult:
        """Clear a session and confirm that its context is empty afterwards.

        Raises ``InvalidArgument`` for a malformed id. A clear that cannot be
        verified is reported with ``success=False``.
        """

        validation = validate_session_id(session_id)
        if not validation.is_valid:
            raise InvalidArgument(f"Invalid session ID: {', '.join(validation.errors)}")

        previous: Optional[PreviousSessionStats] = None
        if self._manager.has_session(session_id):
            context = await self._manager.get_context(session_id)
            previous = PreviousSessionStats(
                message_count=context.total_messages,
                summaries_count=len(context.summaries),
                recent_messages_count=len(context.recent_messages),
            )

        await self._manager.clear_session(session_id)

        after = await self._manager.get_context(session_id)
        if after.total_messages or after.summaries or after.recent_messages:
            self._events.error(
                "clear_session_with_confirmation",
                "Session clear verification failed",
                error_type="session",
                session_id=session_id,
            )
            return SessionClearResult(
                success=False,
                session_id=session_id,
                message="Session clear verification failed",
                previous_stats=previous,
            )

        cleared = previous.message_count if previous else 0
        return SessionClearResult(
            success=True,
            session_id=session_id,
            message=f"Session cleared successfully. Removed {cleared} messages.",
            previous_stats=previous,
        )

    def initialize_new_session(self) -> SessionInitResult:
        session_id = generate_unique_session_id(self._manager.has_session)
        logger.debug("Initialized session id %s", session_id)
        return SessionInitResult(
            session_id=session_id,
            is_new_session=True,
            created_at=utc_now(),
        )
