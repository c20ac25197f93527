from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request

from chat_memory.core.config import Settings
from chat_memory.core.config_validator import (
    ConfigHealthCheck,
    config_health_check,
    generate_config_report,
)
from chat_memory.memory.corruption_guard import CorruptionGuard
from chat_memory.memory.events import MemoryEventLog
from chat_memory.memory.manager import MemoryManager
from chat_memory.memory.session_store import SessionStore
from chat_memory.memory.summarizer import Summarizer, create_summarizer
from chat_memory.services.scheduler import (
    CleanupScheduler,
    CorruptionSweepScheduler,
    SchedulerStatus,
)
from chat_memory.services.session_operations import SessionOperations

logger = logging.getLogger(__name__)


@dataclass
class StartResult:
    success: bool
    message: str
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SystemStatus:
    initialized: bool
    cleanup: SchedulerStatus
    corruption_sweep: SchedulerStatus
    total_errors: int
    healthy: bool


class MemorySystem:
    """Owns the memory components and their background maintenance."""

    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        events: MemoryEventLog,
        summarizer: Summarizer,
        guard: CorruptionGuard,
        manager: MemoryManager,
    ) -> None:
        self.settings = settings
        self.store = store
        self.events = events
        self.summarizer = summarizer
        self.guard = guard
        self.manager = manager
        self.operations = SessionOperations(manager, events=events)
        self.cleanup_scheduler = CleanupScheduler(
            manager,
            settings.cleanup_interval_minutes,
            run_immediately=True,
            events=events,
        )
        self.sweep_scheduler = CorruptionSweepScheduler(
            guard,
            settings.corruption_check_interval_minutes,
            run_immediately=False,
            events=events,
        )
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def start(self) -> StartResult:
        """Check the configuration and start both schedulers.

        A configuration with critical errors refuses to start; warnings are
        returned to the caller and logged.
        """

        if self._initialized:
            return StartResult(success=True, message="Memory system already initialized")

        health = self.config_health()
        if health.overall == "critical":
            errors = [issue.message for issue in health.issues if issue.level == "error"]
            logger.error("Memory system not started:\n%s", generate_config_report(self.settings))
            return StartResult(
                success=False,
                message=f"Critical configuration errors: {'; '.join(errors)}",
            )

        warnings = [issue.message for issue in health.issues if issue.level == "warning"]
        for warning in warnings:
            logger.warning("Memory configuration: %s", warning)

        await self.cleanup_scheduler.start()
        await self.sweep_scheduler.start()
        self._initialized = True
        logger.info(
            "Memory system started (threshold=%d, recent=%d, timeout=%dh, max_sessions=%d)",
            self.manager.limits.memory_threshold,
            self.manager.limits.recent_messages_limit,
            self.manager.limits.session_timeout_hours,
            self.manager.limits.max_sessions,
        )
        return StartResult(
            success=True,
            message="Memory system initialized successfully",
            warnings=warnings,
        )

    async def shutdown(self) -> None:
        await self.cleanup_scheduler.stop()
        await self.sweep_scheduler.stop()
        self._initialized = False
        logger.info("Memory system stopped")

    def config_health(self) -> ConfigHealthCheck:
        return config_health_check(self.settings)

    def status(self) -> SystemStatus:
        return SystemStatus(
            initialized=self._initialized,
            cleanup=self.cleanup_scheduler.status(),
            corruption_sweep=self.sweep_scheduler.status(),
            total_errors=self.events.stats().total_errors,
            healthy=self.events.health().healthy,
        )


def create_memory_system(
    settings: Settings,
    *,
    summarizer: Optional[Summarizer] = None,
    store: Optional[SessionStore] = None,
) -> MemorySystem:
    """Build a memory system from settings."""

    events = MemoryEventLog()
    store = store or SessionStore(events=events)
    summarizer = summarizer or create_summarizer(settings)
    guard = CorruptionGuard(store, events=events)
    manager = MemoryManager(
        store,
        summarizer,
        settings.memory_limits(),
        guard=guard,
        events=events,
        summary_timeout_sec=settings.summary_timeout_sec,
    )
    return MemorySystem(settings, store, events, summarizer, guard, manager)


def get_memory_system(request: Request) -> MemorySystem:
    """Dependency to access the memory system from app state."""

    return request.app.state.memory_system
