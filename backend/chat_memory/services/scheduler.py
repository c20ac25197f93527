from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from chat_memory.memory.corruption_guard import CorruptionGuard
from chat_memory.memory.events import MemoryEventLog
from chat_memory.memory.manager import MemoryManager
from chat_memory.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulerStatus:
    name: str
    is_running: bool
    interval_minutes: float
    runs: int
    failures: int
    last_run_at: Optional[datetime]


class PeriodicTask(ABC):
    """Run ``_execute`` on a fixed interval in a background asyncio task.

    Runs never overlap: a run that is still in progress when another is
    requested causes the new one to be skipped. A failing run is logged and
    the schedule continues.
    """

    name = "periodic"

    def __init__(
        self,
        interval_minutes: float,
        *,
        run_immediately: bool = True,
        events: Optional[MemoryEventLog] = None,
    ) -> None:
        self._interval_minutes = interval_minutes
        self._run_immediately = run_immediately
        self._events = events or MemoryEventLog()
        self._task: Optional[asyncio.Task] = None
        self._run_lock = asyncio.Lock()
        self._runs = 0
        self._failures = 0
        self._last_run_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval_minutes(self) -> float:
        return self._interval_minutes

    async def start(self, interval_minutes: Optional[float] = None) -> bool:
        """Start the schedule; returns False when it is already running."""

        if self.is_running:
            self._events.warning(self.name, "Already running")
            return False
        if interval_minutes is not None:
            self._interval_minutes = interval_minutes
        self._task = asyncio.create_task(self._run_loop(), name=f"{self.name}-scheduler")
        self._events.info(self.name, f"Started with {self._interval_minutes} minute intervals")
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self._events.info(self.name, "Stopped")

    async def set_interval(self, minutes: float) -> None:
        """Change the period, restarting the timer when the schedule is running."""

        self._interval_minutes = minutes
        if self.is_running:
            await self.stop()
            await self.start()

    async def run_once(self) -> bool:
        """Execute one run now; returns False if skipped or failed."""

        if self._run_lock.locked():
            self._events.warning(self.name, "Previous run still in progress; skipping")
            return False
        async with self._run_lock:
            self._last_run_at = utc_now()
            try:
                await self._execute()
            except Exception as exc:  # noqa: BLE001
                self._failures += 1
                self._events.error(
                    self.name,
                    f"Scheduled run failed: {type(exc).__name__}: {exc}",
                    error_type="scheduler",
                    exc=exc,
                )
                return False
            self._runs += 1
            return True

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            name=self.name,
            is_running=self.is_running,
            interval_minutes=self._interval_minutes,
            runs=self._runs,
            failures=self._failures,
            last_run_at=self._last_run_at,
        )

    async def _run_loop(self) -> None:
        try:
            if self._run_immediately:
                await self.run_once()
            while True:
                await asyncio.sleep(self._interval_minutes * 60)
                await self.run_once()
        except asyncio.CancelledError:
            return

    @abstractmethod
    async def _execute(self) -> None:
        """One scheduled run; exceptions are counted as failures."""


class CleanupScheduler(PeriodicTask):
    """Periodically evict inactive sessions and enforce the session cap."""

    name = "cleanup"

    def __init__(
        self,
        manager: MemoryManager,
        interval_minutes: float = 60,
        *,
        run_immediately: bool = True,
        events: Optional[MemoryEventLog] = None,
    ) -> None:
        super().__init__(interval_minutes, run_immediately=run_immediately, events=events)
        self._manager = manager

    async def _execute(self) -> None:
        started = time.monotonic()
        result = await self._manager.cleanup_inactive_sessions()
        if result.total_removed:
            duration_ms = (time.monotonic() - started) * 1000
            self._events.info(
                self.name,
                f"Cleanup completed in {duration_ms:.0f}ms - removed {result.total_removed} sessions",
            )


class CorruptionSweepScheduler(PeriodicTask):
    """Periodically validate every stored session."""

    name = "corruption_sweep"

    def __init__(
        self,
        guard: CorruptionGuard,
        interval_minutes: float = 120,
        *,
        run_immediately: bool = False,
        events: Optional[MemoryEventLog] = None,
    ) -> None:
        super().__init__(interval_minutes, run_immediately=run_immediately, events=events)
        self._guard = guard

    async def _execute(self) -> None:
        summary = await self._guard.sweep_all()
        if summary.corrupted_sessions:
            logger.info(summary.format_report())
