import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from chat_memory.core.config import MemoryLimits, Settings
from chat_memory.main import create_app
from chat_memory.memory.errors import SummarizationFailed
from chat_memory.memory.events import MemoryEventLog
from chat_memory.memory.manager import MemoryManager
from chat_memory.memory.session_store import SessionStore
from chat_memory.memory.types import Message

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock shared by the store, guard and event log."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class StubSummarizer:
    """Summarizer stub used to avoid external API calls in tests."""

    def __init__(self, text: str = "SUMMARY") -> None:
        self.text = text
        self.calls: list[list[Message]] = []

    def is_available(self) -> bool:
        return True

    async def summarize(self, messages) -> str:
        self.calls.append(list(messages))
        return f"{self.text}-{len(self.calls)}"


class FailingSummarizer(StubSummarizer):
    def __init__(self, category: str = "upstream") -> None:
        super().__init__()
        self.category = category

    async def summarize(self, messages) -> str:
        self.calls.append(list(messages))
        raise SummarizationFailed(self.category, "PROVIDER_UPSTREAM")


class UnavailableSummarizer(StubSummarizer):
    def is_available(self) -> bool:
        return False


class SlowSummarizer(StubSummarizer):
    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def summarize(self, messages) -> str:
        self.calls.append(list(messages))
        await asyncio.sleep(self.delay)
        return f"{self.text}-{len(self.calls)}"


def make_message(index: int, clock=None, role: str = None) -> Message:
    return Message(
        id=f"msg_{index}",
        role=role or ("user" if index % 2 else "assistant"),
        content=f"message {index}",
        timestamp=(clock or (lambda: START))(),
    )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events(clock):
    return MemoryEventLog(clock=clock)


@pytest.fixture
def store(clock, events):
    return SessionStore(clock=clock, events=events)


@pytest.fixture
def limits():
    return MemoryLimits(
        memory_threshold=10, recent_messages_limit=6, session_timeout_hours=24, max_sessions=1000
    )


@pytest.fixture
def summarizer():
    return StubSummarizer()


@pytest.fixture
def make_manager(store, events, clock, limits):
    def factory(summarizer, **kwargs) -> MemoryManager:
        kwargs.setdefault("events", events)
        kwargs.setdefault("clock", clock)
        return MemoryManager(store, summarizer, kwargs.pop("limits", limits), **kwargs)

    return factory


@pytest.fixture
def manager(make_manager, summarizer):
    return make_manager(summarizer)


@pytest.fixture
def settings():
    return Settings(_env_file=None, SUMMARY_PROVIDER="off", LOG_LEVEL="INFO")


@pytest.fixture
def app(settings):
    return create_app(settings, summarizer=StubSummarizer())


@pytest.fixture
async def client(app):
    await app.state.memory_system.start()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.memory_system.shutdown()
