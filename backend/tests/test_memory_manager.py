from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from chat_memory.core.config import MemoryLimits
from chat_memory.memory.errors import InvalidArgument, StorageError
from chat_memory.memory.manager import MemoryManager, create_message
from chat_memory.memory.session_store import SessionStore
from chat_memory.memory.types import ConversationContext, Message, SessionRecord

from conftest import (
    FailingSummarizer,
    SlowSummarizer,
    StubSummarizer,
    UnavailableSummarizer,
    make_message,
)


async def add_many(manager, session_id, count, start=1):
    for index in range(start, start + count):
        await manager.add_message(session_id, make_message(index))


@pytest.mark.anyio
async def test_context_holds_every_message_below_threshold(manager, summarizer):
    await add_many(manager, "s1", 5)

    context = await manager.get_context("s1")
    assert [message.id for message in context.recent_messages] == [
        f"msg_{index}" for index in range(1, 6)
    ]
    assert context.total_messages == 5
    assert context.summaries == []
    assert summarizer.calls == []


@pytest.mark.anyio
async def test_threshold_crossing_summarizes_older_messages(manager, summarizer, store):
    await add_many(manager, "s1", 10)

    record = store.get("s1")
    assert record.summaries == ["SUMMARY-1"]
    assert len(record.messages) == 6
    assert record.message_count == 10
    assert [message.id for message in summarizer.calls[0]] == [f"msg_{i}" for i in range(1, 5)]

    context = await manager.get_context("s1")
    assert context.summaries == ["SUMMARY-1"]
    assert [message.id for message in context.recent_messages] == [
        f"msg_{index}" for index in range(5, 11)
    ]
    assert context.total_messages == 10


@pytest.mark.anyio
async def test_every_message_past_threshold_is_accounted_for(manager, summarizer, store):
    await add_many(manager, "s1", 12)

    record = store.get("s1")
    assert [len(batch) for batch in summarizer.calls] == [4, 1, 1]
    assert record.summaries == ["SUMMARY-1", "SUMMARY-2", "SUMMARY-3"]
    assert len(record.messages) == 6
    summarized = sum(len(batch) for batch in summarizer.calls)
    assert summarized + len(record.messages) == record.message_count == 12


@pytest.mark.anyio
async def test_recent_window_never_exceeds_limit(make_manager):
    manager = make_manager(UnavailableSummarizer())
    for index in range(1, 16):
        await manager.add_message("s1", make_message(index))
        context = await manager.get_context("s1")
        assert len(context.recent_messages) <= manager.limits.recent_messages_limit


@pytest.mark.anyio
async def test_unavailable_summarizer_keeps_all_messages(make_manager, store, events):
    summarizer = UnavailableSummarizer()
    manager = make_manager(summarizer)

    await add_many(manager, "s2", 12)

    record = store.get("s2")
    assert record.summaries == []
    assert len(record.messages) == 12
    assert record.message_count == 12
    assert summarizer.calls == []
    assert events.events(operation="summarize", level="warning")


@pytest.mark.anyio
async def test_failing_summarizer_degrades_gracefully(make_manager, store, events):
    summarizer = FailingSummarizer(category="rate_limit")
    manager = make_manager(summarizer)

    await add_many(manager, "s1", 11)

    record = store.get("s1")
    assert record.summaries == []
    assert [message.id for message in record.messages] == [f"msg_{i}" for i in range(1, 12)]
    assert record.message_count == 11
    # Each add past the threshold retries the whole unsummarized prefix.
    assert [len(batch) for batch in summarizer.calls] == [4, 5]

    failures = events.events(operation="summarize", error_type="summarization")
    assert len(failures) == 2
    assert "rate_limit" in failures[0].message


@pytest.mark.anyio
async def test_slow_summarizer_times_out(make_manager, store, events):
    manager = make_manager(SlowSummarizer(delay=1), summary_timeout_sec=0.05)

    await add_many(manager, "s1", 10)

    record = store.get("s1")
    assert record.summaries == []
    assert len(record.messages) == 10
    failures = events.events(error_type="summarization")
    assert failures and "timeout" in failures[0].message


@pytest.mark.anyio
async def test_empty_summary_keeps_messages(make_manager, store):
    class BlankSummarizer(StubSummarizer):
        async def summarize(self, messages) -> str:
            return "   "

    manager = make_manager(BlankSummarizer())
    await add_many(manager, "s1", 10)

    record = store.get("s1")
    assert record.summaries == []
    assert len(record.messages) == 10


@pytest.mark.anyio
async def test_clear_session_behaves_like_new_session(manager, store):
    await add_many(manager, "s1", 10)
    assert store.get("s1").summaries

    await manager.clear_session("s1")

    assert await manager.get_context("s1") == ConversationContext.empty()

    await manager.add_message("s1", make_message(100))
    context = await manager.get_context("s1")
    assert context.total_messages == 1
    assert context.summaries == []
    assert [message.id for message in context.recent_messages] == ["msg_100"]


@pytest.mark.anyio
async def test_sessions_are_isolated(manager):
    await add_many(manager, "a", 3)
    await add_many(manager, "b", 2, start=10)

    context_a = await manager.get_context("a")
    context_b = await manager.get_context("b")
    assert context_a.total_messages == 3
    assert [message.id for message in context_b.recent_messages] == ["msg_10", "msg_11"]


@pytest.mark.anyio
async def test_concurrent_adds_to_one_session_lose_nothing(make_manager, store):
    summarizer = SlowSummarizer(delay=0.01)
    manager = make_manager(summarizer)
    messages = [make_message(index) for index in range(1, 21)]

    await asyncio.gather(*(manager.add_message("s1", message) for message in messages))

    record = store.get("s1")
    assert record.message_count == 20
    assert len(record.messages) == 6
    summarized = [message.id for batch in summarizer.calls for message in batch]
    retained = [message.id for message in record.messages]
    assert summarized + retained == [message.id for message in messages]
    assert len(record.summaries) == len(summarizer.calls)


@pytest.mark.anyio
async def test_add_message_rejects_invalid_message(manager, store):
    bad = Message(id="msg_1", role="system", content="hi", timestamp=datetime.now(timezone.utc))
    with pytest.raises(InvalidArgument):
        await manager.add_message("s1", bad)
    assert not store.has("s1")


def test_create_message_validates_input():
    message = create_message("user", "hello")
    assert message.id.startswith("msg_")
    assert message.timestamp.tzinfo is not None

    with pytest.raises(InvalidArgument):
        create_message("system", "hello")
    with pytest.raises(InvalidArgument):
        create_message("user", "   ")


@pytest.mark.anyio
async def test_get_context_repairs_corrupted_record(clock, events, summarizer):
    backend: dict = {}
    store = SessionStore(backend=backend, clock=clock, events=events)
    manager = MemoryManager(store, summarizer, MemoryLimits(), events=events, clock=clock)
    good = make_message(1, clock)
    backend["s1"] = SessionRecord(
        session_id="s1",
        messages=[good, "garbage"],
        message_count=2,
        last_activity=clock(),
    )

    context = await manager.get_context("s1")

    assert context.recent_messages == [good]
    assert context.total_messages == 1
    assert events.events(operation="detect_and_recover")


@pytest.mark.anyio
async def test_add_message_recovers_corrupted_record(clock, events, summarizer):
    backend: dict = {}
    store = SessionStore(backend=backend, clock=clock, events=events)
    manager = MemoryManager(store, summarizer, MemoryLimits(), events=events, clock=clock)
    backend["s1"] = SessionRecord(session_id="s1", messages=None, last_activity=clock())

    await manager.add_message("s1", make_message(1, clock))

    record = store.get("s1")
    assert [message.id for message in record.messages] == ["msg_1"]
    assert record.message_count == 1


@pytest.mark.anyio
async def test_storage_failure_raises_on_write_and_degrades_on_read(clock, events, summarizer):
    class BrokenBackend(dict):
        def get(self, key, default=None):
            raise RuntimeError("disk unavailable")

    store = SessionStore(backend=BrokenBackend(), clock=clock, events=events)
    manager = MemoryManager(store, summarizer, MemoryLimits(), events=events, clock=clock)

    with pytest.raises(StorageError):
        await manager.add_message("s1", make_message(1))

    assert await manager.get_context("s1") == ConversationContext.empty()


def test_format_for_consumption_renders_summaries_then_messages():
    stamp = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    context = ConversationContext(
        summaries=["First part", "Second part"],
        recent_messages=[
            Message(id="m1", role="user", content="Hi", timestamp=stamp),
            Message(id="m2", role="assistant", content="Hello", timestamp=stamp),
        ],
        total_messages=12,
    )

    assert MemoryManager.format_for_consumption(context) == (
        "=== Previous conversation (summaries) ===\n"
        "Summary 1: First part\n"
        "Summary 2: Second part\n"
        "\n"
        "=== Recent messages ===\n"
        "[2025-03-04 05:06:07] user: Hi\n"
        "[2025-03-04 05:06:07] assistant: Hello"
    )
    assert MemoryManager.format_for_consumption(ConversationContext.empty()) == ""


@pytest.mark.anyio
async def test_cleanup_evicts_inactive_then_over_cap(make_manager, clock):
    manager = make_manager(
        StubSummarizer(),
        limits=MemoryLimits(
            memory_threshold=10, recent_messages_limit=6, session_timeout_hours=1, max_sessions=2
        ),
    )
    await manager.add_message("idle", make_message(1))
    clock.advance(hours=2)
    for session_id in ("a", "b", "c"):
        clock.advance(seconds=1)
        await manager.add_message(session_id, make_message(2))

    result = await manager.cleanup_inactive_sessions()

    assert (result.inactive_removed, result.over_cap_removed) == (1, 1)
    assert result.total_removed == 2
    assert not manager.has_session("idle")
    assert not manager.has_session("a")
    assert manager.get_memory_stats().total_sessions == 2


async def wait_for_summary_call(summarizer):
    while not summarizer.calls:
        await asyncio.sleep(0)


@pytest.mark.anyio
async def test_slow_summary_does_not_block_other_sessions(make_manager):
    summarizer = SlowSummarizer(delay=0.5)
    manager = make_manager(
        summarizer,
        limits=MemoryLimits(
            memory_threshold=3, recent_messages_limit=1, session_timeout_hours=24, max_sessions=10
        ),
    )
    await add_many(manager, "a", 2)
    pending = asyncio.create_task(manager.add_message("a", make_message(3)))
    await wait_for_summary_call(summarizer)

    await add_many(manager, "b", 2, start=10)
    context = await manager.get_context("b")

    assert not pending.done()
    assert [message.id for message in context.recent_messages] == ["msg_11"]
    await pending
    assert (await manager.get_context("a")).summaries == ["SUMMARY-1"]


@pytest.mark.anyio
async def test_cleanup_never_evicts_a_session_mid_summary(make_manager, store, clock):
    summarizer = SlowSummarizer(delay=0.05)
    manager = make_manager(
        summarizer,
        limits=MemoryLimits(
            memory_threshold=3, recent_messages_limit=1, session_timeout_hours=24, max_sessions=1
        ),
    )
    await add_many(manager, "a", 2)
    pending = asyncio.create_task(manager.add_message("a", make_message(3)))
    await wait_for_summary_call(summarizer)

    clock.advance(minutes=1)
    await manager.add_message("b", make_message(10))
    result = await manager.cleanup_inactive_sessions()
    await pending

    assert result.over_cap_removed == 1
    assert store.count() <= 1
    record = store.get("a")
    assert record.message_count == 3
    assert record.summaries == ["SUMMARY-1"]
