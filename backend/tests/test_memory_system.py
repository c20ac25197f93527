from __future__ import annotations

import pytest

from chat_memory.core.config import Settings
from chat_memory.memory.summarizer import LLMSummarizer, NullSummarizer
from chat_memory.services.memory_system import create_memory_system

from conftest import StubSummarizer


@pytest.mark.anyio
async def test_start_and_shutdown_manage_schedulers(settings):
    system = create_memory_system(settings, summarizer=StubSummarizer())

    result = await system.start()
    assert result.success
    assert "Summary provider is off, summarization will be disabled" in result.warnings
    status = system.status()
    assert status.initialized
    assert status.cleanup.is_running
    assert status.corruption_sweep.is_running
    assert status.cleanup.interval_minutes == 60
    assert status.corruption_sweep.interval_minutes == 120

    again = await system.start()
    assert again.success
    assert again.message == "Memory system already initialized"

    await system.shutdown()
    status = system.status()
    assert not status.initialized
    assert not status.cleanup.is_running
    assert not status.corruption_sweep.is_running


@pytest.mark.anyio
async def test_start_refuses_critical_configuration(settings):
    system = create_memory_system(settings, summarizer=StubSummarizer())
    # Bypasses the settings validators, which would otherwise fall back to defaults.
    system.settings = Settings.model_construct(
        memory_threshold=5, recent_messages_limit=4, max_sessions=0
    )

    result = await system.start()

    assert not result.success
    assert "Max sessions must be greater than 0" in result.message
    assert not system.status().cleanup.is_running


def test_factory_wires_configured_summarizer():
    off = create_memory_system(Settings(_env_file=None, SUMMARY_PROVIDER="off"))
    assert isinstance(off.summarizer, NullSummarizer)

    gemini = create_memory_system(
        Settings(_env_file=None, SUMMARY_PROVIDER="gemini", GEMINI_API_KEY="AIza" + "k" * 30)
    )
    assert isinstance(gemini.summarizer, LLMSummarizer)
    assert gemini.manager.summarizer is gemini.summarizer
    assert gemini.manager.limits.memory_threshold == 10
