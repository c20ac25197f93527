from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chat_memory.api import memory as memory_api
from chat_memory.core.config import Settings, get_settings
from chat_memory.core.logging import setup_logging
from chat_memory.memory.summarizer import Summarizer
from chat_memory.services.memory_system import create_memory_system

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    summarizer: Optional[Summarizer] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    setup_logging(settings.log_level)

    memory_system = create_memory_system(settings, summarizer=summarizer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        result = await app.state.memory_system.start()
        if not result.success:
            logger.error("Memory system failed to start: %s", result.message)
        yield
        await app.state.memory_system.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.memory_system = memory_system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(memory_api.router)

    return app


app = create_app()
