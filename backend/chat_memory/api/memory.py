from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from chat_memory.core.security import sanitize_text, validate_session_id
from chat_memory.memory.errors import InvalidArgument, StorageError
from chat_memory.memory.manager import MemoryManager, create_message
from chat_memory.schemas.memory import (
    ClearSessionRequest,
    ClearSessionResponse,
    ConfigIssueOut,
    ContextResponse,
    HealthResponse,
    MessageCreateRequest,
    MessageCreateResponse,
    MessageOut,
    SchedulerStatusOut,
    SessionInitResponse,
    StatsResponse,
    SweepResponse,
)
from chat_memory.services.memory_system import MemorySystem, get_memory_system

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/memory", tags=["memory"])

MAX_CONTENT_LEN = 20000


@router.post("/sessions", response_model=SessionInitResponse)
async def initialize_session(
    system: MemorySystem = Depends(get_memory_system),
) -> SessionInitResponse:
    """Allocate a fresh, unused session id."""

    result = system.operations.initialize_new_session()
    return SessionInitResponse.model_validate(result)


@router.post("/clear", response_model=ClearSessionResponse)
async def clear_session(
    payload: ClearSessionRequest,
    system: MemorySystem = Depends(get_memory_system),
) -> ClearSessionResponse:
    """Clear a session and verify that nothing is left behind."""

    try:
        result = await system.operations.clear_session_with_confirmation(payload.session_id)
    except InvalidArgument as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message
        ) from exc
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message
        ) from exc
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.message
        )
    return ClearSessionResponse.model_validate(result)


@router.post("/{session_id}/messages", response_model=MessageCreateResponse)
async def add_message(
    session_id: str,
    payload: MessageCreateRequest,
    system: MemorySystem = Depends(get_memory_system),
) -> MessageCreateResponse:
    _require_valid_session_id(session_id)
    try:
        message = create_message(payload.role, sanitize_text(payload.content, MAX_CONTENT_LEN))
        await system.manager.add_message(session_id, message)
    except InvalidArgument as exc:
        raise HTTPException(
            status_code=422, detail=exc.message
        ) from exc
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message
        ) from exc
    return MessageCreateResponse(
        session_id=session_id, message=MessageOut.model_validate(message)
    )


@router.get("/{session_id}/context", response_model=ContextResponse)
async def get_context(
    session_id: str,
    system: MemorySystem = Depends(get_memory_system),
) -> ContextResponse:
    _require_valid_session_id(session_id)
    context = await system.manager.get_context(session_id)
    return ContextResponse(
        session_id=session_id,
        summaries=context.summaries,
        recent_messages=[MessageOut.model_validate(item) for item in context.recent_messages],
        total_messages=context.total_messages,
        formatted=MemoryManager.format_for_consumption(context),
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(system: MemorySystem = Depends(get_memory_system)) -> StatsResponse:
    try:
        stats = system.manager.get_memory_stats()
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message
        ) from exc
    return StatsResponse.model_validate(stats)


@router.get("/health", response_model=HealthResponse)
async def get_health(system: MemorySystem = Depends(get_memory_system)) -> HealthResponse:
    health = system.events.health()
    stats = system.events.stats()
    config = system.config_health()
    state = system.status()
    return HealthResponse(
        healthy=health.healthy,
        error_rate=health.error_rate,
        issues=health.issues,
        total_errors=stats.total_errors,
        errors_by_type=stats.errors_by_type,
        config_health=config.overall,
        config_issues=[ConfigIssueOut.model_validate(issue) for issue in config.issues],
        initialized=state.initialized,
        schedulers=[
            SchedulerStatusOut.model_validate(item)
            for item in (state.cleanup, state.corruption_sweep)
        ],
    )


@router.post("/maintenance/sweep", response_model=SweepResponse)
async def run_sweep(system: MemorySystem = Depends(get_memory_system)) -> SweepResponse:
    """Validate every stored session now, outside the regular schedule."""

    summary = await system.guard.sweep_all()
    logger.info(
        "Manual corruption sweep: %d sessions, %d corrupted",
        summary.total_sessions,
        summary.corrupted_sessions,
    )
    return SweepResponse.model_validate(summary)


def _require_valid_session_id(session_id: str) -> None:
    validation = validate_session_id(session_id)
    if not validation.is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid session ID: {', '.join(validation.errors)}",
        )
