"""HTTP, SSE and WebSocket surface for starting sessions and watching progress."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from . import __version__, db, execution_log
from .errors import ConfigurationError, SessionNotFoundError, SessionStateError
from .events import EventType, SessionEvent
from .execution_log import LogLevel
from .lifecycle import SessionLifecycleManager
from .progress import Observer, ProgressBroadcaster

logger = logging.getLogger(__name__)


class SessionStartResponse(BaseModel):
    session_id: str
    status: str


class SessionStatusResponse(BaseModel):
    session_id: str
    project_id: str
    status: str
    total_tasks: int
    success_count: int
    failed_count: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    running: bool = False
    progress: dict[str, Any] | None = None


class LogEntryResponse(BaseModel):
    id: int
    level: str
    message: str
    details: dict[str, Any] | None = None
    created_at: datetime | None = None


class ActionItemResponse(BaseModel):
    id: str
    action_type: str
    priority: str
    title: str
    description: str
    evidence: dict[str, Any] | None = None
    status: str


def _is_final(event: SessionEvent) -> bool:
    return event.type == EventType.PROGRESS and event.data.get("status") in ("completed", "failed")


def create_app(
    manager: SessionLifecycleManager,
    broadcaster: ProgressBroadcaster | None = None,
) -> FastAPI:
    broadcaster = broadcaster or manager.broadcaster

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await manager.shutdown()
        await broadcaster.close()

    app = FastAPI(
        title="brandprobe",
        description="Brand visibility batch execution engine",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(SessionNotFoundError)
    async def _not_found(request: Request, exc: SessionNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SessionStateError)
    async def _conflict(request: Request, exc: SessionStateError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def _misconfigured(request: Request, exc: ConfigurationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc), "reason": exc.reason})

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "brandprobe"}

    @app.post("/api/sessions/{session_id}/start", status_code=202, response_model=SessionStartResponse)
    async def start_session(session_id: str):
        """Kick off a pending session; progress is delivered over SSE or WebSocket."""
        await manager.start(session_id)
        return SessionStartResponse(session_id=session_id, status="running")

    @app.get("/api/sessions/{session_id}", response_model=SessionStatusResponse)
    async def session_status(session_id: str):
        async with db.get_session() as session:
            record = await db.get_analysis_session(session, session_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Session not found")
        snapshot = broadcaster.snapshot(session_id)
        return SessionStatusResponse(
            session_id=record.id,
            project_id=record.project_id,
            status=record.status,
            total_tasks=record.total_tasks,
            success_count=record.success_count,
            failed_count=record.failed_count,
            started_at=record.started_at,
            completed_at=record.completed_at,
            error_message=record.error_message,
            running=manager.is_running(session_id),
            progress=snapshot.to_dict() if snapshot else None,
        )

    @app.get("/api/sessions/{session_id}/logs", response_model=list[LogEntryResponse])
    async def session_logs(session_id: str, level: LogLevel | None = Query(default=None)):
        entries = await execution_log.list_entries(session_id, level)
        return [
            LogEntryResponse(
                id=e.id,
                level=e.level,
                message=e.message,
                details=e.details,
                created_at=e.created_at,
            )
            for e in entries
        ]

    @app.get("/api/sessions/{session_id}/actions", response_model=list[ActionItemResponse])
    async def session_actions(session_id: str):
        async with db.get_session() as session:
            items = await db.get_action_items(session, session_id)
        return [
            ActionItemResponse(
                id=i.id,
                action_type=i.action_type,
                priority=i.priority,
                title=i.title,
                description=i.description,
                evidence=i.evidence,
                status=i.status,
            )
            for i in items
        ]

    @app.get("/api/sessions/{session_id}/events")
    async def session_events(session_id: str):
        """SSE stream: replays the latest snapshot, then live events until the run ends."""
        observer = broadcaster.attach(session_id)

        async def event_generator():
            try:
                async for event in observer:
                    yield {"event": event.type.value, "data": json.dumps(event.data)}
                    if _is_final(event):
                        break
            finally:
                observer.detach()

        return EventSourceResponse(event_generator())

    @app.websocket("/api/ws/sessions/{session_id}")
    async def session_socket(websocket: WebSocket, session_id: str):
        await websocket.accept()
        observer = broadcaster.attach(session_id)
        sender = asyncio.create_task(_forward_events(websocket, observer))
        try:
            while True:
                message = await websocket.receive_json()
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_json(observer.heartbeat())
        except WebSocketDisconnect:
            logger.debug("Observer disconnected from session %s", session_id)
        finally:
            observer.detach()
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    return app


async def _forward_events(websocket: WebSocket, observer: Observer) -> None:
    async for event in observer:
        await websocket.send_json(event.to_dict())
