"""Append-only execution log for analysis sessions."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Any

from sqlalchemy import select

from . import db
from .models import ExecutionLog

logger = logging.getLogger(__name__)


class LogLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


async def append(
    session_id: str,
    level: LogLevel | str,
    message: str,
    details: dict[str, Any] | None = None,
) -> ExecutionLog:
    """Write one entry in its own transaction so it survives later failures."""
    level = LogLevel(level)
    async with db.get_session() as session:
        entry = ExecutionLog(
            session_id=session_id,
            level=level.value,
            message=message,
            details=details,
        )
        session.add(entry)
        await session.flush()

    logger.log(_PY_LEVELS[level], "[session %s] %s", session_id, message)
    return entry


async def info(session_id: str, message: str, details: dict[str, Any] | None = None) -> ExecutionLog:
    return await append(session_id, LogLevel.INFO, message, details)


async def warning(
    session_id: str, message: str, details: dict[str, Any] | None = None
) -> ExecutionLog:
    return await append(session_id, LogLevel.WARNING, message, details)


async def error(session_id: str, message: str, details: dict[str, Any] | None = None) -> ExecutionLog:
    return await append(session_id, LogLevel.ERROR, message, details)


async def list_entries(session_id: str, level: LogLevel | str | None = None) -> list[ExecutionLog]:
    """Entries for a session in creation order, optionally filtered by level."""
    query = select(ExecutionLog).where(ExecutionLog.session_id == session_id)
    if level is not None:
        query = query.where(ExecutionLog.level == LogLevel(level).value)
    async with db.get_session() as session:
        result = await session.execute(query.order_by(ExecutionLog.id))
        return list(result.scalars().all())
