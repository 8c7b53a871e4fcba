"""
Typed progress events streamed to session observers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class EventType(str, Enum):
    PROGRESS = "progress"
    ERROR = "error"


class ProgressStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PROGRESS = (ProgressStatus.COMPLETED, ProgressStatus.FAILED)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Latest known state of a session's batch."""

    status: ProgressStatus
    current_query: int
    total_queries: int
    current_engine: str
    success_count: int
    failed_count: int
    estimated_time_remaining: Optional[int] = None  # seconds
    message: Optional[str] = None
    rate_limit: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PROGRESS

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "currentQuery": self.current_query,
            "totalQueries": self.total_queries,
            "currentEngine": self.current_engine,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
        }
        if self.estimated_time_remaining is not None:
            data["estimatedTimeRemaining"] = self.estimated_time_remaining
        if self.message is not None:
            data["message"] = self.message
        if self.rate_limit is not None:
            data["rateLimit"] = self.rate_limit
        return data


@dataclass(frozen=True)
class SessionEvent:
    """One message delivered to observers of a session."""

    type: EventType
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def progress(cls, session_id: str, snapshot: ProgressSnapshot) -> SessionEvent:
        return cls(type=EventType.PROGRESS, session_id=session_id, data=snapshot.to_dict())

    @classmethod
    def error(cls, session_id: str, message: str) -> SessionEvent:
        return cls(type=EventType.ERROR, session_id=session_id, data={"message": message})

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())
