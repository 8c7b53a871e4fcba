"""Session-scoped fan-out of live batch progress."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from .config import Settings, settings as default_settings
from .events import ProgressSnapshot, SessionEvent
from .redis_client import get_redis_client

logger = logging.getLogger(__name__)

EventSink = Callable[[SessionEvent], Awaitable[None]]


class Observer:
    """A single subscriber; events are queued in emission order."""

    def __init__(self, session_id: str, broadcaster: ProgressBroadcaster) -> None:
        self.session_id = session_id
        self.last_heartbeat = time.monotonic()
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[SessionEvent | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: SessionEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> SessionEvent | None:
        """Next event, or None once the observer has been closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def get_nowait(self) -> SessionEvent | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def heartbeat(self) -> dict[str, str]:
        """Liveness only; has no effect on the batch."""
        self.last_heartbeat = time.monotonic()
        return {"type": "pong", "session_id": self.session_id}

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def detach(self) -> None:
        self._broadcaster.detach(self)

    def __aiter__(self) -> Observer:
        return self

    async def __anext__(self) -> SessionEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> Observer:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.detach()


@dataclass
class _Channel:
    observers: set[Observer] = field(default_factory=set)
    snapshot: ProgressSnapshot | None = None
    terminal: bool = False
    expiry: asyncio.TimerHandle | None = None


class ProgressBroadcaster:
    """Owns every session's latest snapshot and its observers.

    After a terminal snapshot the channel stops accepting progress and the
    snapshot is kept for ``retention_seconds`` so late or reconnecting
    observers still see the final state.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        retention_seconds: float | None = None,
        sinks: Iterable[EventSink] = (),
    ) -> None:
        self.settings = settings or default_settings
        self.retention_seconds = (
            retention_seconds
            if retention_seconds is not None
            else self.settings.progress_retention_seconds
        )
        self._channels: dict[str, _Channel] = {}
        self._sinks: list[EventSink] = list(sinks)

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def attach(self, session_id: str) -> Observer:
        channel = self._channels.setdefault(session_id, _Channel())
        observer = Observer(session_id, self)
        channel.observers.add(observer)
        if channel.snapshot is not None:
            observer.deliver(SessionEvent.progress(session_id, channel.snapshot))
        return observer

    def detach(self, observer: Observer) -> None:
        channel = self._channels.get(observer.session_id)
        observer.close()
        if channel is None:
            return
        channel.observers.discard(observer)
        self._drop_if_idle(observer.session_id)

    def snapshot(self, session_id: str) -> ProgressSnapshot | None:
        channel = self._channels.get(session_id)
        return channel.snapshot if channel else None

    def observer_count(self, session_id: str) -> int:
        channel = self._channels.get(session_id)
        return len(channel.observers) if channel else 0

    def is_terminated(self, session_id: str) -> bool:
        channel = self._channels.get(session_id)
        return bool(channel and channel.terminal)

    def heartbeat(self, observer: Observer) -> dict[str, str]:
        return observer.heartbeat()

    async def publish_progress(self, session_id: str, snapshot: ProgressSnapshot) -> bool:
        """Record and fan out a snapshot. Returns False if the session already ended."""
        channel = self._channels.setdefault(session_id, _Channel())
        if channel.terminal:
            logger.debug("Ignoring progress for finished session %s", session_id)
            return False

        channel.snapshot = snapshot
        if snapshot.is_terminal:
            channel.terminal = True
            self._schedule_expiry(session_id, channel)

        await self._fan_out(channel, SessionEvent.progress(session_id, snapshot))
        return True

    async def publish_error(self, session_id: str, message: str) -> None:
        """Session-level fatal error, distinct from per-task failures."""
        channel = self._channels.setdefault(session_id, _Channel())
        await self._fan_out(channel, SessionEvent.error(session_id, message))

    async def close(self) -> None:
        for session_id, channel in list(self._channels.items()):
            if channel.expiry is not None:
                channel.expiry.cancel()
            for observer in list(channel.observers):
                observer.close()
            del self._channels[session_id]

    async def _fan_out(self, channel: _Channel, event: SessionEvent) -> None:
        for observer in list(channel.observers):
            observer.deliver(event)
        for sink in self._sinks:
            try:
                await sink(event)
            except Exception as exc:
                logger.warning("Progress sink failed for session %s: %s", event.session_id, exc)

    def _schedule_expiry(self, session_id: str, channel: _Channel) -> None:
        if channel.expiry is not None:
            channel.expiry.cancel()
        loop = asyncio.get_running_loop()
        channel.expiry = loop.call_later(self.retention_seconds, self._expire, session_id)

    def _expire(self, session_id: str) -> None:
        channel = self._channels.get(session_id)
        if channel is None:
            return
        channel.snapshot = None
        channel.expiry = None
        self._drop_if_idle(session_id)

    def _drop_if_idle(self, session_id: str) -> None:
        channel = self._channels.get(session_id)
        if channel is None or channel.observers:
            return
        # Keep the channel while it still holds a retained snapshot or a live run.
        if channel.snapshot is not None and (channel.expiry is not None or not channel.terminal):
            return
        if channel.expiry is not None:
            channel.expiry.cancel()
        del self._channels[session_id]


class RedisProgressSink:
    """Publishes every event to Redis Pub/Sub for out-of-process observers."""

    def __init__(self, prefix: str = "channel:session") -> None:
        self.prefix = prefix

    async def __call__(self, event: SessionEvent) -> None:
        redis = get_redis_client()
        await redis.publish(f"{self.prefix}:{event.session_id}", event.to_json())


def build_broadcaster(settings: Settings | None = None) -> ProgressBroadcaster:
    settings = settings or default_settings
    broadcaster = ProgressBroadcaster(settings)
    if settings.redis_progress_enabled:
        broadcaster.add_sink(RedisProgressSink())
    return broadcaster
