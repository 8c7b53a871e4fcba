"""Session state machine, timeout guard and supervised background runs."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from . import db, execution_log
from .analysis import AnalysisLLM, AnalysisPipeline
from .config import Settings, settings as default_settings
from .credentials import load_session_credentials
from .dispatcher import Dispatcher, DispatchSummary, SessionContext
from .engines import EngineAdapter, HttpEngineAdapter
from .errors import (
    ConfigurationError,
    SessionNotFoundError,
    SessionStateError,
    SessionTimeoutError,
)
from .events import ProgressSnapshot, ProgressStatus
from .execution_log import LogLevel
from .models import Project
from .notifier import Notifier
from .progress import ProgressBroadcaster
from .rate_limit import RetryController
from .strategy import generate_action_items
from .work import WorkList, load_work_list

logger = logging.getLogger(__name__)

StrategyHook = Callable[[str, str, Sequence[str]], Awaitable[Any]]


@dataclass(frozen=True)
class SessionOutcome:
    session_id: str
    status: str
    total: int
    success_count: int
    failed_count: int
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status,
            "total": self.total,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "error_message": self.error_message,
        }


class SessionLifecycleManager:
    """The only writer of session status.

    ``start`` validates preconditions, moves the session to running and
    hands the batch to a supervised task; the task's outcome decides the
    single terminal status.
    """

    def __init__(
        self,
        *,
        broadcaster: ProgressBroadcaster,
        adapter: EngineAdapter | None = None,
        pipeline: AnalysisPipeline | None = None,
        notifier: Notifier | None = None,
        retry: RetryController | None = None,
        strategy: StrategyHook | None = generate_action_items,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.broadcaster = broadcaster
        self.notifier = notifier or Notifier(self.settings)
        self.strategy = strategy
        self.dispatcher = Dispatcher(
            broadcaster=broadcaster,
            adapter=adapter or HttpEngineAdapter(self.settings),
            pipeline=pipeline,
            retry=retry or RetryController(self.settings),
            settings=self.settings,
        )
        self._tasks: dict[str, asyncio.Task[SessionOutcome]] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, *, broadcaster: ProgressBroadcaster | None = None
    ) -> SessionLifecycleManager:
        settings = settings or default_settings
        llm = AnalysisLLM(settings) if settings.analysis_enabled else None
        return cls(
            broadcaster=broadcaster or ProgressBroadcaster(settings),
            pipeline=AnalysisPipeline(llm),
            settings=settings,
        )

    def is_running(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def start(self, session_id: str) -> asyncio.Task[SessionOutcome]:
        if self.is_running(session_id):
            raise SessionStateError(f"Session {session_id} is already running")

        async with db.get_session() as session:
            record = await db.get_analysis_session(session, session_id)
            if record is None:
                raise SessionNotFoundError(session_id)
            if record.status != "pending":
                raise SessionStateError(
                    f"Session {session_id} is {record.status}; only pending sessions can start"
                )
            project = await db.get_project(session, record.project_id)
            if project is None:
                raise SessionStateError(f"Session {session_id} references a missing project")

        credentials = await load_session_credentials(project.user_id, self.settings.encryption_secret)
        if not credentials:
            await self._fail_configuration(
                session_id,
                project,
                ConfigurationError(
                    ConfigurationError.NO_CREDENTIALS,
                    "No usable API credentials configured; add a provider key before running analysis",
                ),
            )

        work = await load_work_list(project.id)
        if not work.engines:
            await self._fail_configuration(
                session_id,
                project,
                ConfigurationError(
                    ConfigurationError.NO_ENGINES,
                    "No active target engines; enable at least one engine before running analysis",
                ),
            )

        async with db.get_session() as session:
            await db.transition_session_status(session, session_id, "running")
            await db.update_session_counters(
                session, session_id, total_tasks=work.total, success_count=0, failed_count=0
            )

        await execution_log.info(
            session_id,
            f"Batch started: {len(work.queries)} queries x {len(work.engines)} engines = {work.total} tasks",
            details={
                "queries": len(work.queries),
                "engines": [e.name for e in work.engines],
                "providers_with_credentials": sorted(credentials),
                "total_tasks": work.total,
            },
        )

        ctx = SessionContext(
            session_id=session_id,
            project_id=project.id,
            brand_name=project.brand_name,
            competitors=tuple(project.competitors or ()),
            credentials=credentials,
        )
        task = asyncio.create_task(self._supervise(ctx, project.name, work), name=f"session-{session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(functools.partial(self._on_done, session_id))
        return task

    async def run(self, session_id: str) -> SessionOutcome:
        """Start a session and wait for its terminal outcome."""
        task = await self.start(session_id)
        return await task

    async def wait(self, session_id: str) -> SessionOutcome:
        task = self._tasks.get(session_id)
        if task is None:
            raise SessionStateError(f"Session {session_id} was not started by this manager")
        return await task

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _on_done(self, session_id: str, task: asyncio.Task[SessionOutcome]) -> None:
        # Finished tasks stay in _tasks so wait() can still collect the outcome.
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Supervisor for session %s crashed", session_id, exc_info=exc)

    async def _supervise(self, ctx: SessionContext, project_name: str, work: WorkList) -> SessionOutcome:
        summary = DispatchSummary(total=work.total)
        guard = asyncio.timeout(self.settings.session_timeout_seconds)
        try:
            async with guard:
                await self.dispatcher.run(ctx, work, summary)
        except TimeoutError:
            if not guard.expired():
                raise
            error = SessionTimeoutError(self.settings.session_timeout_seconds)
            return await self._fail(ctx, project_name, summary, str(error), reason="timeout")
        except asyncio.CancelledError:
            await self._fail(ctx, project_name, summary, "Batch execution was cancelled", reason="cancelled")
            raise
        except Exception as exc:
            logger.exception("Batch execution failed for session %s", ctx.session_id)
            return await self._fail(
                ctx, project_name, summary, f"Batch execution failed: {exc}", reason="error"
            )
        return await self._complete(ctx, project_name, summary)

    async def _complete(
        self, ctx: SessionContext, project_name: str, summary: DispatchSummary
    ) -> SessionOutcome:
        try:
            async with db.get_session() as session:
                await db.update_session_counters(
                    session,
                    ctx.session_id,
                    total_tasks=summary.total,
                    success_count=summary.success_count,
                    failed_count=summary.failed_count,
                )
                await db.transition_session_status(session, ctx.session_id, "completed")
        except Exception as exc:
            logger.exception("Could not mark session %s completed", ctx.session_id)
            return await self._fail(
                ctx, project_name, summary, f"Could not record session completion: {exc}", reason="error"
            )

        message = (
            f"Analysis complete: {summary.success_count} succeeded, "
            f"{summary.failed_count} failed of {summary.total}"
        )
        await self._audit(
            ctx.session_id,
            LogLevel.INFO,
            message,
            {
                "total_tasks": summary.total,
                "success_count": summary.success_count,
                "failed_count": summary.failed_count,
                "elapsed_seconds": round(summary.elapsed_seconds, 1),
            },
        )
        await self.broadcaster.publish_progress(
            ctx.session_id, self._terminal_snapshot(summary, ProgressStatus.COMPLETED, message)
        )
        await self._generate_strategy(ctx)
        await self.notifier.session_completed(
            project_name, summary.success_count, summary.failed_count, summary.total
        )
        return SessionOutcome(
            session_id=ctx.session_id,
            status="completed",
            total=summary.total,
            success_count=summary.success_count,
            failed_count=summary.failed_count,
        )

    async def _fail(
        self,
        ctx: SessionContext,
        project_name: str,
        summary: DispatchSummary,
        message: str,
        *,
        reason: str,
    ) -> SessionOutcome:
        try:
            async with db.get_session() as session:
                await db.update_session_counters(
                    session,
                    ctx.session_id,
                    total_tasks=summary.total,
                    success_count=summary.success_count,
                    failed_count=summary.failed_count,
                )
                await db.transition_session_status(
                    session, ctx.session_id, "failed", error_message=message
                )
        except Exception:
            # Observers still get the terminal event below.
            logger.exception("Could not mark session %s failed", ctx.session_id)

        await self._audit(
            ctx.session_id,
            LogLevel.ERROR,
            message,
            {
                "fatal": True,
                "reason": reason,
                "processed": summary.processed,
                "total_tasks": summary.total,
            },
        )
        await self.broadcaster.publish_error(ctx.session_id, message)
        await self.broadcaster.publish_progress(
            ctx.session_id, self._terminal_snapshot(summary, ProgressStatus.FAILED, message)
        )
        await self.notifier.session_failed(project_name, message)
        return SessionOutcome(
            session_id=ctx.session_id,
            status="failed",
            total=summary.total,
            success_count=summary.success_count,
            failed_count=summary.failed_count,
            error_message=message,
        )

    async def _fail_configuration(
        self, session_id: str, project: Project, error: ConfigurationError
    ) -> None:
        message = str(error)
        async with db.get_session() as session:
            await db.transition_session_status(session, session_id, "failed", error_message=message)

        await execution_log.error(session_id, message, details={"reason": error.reason})
        await self.broadcaster.publish_error(session_id, message)
        await self.broadcaster.publish_progress(
            session_id, self._terminal_snapshot(DispatchSummary(total=0), ProgressStatus.FAILED, message)
        )
        await self.notifier.session_failed(project.name, message)
        raise error

    async def _audit(
        self, session_id: str, level: LogLevel, message: str, details: dict[str, Any]
    ) -> None:
        try:
            await execution_log.append(session_id, level, message, details)
        except Exception:
            logger.exception("Could not write %s log entry for session %s", level, session_id)

    async def _generate_strategy(self, ctx: SessionContext) -> None:
        if self.strategy is None:
            return
        try:
            await self.strategy(ctx.session_id, ctx.brand_name, ctx.competitors)
        except Exception as exc:
            logger.warning("Strategic action generation failed for session %s: %s", ctx.session_id, exc)
            await execution_log.warning(
                ctx.session_id, "Strategic action generation failed", details={"error": str(exc)}
            )

    @staticmethod
    def _terminal_snapshot(
        summary: DispatchSummary, status: ProgressStatus, message: str
    ) -> ProgressSnapshot:
        return ProgressSnapshot(
            status=status,
            current_query=summary.processed,
            total_queries=summary.total,
            current_engine="",
            success_count=summary.success_count,
            failed_count=summary.failed_count,
            message=message,
        )
