"""Sequential execution loop over a session's (engine, query) work list."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from . import db, execution_log
from .analysis import AnalysisPipeline
from .config import Settings, settings as default_settings
from .engines import EngineAdapter, EngineReply
from .errors import PermanentProviderError
from .events import ProgressSnapshot, ProgressStatus
from .progress import ProgressBroadcaster
from .rate_limit import RateLimitPolicy, RetryController
from .work import WorkItem, WorkList

logger = logging.getLogger(__name__)

UNKNOWN_PROVIDER = "unknown"


@dataclass(frozen=True)
class SessionContext:
    """Read-only inputs shared by every task of one session."""

    session_id: str
    project_id: str
    brand_name: str
    competitors: tuple[str, ...] = ()
    credentials: Mapping[str, str] = field(default_factory=dict, repr=False)


@dataclass
class DispatchSummary:
    total: int
    success_count: int = 0
    failed_count: int = 0
    elapsed_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return self.success_count + self.failed_count


def estimate_remaining_seconds(
    remaining_tasks: int,
    *,
    completed: int,
    elapsed_ms: float,
    assumed_task_ms: float,
    min_samples: int = 5,
) -> int:
    """ETA for the tasks still to run.

    Until min_samples tasks have finished, a theoretical per-task time is
    used; after that, the observed average.
    """
    if completed < min_samples or completed <= 0:
        per_task_ms = assumed_task_ms
    else:
        per_task_ms = elapsed_ms / completed
    return max(0, round(remaining_tasks * per_task_ms / 1000))


def _truncate(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class Dispatcher:
    """Drives every task of one session, one at a time.

    A task failure is logged and counted and never stops the batch; only
    cancellation (the session timeout) ends the loop early.
    """

    def __init__(
        self,
        *,
        broadcaster: ProgressBroadcaster,
        adapter: EngineAdapter,
        pipeline: AnalysisPipeline | None = None,
        retry: RetryController | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or default_settings
        self.broadcaster = broadcaster
        self.adapter = adapter
        self.pipeline = pipeline
        self.retry = retry or RetryController(self.settings)
        self._clock = clock

    async def run(
        self,
        ctx: SessionContext,
        work: WorkList,
        summary: DispatchSummary | None = None,
    ) -> DispatchSummary:
        """Run every task; pass summary to observe counters if the run is cancelled."""
        summary = summary or DispatchSummary(total=work.total)
        started = self._clock()

        for item in work:
            policy = self.retry.policy(item.engine.provider or UNKNOWN_PROVIDER)
            eta = estimate_remaining_seconds(
                work.remaining_after_start_of(item),
                completed=summary.processed,
                elapsed_ms=(self._clock() - started) * 1000,
                assumed_task_ms=self.settings.assumed_call_latency_ms + policy.inter_call_delay_ms,
                min_samples=self.settings.eta_min_samples,
            )
            await self._emit(
                ctx,
                item,
                summary,
                message=f"Querying {item.engine.name}: {_truncate(item.query.text)}",
                estimated_time_remaining=eta,
                rate_limit=policy.describe(),
            )

            try:
                reply = await self._call(ctx, item, policy)
                response_id = await self._store_response(ctx, item, reply)
            except Exception as exc:
                summary.failed_count += 1
                await self._bookkeep(ctx, item, summary, error=exc)
                await self._emit(ctx, item, summary, message=f"✗ Failed: {_truncate(item.query.text)}")
                await self.retry.pace(policy, floor_ms=self.settings.failure_recovery_delay_ms)
                continue

            await self._analyze(ctx, item, response_id, reply)
            summary.success_count += 1
            await self._bookkeep(ctx, item, summary)
            await self._emit(ctx, item, summary, message=f"✓ Done: {_truncate(item.query.text)}")
            await self.retry.pace(policy)

        summary.elapsed_seconds = self._clock() - started
        return summary

    async def _call(self, ctx: SessionContext, item: WorkItem, policy: RateLimitPolicy) -> EngineReply:
        provider = item.engine.provider
        if provider is None:
            raise PermanentProviderError(
                UNKNOWN_PROVIDER, f"No provider mapping for engine {item.engine.name!r}"
            )
        credential = ctx.credentials.get(provider)
        if not credential:
            raise PermanentProviderError(provider, f"No credential configured for provider {provider}")

        async def on_retry(attempt: int, error: BaseException, delay_ms: int) -> None:
            await execution_log.warning(
                ctx.session_id,
                f"Retrying {item.engine.name} after transient error "
                f"(attempt {attempt + 1}/{policy.max_retries}, waiting {delay_ms / 1000:g}s)",
                details={
                    "query_id": item.query.id,
                    "engine": item.engine.name,
                    "provider": provider,
                    "attempt": attempt,
                    "delay_ms": delay_ms,
                    "error": str(error),
                },
            )

        return await self.retry.call(
            policy,
            lambda: self.adapter.call(provider, credential, item.query.text),
            on_retry=on_retry,
        )

    async def _store_response(self, ctx: SessionContext, item: WorkItem, reply: EngineReply) -> str:
        async with db.get_session() as session:
            response = await db.create_engine_response(
                session,
                session_id=ctx.session_id,
                query_id=item.query.id,
                engine_id=item.engine.id,
                raw_content=reply.content,
                citations=[c.url for c in reply.citations],
            )
            return response.id

    async def _analyze(
        self, ctx: SessionContext, item: WorkItem, response_id: str, reply: EngineReply
    ) -> None:
        if self.pipeline is None:
            return
        try:
            outcome = await self.pipeline.process(
                response_id=response_id,
                query_text=item.query.text,
                content=reply.content,
                citations=[c.url for c in reply.citations],
                brand=ctx.brand_name,
                competitors=ctx.competitors,
            )
        except Exception as exc:
            logger.warning("Analysis failed for response %s: %s", response_id, exc)
            return
        if outcome.errors:
            logger.info("Analysis degraded for response %s: %s", response_id, outcome.errors)

    async def _bookkeep(
        self,
        ctx: SessionContext,
        item: WorkItem,
        summary: DispatchSummary,
        *,
        error: Exception | None = None,
    ) -> None:
        """Failure log entry and counter save; a storage error here never ends the batch."""
        try:
            if error is not None:
                await self._record_failure(ctx, item, error)
            await self._save_counters(ctx, summary)
        except Exception:
            logger.exception(
                "Bookkeeping failed for task %d of session %s", item.index + 1, ctx.session_id
            )

    async def _record_failure(self, ctx: SessionContext, item: WorkItem, error: Exception) -> None:
        logger.debug("Task %d failed", item.index + 1, exc_info=error)
        await execution_log.error(
            ctx.session_id,
            f"Query failed on {item.engine.name}: {_truncate(item.query.text)}",
            details={
                "task": item.index + 1,
                "query_id": item.query.id,
                "query_text": item.query.text,
                "engine_id": item.engine.id,
                "engine": item.engine.name,
                "provider": item.engine.provider,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )

    async def _save_counters(self, ctx: SessionContext, summary: DispatchSummary) -> None:
        async with db.get_session() as session:
            await db.update_session_counters(
                session,
                ctx.session_id,
                total_tasks=summary.total,
                success_count=summary.success_count,
                failed_count=summary.failed_count,
            )

    async def _emit(
        self,
        ctx: SessionContext,
        item: WorkItem,
        summary: DispatchSummary,
        *,
        message: str,
        estimated_time_remaining: int | None = None,
        rate_limit: str | None = None,
    ) -> None:
        await self.broadcaster.publish_progress(
            ctx.session_id,
            ProgressSnapshot(
                status=ProgressStatus.RUNNING,
                current_query=item.index + 1,
                total_queries=summary.total,
                current_engine=item.engine.name,
                success_count=summary.success_count,
                failed_count=summary.failed_count,
                estimated_time_remaining=estimated_time_remaining,
                message=message,
                rate_limit=rate_limit,
            ),
        )
