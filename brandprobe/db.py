"""Async database connection and operations for batch runs."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .config import settings
from .errors import (
    SchemaNotInitializedError,
    SessionStateError,
    missing_table_name,
    schema_not_initialized_message,
)
from .models import (
    ActionItem,
    AnalysisSession,
    Base,
    BrandMention,
    CitationSource,
    Credential,
    EngineResponse,
    Keyword,
    Project,
    QueryTask,
    TargetEngine,
)

# Legal status transitions: new status -> statuses it may be entered from.
SESSION_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "running": ("pending",),
    "completed": ("running",),
    "failed": ("pending", "running"),
}

TERMINAL_STATUSES = ("completed", "failed")


def create_engine_for(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(url, echo=False, pool_pre_ping=True)


# Create async engine and session factory
engine = create_engine_for(settings.async_database_url)
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


def configure(url: str) -> AsyncEngine:
    """Rebind the module-level engine (used by tests and the CLI)."""
    global engine, async_session_factory
    engine = create_engine_for(url)
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return engine


async def init_db() -> None:
    """Create all tables (for development/testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession]:
    """Async context manager for database sessions."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if isinstance(exc, SQLAlchemyError) and missing_table_name(exc):
                raise SchemaNotInitializedError(schema_not_initialized_message(exc)) from exc
            raise


# =============================================================================
# Session Operations
# =============================================================================


async def get_analysis_session(session: AsyncSession, session_id: str) -> AnalysisSession | None:
    result = await session.execute(select(AnalysisSession).where(AnalysisSession.id == session_id))
    return result.scalar_one_or_none()


async def create_analysis_session(session: AsyncSession, project: Project) -> AnalysisSession:
    """Create a pending session (normally done by the requesting collaborator)."""
    analysis_session = AnalysisSession(project_id=project.id, status="pending")
    session.add(analysis_session)
    await session.flush()
    return analysis_session


async def transition_session_status(
    session: AsyncSession,
    session_id: str,
    new_status: str,
    *,
    error_message: str | None = None,
) -> None:
    """Move a session along its one-directional state machine.

    The UPDATE is conditional on the current status, so a second terminal
    write (or any out-of-order write) matches no row and is rejected.
    """
    allowed_from = SESSION_TRANSITIONS.get(new_status)
    if allowed_from is None:
        raise SessionStateError(f"Unknown session status: {new_status}")

    now = datetime.now(UTC)
    values: dict[str, Any] = {"status": new_status}
    if new_status == "running":
        values["started_at"] = now
    if new_status in TERMINAL_STATUSES:
        values["completed_at"] = now
    if error_message:
        values["error_message"] = error_message

    result = await session.execute(
        update(AnalysisSession)
        .where(AnalysisSession.id == session_id, AnalysisSession.status.in_(allowed_from))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = await session.execute(
            select(AnalysisSession.status).where(AnalysisSession.id == session_id)
        )
        raise SessionStateError(
            f"Cannot move session {session_id} from {current.scalar_one_or_none()!r} to {new_status!r}"
        )


async def update_session_counters(
    session: AsyncSession,
    session_id: str,
    *,
    total_tasks: int,
    success_count: int,
    failed_count: int,
) -> None:
    await session.execute(
        update(AnalysisSession)
        .where(AnalysisSession.id == session_id)
        .values(total_tasks=total_tasks, success_count=success_count, failed_count=failed_count)
        .execution_options(synchronize_session=False)
    )


# =============================================================================
# Inputs
# =============================================================================


async def get_project(session: AsyncSession, project_id: str) -> Project | None:
    result = await session.execute(select(Project).where(Project.id == project_id))
    return result.scalar_one_or_none()


async def get_project_queries(session: AsyncSession, project_id: str) -> list[QueryTask]:
    """All query tasks under a project, in stable insertion order."""
    result = await session.execute(
        select(QueryTask)
        .join(Keyword, QueryTask.keyword_id == Keyword.id)
        .where(Keyword.project_id == project_id)
        .order_by(
            Keyword.position,
            Keyword.insert_order,
            Keyword.created_at,
            QueryTask.position,
            QueryTask.insert_order,
            QueryTask.created_at,
        )
    )
    return list(result.scalars().all())


async def get_active_engines(session: AsyncSession) -> list[TargetEngine]:
    result = await session.execute(
        select(TargetEngine)
        .where(TargetEngine.is_active.is_(True))
        .order_by(TargetEngine.position, TargetEngine.insert_order, TargetEngine.created_at)
    )
    return list(result.scalars().all())


async def get_active_credentials(session: AsyncSession, user_id: str) -> list[Credential]:
    result = await session.execute(
        select(Credential)
        .where(Credential.user_id == user_id, Credential.is_active.is_(True))
        .order_by(Credential.created_at)
    )
    return list(result.scalars().all())


# =============================================================================
# Outputs
# =============================================================================


async def create_engine_response(
    session: AsyncSession,
    *,
    session_id: str,
    query_id: str,
    engine_id: str,
    raw_content: str,
    citations: list[str] | None = None,
) -> EngineResponse:
    response = EngineResponse(
        session_id=session_id,
        query_id=query_id,
        engine_id=engine_id,
        raw_content=raw_content,
        citations=citations or None,
    )
    session.add(response)
    await session.flush()
    return response


async def get_engine_response(session: AsyncSession, response_id: str) -> EngineResponse | None:
    result = await session.execute(select(EngineResponse).where(EngineResponse.id == response_id))
    return result.scalar_one_or_none()


async def get_session_responses(session: AsyncSession, session_id: str) -> list[EngineResponse]:
    result = await session.execute(
        select(EngineResponse)
        .where(EngineResponse.session_id == session_id)
        .order_by(EngineResponse.created_at)
    )
    return list(result.scalars().all())


async def update_response_reliability(
    session: AsyncSession,
    response_id: str,
    *,
    score: int,
    confidence: str,
    issues: list[dict[str, Any]],
    summary: str | None,
) -> None:
    await session.execute(
        update(EngineResponse)
        .where(EngineResponse.id == response_id)
        .values(
            reliability_score=score,
            reliability_confidence=confidence,
            reliability_issues=issues,
            reliability_summary=summary,
        )
        .execution_options(synchronize_session=False)
    )


async def add_citation_sources(
    session: AsyncSession, response_id: str, rows: list[dict[str, str]]
) -> list[CitationSource]:
    sources = [CitationSource(response_id=response_id, **row) for row in rows]
    session.add_all(sources)
    await session.flush()
    return sources


async def add_brand_mentions(
    session: AsyncSession, response_id: str, rows: list[dict[str, Any]]
) -> list[BrandMention]:
    mentions = [BrandMention(response_id=response_id, **row) for row in rows]
    session.add_all(mentions)
    await session.flush()
    return mentions


async def get_session_mentions(session: AsyncSession, session_id: str) -> list[BrandMention]:
    result = await session.execute(
        select(BrandMention)
        .join(EngineResponse, BrandMention.response_id == EngineResponse.id)
        .where(EngineResponse.session_id == session_id)
    )
    return list(result.scalars().all())


async def get_session_citations(session: AsyncSession, session_id: str) -> list[CitationSource]:
    result = await session.execute(
        select(CitationSource)
        .join(EngineResponse, CitationSource.response_id == EngineResponse.id)
        .where(EngineResponse.session_id == session_id)
    )
    return list(result.scalars().all())


async def add_action_items(
    session: AsyncSession, session_id: str, items: list[dict[str, Any]]
) -> list[ActionItem]:
    rows = [ActionItem(session_id=session_id, **item) for item in items]
    session.add_all(rows)
    await session.flush()
    return rows


async def get_action_items(session: AsyncSession, session_id: str) -> list[ActionItem]:
    result = await session.execute(
        select(ActionItem).where(ActionItem.session_id == session_id).order_by(ActionItem.created_at)
    )
    return list(result.scalars().all())
