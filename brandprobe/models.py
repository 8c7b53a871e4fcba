"""SQLAlchemy models for brand-visibility analysis runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Identity,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid_pk() -> Mapped[str]:
    return mapped_column(Uuid(as_uuid=False), primary_key=True, default=lambda: str(uuid4()))


def _insert_order() -> Mapped[int | None]:
    # Orders rows that share a position. SQLite has no identity columns and leaves it NULL.
    return mapped_column(BigInteger, Identity(), nullable=True, index=True)


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONType,
        list[str]: JSONType,
        list[dict[str, Any]]: JSONType,
    }


# =============================================================================
# INPUTS (owned by project management, read-only here)
# =============================================================================


class Project(Base):
    """A brand being tracked across generative answer engines."""

    __tablename__ = "projects"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    brand_name: Mapped[str] = mapped_column(String, nullable=False)
    competitors: Mapped[list[str]] = mapped_column(JSONType, default=list)
    target_market: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    keywords: Mapped[list[Keyword]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )
    sessions: Mapped[list[AnalysisSession]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )


class Keyword(Base):
    """Seed keyword that query tasks are derived from."""

    __tablename__ = "keywords"

    id: Mapped[str] = _uuid_pk()
    project_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE")
    )
    keyword: Mapped[str] = mapped_column(String, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    insert_order: Mapped[int | None] = _insert_order()
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    project: Mapped[Project] = relationship(back_populates="keywords")
    queries: Mapped[list[QueryTask]] = relationship(
        back_populates="keyword", cascade="all, delete-orphan"
    )


class QueryTask(Base):
    """Natural-language query sent to every active engine."""

    __tablename__ = "query_tasks"

    id: Mapped[str] = _uuid_pk()
    keyword_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("keywords.id", ondelete="CASCADE")
    )
    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    generation_type: Mapped[str] = mapped_column(String, default="template")  # 'template', 'ai_creative'
    position: Mapped[int] = mapped_column(Integer, default=0)
    insert_order: Mapped[int | None] = _insert_order()
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    keyword: Mapped[Keyword] = relationship(back_populates="queries")


class TargetEngine(Base):
    """Generative answer engine under test."""

    __tablename__ = "target_engines"

    id: Mapped[str] = _uuid_pk()
    name: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str | None] = mapped_column(String, nullable=True)
    model_version: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    insert_order: Mapped[int | None] = _insert_order()
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Credential(Base):
    """Encrypted per-(user, provider) API key."""

    __tablename__ = "credentials"

    id: Mapped[str] = _uuid_pk()
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    provider: Mapped[str] = mapped_column(String, nullable=False)  # 'openai', 'perplexity', 'google'
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# =============================================================================
# SESSION-SCOPED OUTPUTS
# =============================================================================


class AnalysisSession(Base):
    """One batch run covering every query and active engine of a project."""

    __tablename__ = "analysis_sessions"

    id: Mapped[str] = _uuid_pk()
    project_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("projects.id", ondelete="CASCADE")
    )
    status: Mapped[str] = mapped_column(String, default="pending")
    total_tasks: Mapped[int] = mapped_column(Integer, default=0)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    project: Mapped[Project] = relationship(back_populates="sessions")
    responses: Mapped[list[EngineResponse]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )
    execution_logs: Mapped[list[ExecutionLog]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )
    action_items: Mapped[list[ActionItem]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )


class EngineResponse(Base):
    """Raw answer from one engine for one query."""

    __tablename__ = "engine_responses"

    id: Mapped[str] = _uuid_pk()
    session_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("analysis_sessions.id", ondelete="CASCADE")
    )
    query_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("query_tasks.id", ondelete="CASCADE")
    )
    engine_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("target_engines.id", ondelete="CASCADE")
    )
    raw_content: Mapped[str] = mapped_column(Text, nullable=False)
    citations: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    reliability_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reliability_confidence: Mapped[str | None] = mapped_column(String, nullable=True)
    reliability_issues: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    reliability_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped[AnalysisSession] = relationship(back_populates="responses")
    mentions: Mapped[list[BrandMention]] = relationship(
        back_populates="response", cascade="all, delete-orphan"
    )
    citation_sources: Mapped[list[CitationSource]] = relationship(
        back_populates="response", cascade="all, delete-orphan"
    )


class BrandMention(Base):
    """Brand signal extracted from a response."""

    __tablename__ = "brand_mentions"

    id: Mapped[str] = _uuid_pk()
    response_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("engine_responses.id", ondelete="CASCADE")
    )
    brand_name: Mapped[str] = mapped_column(String, nullable=False)
    sentiment_score: Mapped[int] = mapped_column(Integer, default=0)  # -100 to 100
    rank_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_sarcastic: Mapped[bool] = mapped_column(Boolean, default=False)
    recommendation_strength: Mapped[str | None] = mapped_column(String, nullable=True)
    mention_context: Mapped[str | None] = mapped_column(String, nullable=True)
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    llm_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    degraded: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    response: Mapped[EngineResponse] = relationship(back_populates="mentions")


class CitationSource(Base):
    """Classified citation URL attached to a response."""

    __tablename__ = "citation_sources"

    id: Mapped[str] = _uuid_pk()
    response_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("engine_responses.id", ondelete="CASCADE")
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String, nullable=False)
    source_type: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    response: Mapped[EngineResponse] = relationship(back_populates="citation_sources")


class ExecutionLog(Base):
    """Append-only audit trail for a session."""

    __tablename__ = "execution_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("analysis_sessions.id", ondelete="CASCADE")
    )
    level: Mapped[str] = mapped_column(String, nullable=False)  # 'info', 'warning', 'error'
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped[AnalysisSession] = relationship(back_populates="execution_logs")


class ActionItem(Base):
    """Strategic follow-up derived from a completed session."""

    __tablename__ = "action_items"

    id: Mapped[str] = _uuid_pk()
    session_id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False), ForeignKey("analysis_sessions.id", ondelete="CASCADE")
    )
    action_type: Mapped[str] = mapped_column(String, nullable=False)
    priority: Mapped[str] = mapped_column(String, nullable=False)  # 'high', 'medium', 'low'
    title: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    evidence: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped[AnalysisSession] = relationship(back_populates="action_items")
