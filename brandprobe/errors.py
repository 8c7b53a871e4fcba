"""Error types and helpers for batch execution."""

from __future__ import annotations

import re

import click


class BrandProbeError(Exception):
    """Base class for errors raised by this package."""


class SessionNotFoundError(BrandProbeError):
    """Raised when an analysis session does not exist."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Analysis session not found: {session_id}")
        self.session_id = session_id


class SessionStateError(BrandProbeError):
    """Raised on an illegal session status transition."""


class ConfigurationError(BrandProbeError):
    """Raised when a session cannot start because prerequisites are missing."""

    NO_CREDENTIALS = "no_credentials"
    NO_ENGINES = "no_engines"

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class ProviderError(BrandProbeError):
    """Raised by engine adapters when a provider call fails."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Rate limited or overloaded; worth retrying."""


class PermanentProviderError(ProviderError):
    """Bad request, auth failure or unsupported provider; never retried."""


class SessionTimeoutError(BrandProbeError):
    """Raised when a session exceeds its global execution ceiling."""

    def __init__(self, seconds: float) -> None:
        super().__init__(f"Session timed out after {seconds:g} seconds")
        self.seconds = seconds


class AnalysisError(BrandProbeError):
    """Soft failure inside the post-response analysis pipeline."""


class SchemaNotInitializedError(click.ClickException):
    """Raised when the database schema/migrations have not been applied."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        match = _PG_MISSING_RELATION_RE.search(str(e)) or _SQLITE_MISSING_TABLE_RE.search(str(e))
        if match:
            return match.group("table")
    return None


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""
    return "\n".join(
        [
            f"Database schema is not initialized{table_hint}.",
            "Run: `alembic upgrade head` or `brandprobe init-db`",
        ]
    )
