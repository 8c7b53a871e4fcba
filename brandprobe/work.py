"""Flattens a project's queries and the active engines into an ordered work list."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from . import db
from .engines import map_engine_to_provider
from .models import QueryTask, TargetEngine


@dataclass(frozen=True)
class QuerySpec:
    id: str
    text: str
    generation_type: str = "template"


@dataclass(frozen=True)
class EngineSpec:
    id: str
    name: str
    provider: str | None


@dataclass(frozen=True)
class WorkItem:
    """One (engine, query) task with its position in the batch."""

    index: int  # 0-based position across the whole batch
    engine_index: int
    query_index: int
    engine: EngineSpec
    query: QuerySpec


@dataclass(frozen=True)
class WorkList:
    """Engine-major task list: every query for engine 0, then engine 1, ..."""

    queries: tuple[QuerySpec, ...]
    engines: tuple[EngineSpec, ...]

    @property
    def total(self) -> int:
        return len(self.queries) * len(self.engines)

    def __len__(self) -> int:
        return self.total

    def __iter__(self) -> Iterator[WorkItem]:
        index = 0
        for engine_index, engine in enumerate(self.engines):
            for query_index, query in enumerate(self.queries):
                yield WorkItem(
                    index=index,
                    engine_index=engine_index,
                    query_index=query_index,
                    engine=engine,
                    query=query,
                )
                index += 1

    def remaining_after_start_of(self, item: WorkItem) -> int:
        """Tasks not yet finished when item starts, item included."""
        left_this_engine = len(self.queries) - item.query_index
        later_engines = len(self.engines) - item.engine_index - 1
        return left_this_engine + len(self.queries) * later_engines


def query_spec(row: QueryTask) -> QuerySpec:
    return QuerySpec(id=row.id, text=row.query_text, generation_type=row.generation_type)


def engine_spec(row: TargetEngine) -> EngineSpec:
    return EngineSpec(
        id=row.id,
        name=row.name,
        provider=row.provider or map_engine_to_provider(row.name),
    )


def build_work_list(queries: list[QueryTask], engines: list[TargetEngine]) -> WorkList:
    return WorkList(
        queries=tuple(query_spec(q) for q in queries),
        engines=tuple(engine_spec(e) for e in engines),
    )


async def load_work_list(project_id: str) -> WorkList:
    """Collect the project's queries (insertion order) and all active engines."""
    async with db.get_session() as session:
        queries = await db.get_project_queries(session, project_id)
        engines = await db.get_active_engines(session)
    return build_work_list(queries, engines)
