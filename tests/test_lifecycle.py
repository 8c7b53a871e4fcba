import asyncio

import pytest

from brandprobe import db, execution_log
from brandprobe.engines import EngineReply
from brandprobe.errors import (
    ConfigurationError,
    PermanentProviderError,
    SessionNotFoundError,
    SessionStateError,
)
from brandprobe.events import EventType

from conftest import seed


def drain(observer) -> list:
    events = []
    while (event := observer.get_nowait()) is not None:
        events.append(event)
    return events


async def session_record(session_id: str):
    async with db.get_session() as session:
        return await db.get_analysis_session(session, session_id)


@pytest.mark.asyncio
async def test_unknown_session_is_not_found(database, make_manager) -> None:
    manager = make_manager()
    with pytest.raises(SessionNotFoundError):
        await manager.start("00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_completed_run_counts_every_task(database, make_manager, broadcaster, notifier) -> None:
    seeded = await seed()
    manager = make_manager()
    observer = broadcaster.attach(seeded.session_id)

    outcome = await manager.run(seeded.session_id)

    assert outcome.status == "completed"
    assert outcome.success_count + outcome.failed_count == outcome.total == 4
    record = await session_record(seeded.session_id)
    assert record.status == "completed"
    assert record.completed_at is not None
    assert (record.success_count, record.failed_count, record.total_tasks) == (4, 0, 4)

    events = drain(observer)
    terminal = [e for e in events if e.data.get("status") in ("completed", "failed")]
    assert len(terminal) == 1
    assert terminal[0].data["status"] == "completed"
    assert notifier.sent and "completed" in notifier.sent[0][0].lower()

    async with db.get_session() as session:
        actions = await db.get_action_items(session, seeded.session_id)
    assert "video_content_gap" in {a.action_type for a in actions}


@pytest.mark.asyncio
async def test_partial_failure_still_completes(database, make_manager, adapter) -> None:
    seeded = await seed()
    adapter.script(
        "google",
        "best running shoes",
        PermanentProviderError("google", "google API error: 400 - invalid request"),
    )

    outcome = await make_manager().run(seeded.session_id)

    assert outcome.status == "completed"
    assert (outcome.success_count, outcome.failed_count) == (3, 1)
    assert outcome.success_count + outcome.failed_count == outcome.total


@pytest.mark.asyncio
async def test_no_active_engines_fails_immediately(database, make_manager, adapter, broadcaster, notifier) -> None:
    seeded = await seed(engines=())
    observer = broadcaster.attach(seeded.session_id)

    with pytest.raises(ConfigurationError) as exc_info:
        await make_manager().start(seeded.session_id)

    assert exc_info.value.reason == ConfigurationError.NO_ENGINES
    assert adapter.calls == []
    record = await session_record(seeded.session_id)
    assert record.status == "failed"
    assert record.error_message
    assert len(await execution_log.list_entries(seeded.session_id, "error")) >= 1
    assert notifier.sent

    events = drain(observer)
    assert events[0].type == EventType.ERROR
    assert events[-1].data["status"] == "failed"


@pytest.mark.asyncio
async def test_no_credentials_is_a_configuration_error(database, make_manager, adapter) -> None:
    seeded = await seed(credentials={})

    with pytest.raises(ConfigurationError) as exc_info:
        await make_manager().start(seeded.session_id)

    assert exc_info.value.reason == ConfigurationError.NO_CREDENTIALS
    assert adapter.calls == []
    record = await session_record(seeded.session_id)
    assert record.status == "failed"


@pytest.mark.asyncio
async def test_only_pending_sessions_start(database, make_manager) -> None:
    seeded = await seed()
    manager = make_manager()
    await manager.run(seeded.session_id)

    with pytest.raises(SessionStateError):
        await manager.start(seeded.session_id)


@pytest.mark.asyncio
async def test_timeout_fails_session(database, make_manager, adapter, broadcaster, test_settings) -> None:
    class HangingAdapter:
        async def call(self, provider: str, credential: str, query_text: str) -> EngineReply:
            await asyncio.sleep(60)
            return EngineReply(content="late")

    seeded = await seed()
    manager = make_manager(
        adapter=HangingAdapter(),
        settings=test_settings.model_copy(update={"session_timeout_seconds": 0.05}),
    )
    observer = broadcaster.attach(seeded.session_id)

    outcome = await manager.run(seeded.session_id)

    assert outcome.status == "failed"
    assert "timed out" in outcome.error_message
    record = await session_record(seeded.session_id)
    assert record.status == "failed"
    assert "timed out" in record.error_message

    errors = await execution_log.list_entries(seeded.session_id, "error")
    assert errors[-1].details["reason"] == "timeout"
    events = drain(observer)
    assert any(e.type == EventType.ERROR for e in events)
    assert events[-1].data["status"] == "failed"


@pytest.mark.asyncio
async def test_completion_write_failure_still_ends_session(
    database, make_manager, broadcaster, notifier, monkeypatch
) -> None:
    seeded = await seed()
    real_transition = db.transition_session_status

    async def refuse_completion(session, session_id, new_status, **kwargs):
        if new_status == "completed":
            raise RuntimeError("connection reset")
        return await real_transition(session, session_id, new_status, **kwargs)

    monkeypatch.setattr(db, "transition_session_status", refuse_completion)
    observer = broadcaster.attach(seeded.session_id)

    outcome = await make_manager().run(seeded.session_id)

    assert outcome.status == "failed"
    assert "connection reset" in outcome.error_message
    record = await session_record(seeded.session_id)
    assert record.status == "failed"
    assert broadcaster.is_terminated(seeded.session_id)
    events = drain(observer)
    assert events[-1].data["status"] == "failed"
    assert sum(1 for e in events if e.data.get("status") in ("completed", "failed")) == 1
    assert "failed" in notifier.sent[-1][0].lower()
