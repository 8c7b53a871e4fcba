import logging

import pytest

from brandprobe import execution_log
from brandprobe.execution_log import LogLevel

from conftest import seed


@pytest.mark.asyncio
async def test_entries_are_ordered_and_filterable(database) -> None:
    seeded = await seed()
    await execution_log.info(seeded.session_id, "started")
    await execution_log.warning(seeded.session_id, "retrying", {"attempt": 0})
    await execution_log.error(seeded.session_id, "failed", {"engine": "ChatGPT"})
    await execution_log.info(seeded.session_id, "finished")

    entries = await execution_log.list_entries(seeded.session_id)
    assert [e.message for e in entries] == ["started", "retrying", "failed", "finished"]

    errors = await execution_log.list_entries(seeded.session_id, LogLevel.ERROR)
    assert [(e.message, e.details) for e in errors] == [("failed", {"engine": "ChatGPT"})]


@pytest.mark.asyncio
async def test_entries_are_scoped_to_session(database) -> None:
    first = await seed()
    second = await seed()
    await execution_log.info(first.session_id, "only here")

    assert await execution_log.list_entries(second.session_id) == []


@pytest.mark.asyncio
async def test_unknown_level_rejected(database) -> None:
    seeded = await seed()
    with pytest.raises(ValueError):
        await execution_log.append(seeded.session_id, "debug", "nope")


@pytest.mark.asyncio
async def test_entries_mirror_to_python_logging(database, caplog) -> None:
    seeded = await seed()
    with caplog.at_level(logging.WARNING, logger="brandprobe.execution_log"):
        await execution_log.warning(seeded.session_id, "slow provider")

    assert "slow provider" in caplog.text
