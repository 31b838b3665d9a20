import asyncio

import fakeredis.aioredis as fakeredis
import pytest

from program_builder.log_store import LogStore

JOB_ID = "7c1d2e3f-4a5b-4c6d-8e7f-9a0b1c2d3e4f"


@pytest.fixture
async def log_store():
    client = fakeredis.FakeRedis(decode_responses=True)
    store = LogStore(client, poll_interval=0.05)
    yield store
    await client.aclose()


@pytest.mark.asyncio
async def test_append_and_tail(log_store):
    await log_store.register(JOB_ID)
    await log_store.append(JOB_ID, "Compiling hello\n")
    await log_store.append(JOB_ID, "Finished release\n")

    assert await log_store.tail(JOB_ID) == ["Compiling hello\n", "Finished release\n"]


@pytest.mark.asyncio
async def test_register_clears_previous_log(log_store):
    await log_store.append(JOB_ID, "old\n")
    await log_store.mark_complete(JOB_ID)

    await log_store.register(JOB_ID)

    assert await log_store.tail(JOB_ID) == []
    assert await log_store.is_complete(JOB_ID) is False


@pytest.mark.asyncio
async def test_stream_finished_log(log_store):
    await log_store.register(JOB_ID)
    for line in ("a\n", "b\n", "c\n"):
        await log_store.append(JOB_ID, line)
    await log_store.mark_complete(JOB_ID)

    lines = [line async for line in log_store.stream(JOB_ID)]
    assert lines == ["a\n", "b\n", "c\n"]

    tail = [line async for line in log_store.stream(JOB_ID, start_at=2)]
    assert tail == ["c\n"]


@pytest.mark.asyncio
async def test_stream_follows_live_build(log_store):
    await log_store.register(JOB_ID)
    await log_store.append(JOB_ID, "first\n")

    async def collect():
        return [line async for line in log_store.stream(JOB_ID)]

    reader = asyncio.create_task(collect())
    await asyncio.sleep(0.1)
    await log_store.append(JOB_ID, "second\n")
    await asyncio.sleep(0.1)
    await log_store.append(JOB_ID, "third\n")
    await log_store.mark_complete(JOB_ID)

    lines = await asyncio.wait_for(reader, timeout=5)
    assert lines == ["first\n", "second\n", "third\n"]
