"""Tests for the in-memory build registry."""
import asyncio

import pytest

from program_builder.errors import InvalidInput
from program_builder.models import BuildStatus
from program_builder.tracker import BuildTracker

JOB_ID = "9d3c2b1a-0f4e-4c6d-8a7b-1e2f3a4b5c6d"


@pytest.fixture
def tracker():
    return BuildTracker()


@pytest.mark.asyncio
async def test_register_is_visible_immediately(tracker):
    await tracker.register(JOB_ID, "hello")

    info = await tracker.get(JOB_ID)
    assert info is not None
    assert info.status == BuildStatus.building
    assert info.program_name == "hello"
    assert info.stderr is None
    assert info.completed_at is None


@pytest.mark.asyncio
async def test_get_unknown_job(tracker):
    assert await tracker.get(JOB_ID) is None


@pytest.mark.asyncio
async def test_complete_success(tracker):
    await tracker.register(JOB_ID, "hello-world")

    applied = await tracker.complete(JOB_ID, "Finished release\n", "hello_world", True)

    info = await tracker.get(JOB_ID)
    assert applied is True
    assert info.status == BuildStatus.success
    assert info.stderr == "Finished release\n"
    assert info.program_name == "hello_world"
    assert info.completed_at is not None
    assert info.completed_at >= info.started_at


@pytest.mark.asyncio
async def test_complete_failure(tracker):
    await tracker.register(JOB_ID, "hello")
    await tracker.complete(JOB_ID, "error[E0425]: cannot find value\n", "hello", False)

    info = await tracker.get(JOB_ID)
    assert info.status == BuildStatus.failed
    assert "E0425" in info.stderr


@pytest.mark.asyncio
async def test_complete_unknown_job_is_noop(tracker):
    assert await tracker.complete(JOB_ID, "", "hello", True) is False
    assert await tracker.get(JOB_ID) is None


@pytest.mark.asyncio
async def test_second_complete_is_ignored(tracker):
    await tracker.register(JOB_ID, "hello")
    await tracker.complete(JOB_ID, "first\n", "hello", False)

    applied = await tracker.complete(JOB_ID, "second\n", "hello", True)

    info = await tracker.get(JOB_ID)
    assert applied is False
    assert info.status == BuildStatus.failed
    assert info.stderr == "first\n"


@pytest.mark.asyncio
async def test_snapshot_is_not_mutated_by_completion(tracker):
    await tracker.register(JOB_ID, "hello")
    before = await tracker.get(JOB_ID)

    await tracker.complete(JOB_ID, "done\n", "hello", True)

    assert before.status == BuildStatus.building
    assert (await tracker.get(JOB_ID)).status == BuildStatus.success


@pytest.mark.asyncio
async def test_register_rejects_running_job(tracker):
    await tracker.register(JOB_ID, "hello")
    with pytest.raises(InvalidInput, match="already in progress"):
        await tracker.register(JOB_ID, "hello")


@pytest.mark.asyncio
async def test_register_reuses_finished_job(tracker):
    await tracker.register(JOB_ID, "hello")
    await tracker.complete(JOB_ID, "oops\n", "hello", False)

    await tracker.register(JOB_ID, "hello")

    info = await tracker.get(JOB_ID)
    assert info.status == BuildStatus.building
    assert info.stderr is None


@pytest.mark.asyncio
async def test_concurrent_jobs(tracker):
    ids = [f"00000000-0000-4000-8000-{i:012d}" for i in range(20)]
    await asyncio.gather(*(tracker.register(job_id, "p") for job_id in ids))
    await asyncio.gather(
        *(tracker.complete(job_id, "", "p", i % 2 == 0) for i, job_id in enumerate(ids))
    )

    statuses = [(await tracker.get(job_id)).status for job_id in ids]
    assert statuses.count(BuildStatus.success) == 10
    assert statuses.count(BuildStatus.failed) == 10
