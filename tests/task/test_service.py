"""Tests for the TaskServiceImpl."""

import asyncio

import pytest

from appdef.task import task_service_context, get_task_service
from appdef.task.service import TaskServiceImpl


@pytest.fixture(name="service")
def service_fixture() -> TaskServiceImpl:
    """Fixture for creating a TaskServiceImpl instance."""
    return TaskServiceImpl()


async def test_block_till_done(service: TaskServiceImpl) -> None:
    """Test blocking until all tasks are done."""

    async def work(value: int) -> int:
        await asyncio.sleep(0.01)
        return value

    tasks = [service.create_task(work(i)) for i in range(3)]
    assert service.get_num_active_tasks() == 3

    await service.block_till_done()

    assert service.get_num_active_tasks() == 0
    assert [task.result() for task in tasks] == [0, 1, 2]


async def test_failed_task_removed(service: TaskServiceImpl) -> None:
    """Test that failed tasks stop being tracked."""

    async def failing() -> None:
        raise ValueError("Test error")

    task = service.create_task(failing())
    await service.block_till_done()

    assert service.get_num_active_tasks() == 0
    with pytest.raises(ValueError, match="Test error"):
        task.result()


async def test_background_task_not_awaited(service: TaskServiceImpl) -> None:
    """Test that block_till_done ignores long running background tasks."""
    event = asyncio.Event()

    async def forever() -> None:
        await event.wait()

    background = service.create_background_task(forever())
    await asyncio.wait_for(service.block_till_done(), timeout=1)
    assert not background.done()
    assert service.get_num_active_tasks() == 0

    background.cancel()
    await asyncio.sleep(0)
    assert background.cancelled()


async def test_keyed_task_reruns_when_dirty(service: TaskServiceImpl) -> None:
    """Test that requests for a running key collapse into one more run."""
    runs: list[str] = []
    gate = asyncio.Event()

    async def work() -> None:
        runs.append("run")
        await gate.wait()

    first = service.create_keyed_task("key", work)
    await asyncio.sleep(0)
    assert runs == ["run"]

    # Two requests while running result in exactly one more run
    assert service.create_keyed_task("key", work) is first
    assert service.create_keyed_task("key", work) is first

    gate.set()
    await first
    assert runs == ["run", "run"]

    # A finished key starts a new task
    second = service.create_keyed_task("key", work)
    assert second is not first
    await second
    assert runs == ["run", "run", "run"]


async def test_keyed_tasks_independent(service: TaskServiceImpl) -> None:
    """Test that different keys run concurrently."""
    started: list[str] = []
    gate = asyncio.Event()

    def factory(key: str):
        async def work() -> None:
            started.append(key)
            await gate.wait()

        return work

    a = service.create_keyed_task("a", factory("a"))
    b = service.create_keyed_task("b", factory("b"))
    await asyncio.sleep(0)
    assert sorted(started) == ["a", "b"]

    gate.set()
    await service.block_till_done()
    assert a.done() and b.done()


def test_task_service_context() -> None:
    """Test the task service installed by the context."""
    with task_service_context() as outer:
        assert get_task_service() is outer
        assert get_task_service() is get_task_service()

        existing = TaskServiceImpl()
        with task_service_context(existing) as inner:
            assert inner is existing
            assert get_task_service() is existing

        # The outer service is restored
        assert get_task_service() is outer
