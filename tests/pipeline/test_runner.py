"""Tests for the task runner."""

from typing import Any

from appdef.exceptions import InternalError
from appdef.pipeline import Task, TaskContext, TaskFailedError, TaskResult, TaskRunner


class RecordingTask(Task):
    def __init__(self, result: Any, calls: list[str], name: str) -> None:
        self._result = result
        self._calls = calls
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def execute(self, ctx: TaskContext) -> TaskResult:
        self._calls.append(self._name)
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


async def test_all_complete(context: TaskContext) -> None:
    """Test a list where every task completes or skips."""
    calls: list[str] = []
    tasks = [
        RecordingTask(TaskResult.COMPLETE, calls, "one"),
        RecordingTask(TaskResult.SKIPPED, calls, "two"),
        RecordingTask(TaskResult.COMPLETE, calls, "three"),
    ]
    assert await TaskRunner().run(context, tasks) == (TaskResult.COMPLETE, None)
    assert calls == ["one", "two", "three"]


async def test_pending_stops(context: TaskContext) -> None:
    """Test that a pending task stops the remaining tasks."""
    calls: list[str] = []
    tasks = [
        RecordingTask(TaskResult.PENDING, calls, "one"),
        RecordingTask(TaskResult.COMPLETE, calls, "two"),
    ]
    assert await TaskRunner().run(context, tasks) == (TaskResult.PENDING, None)
    assert calls == ["one"]


async def test_failed_error_unwrapped(context: TaskContext) -> None:
    """Test that the cause of a TaskFailedError is returned."""
    calls: list[str] = []
    cause = ValueError("bad value")
    tasks = [
        RecordingTask(TaskFailedError(cause), calls, "one"),
        RecordingTask(TaskResult.COMPLETE, calls, "two"),
    ]
    result, err = await TaskRunner().run(context, tasks)
    assert result == TaskResult.FAILED
    assert err is cause
    assert calls == ["one"]


async def test_unexpected_exception(context: TaskContext) -> None:
    """Test that any exception fails the task list."""
    cause = RuntimeError("boom")
    result, err = await TaskRunner().run(context, [RecordingTask(cause, [], "one")])
    assert result == TaskResult.FAILED
    assert err is cause


async def test_failed_without_error(context: TaskContext) -> None:
    """Test a task reporting Failed without raising."""
    result, err = await TaskRunner().run(
        context, [RecordingTask(TaskResult.FAILED, [], "one")]
    )
    assert result == TaskResult.FAILED
    assert isinstance(err, InternalError)
    assert str(err) == "task one reported status Failed but returned no error"


async def test_missing_result(context: TaskContext) -> None:
    """Test a task returning no result."""
    result, err = await TaskRunner().run(context, [RecordingTask(None, [], "one")])
    assert result == TaskResult.FAILED
    assert isinstance(err, InternalError)
    assert "returned no result" in str(err)
