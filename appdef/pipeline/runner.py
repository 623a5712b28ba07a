"""Runs a component task list in order."""

from collections.abc import Iterable
import logging
import time

from appdef.exceptions import InternalError

from .task import Task, TaskContext, TaskFailedError, TaskResult

__all__ = ["TaskRunner"]

_LOGGER = logging.getLogger(__name__)


class TaskRunner:
    """Executes tasks sequentially, stopping at the first Pending or Failed."""

    async def run(
        self, ctx: TaskContext, tasks: Iterable[Task]
    ) -> tuple[TaskResult, Exception | None]:
        """Run the tasks against the context.

        Returns:
            The overall result and the cause when the result is Failed.
        """
        for task in tasks:
            start = time.monotonic()
            ctx.logger.debug("Executing task %s", task.name)
            try:
                result = await task.execute(ctx)
            except TaskFailedError as err:
                ctx.logger.debug("Task %s failed: %s", task.name, err.cause)
                return TaskResult.FAILED, err.cause
            except Exception as err:
                ctx.logger.debug("Task %s failed: %s", task.name, err)
                return TaskResult.FAILED, err
            ctx.logger.debug(
                "Task %s finished with %s in %.3fs",
                task.name,
                result,
                time.monotonic() - start,
            )

            if result == TaskResult.FAILED:
                err = InternalError(
                    f"task {task.name} reported status Failed but returned no error"
                )
                _LOGGER.error("Task execution inconsistency: %s", err)
                return TaskResult.FAILED, err
            if not isinstance(result, TaskResult):
                err = InternalError(f"task {task.name} returned no result: {result!r}")
                _LOGGER.error("Task execution inconsistency: %s", err)
                return TaskResult.FAILED, err
            if result == TaskResult.PENDING:
                return TaskResult.PENDING, None
            if result == TaskResult.SKIPPED:
                ctx.logger.debug("Task %s skipped execution", task.name)

        return TaskResult.COMPLETE, None
