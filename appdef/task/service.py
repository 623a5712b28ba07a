"""Task tracking service for appdef.

The controller never awaits the work it dispatches directly. Convergence
passes, requeue timers and event writes are started through this service so
that they can be waited on in tests and cancelled on shutdown. Passes for the
same object are serialized by key.
"""

import asyncio
from collections.abc import Callable, Hashable
from functools import partial
import logging
from typing import Any, Coroutine, Set
from abc import ABC, abstractmethod

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []

CoroutineFactory = Callable[[], Coroutine[None, None, Any]]


class TaskService(ABC):
    """Starts and tracks asynchronous work."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Start a short lived task that `block_till_done` waits for."""

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Start a long running task, such as a watch loop or a timer.

        Background tasks are not waited for by `block_till_done`.
        """

    @abstractmethod
    def create_keyed_task(
        self,
        key: Hashable,
        factory: CoroutineFactory,
        name: str | None = None,
    ) -> asyncio.Task[Any]:
        """Run the coroutine returned by factory, at most one at a time per key.

        A request for a key whose task is still running marks the key dirty and
        returns the running task, which invokes the factory once more after
        the current run. Any number of such requests collapse into that single
        extra run.

        Args:
            key: Key serializing the work, e.g. a resource identity
            factory: Returns a new coroutine for each run

        Returns:
            The task running the work for the key
        """

    @abstractmethod
    async def block_till_done(self) -> None:
        """Wait for the tasks started so far, ignoring background tasks.

        Failures of the awaited tasks are logged, not raised.
        """

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Return the number of running tasks, ignoring background tasks."""


class TaskServiceImpl(TaskService):
    """TaskService backed by the running asyncio event loop."""

    def __init__(self) -> None:
        self._active_tasks: Set[asyncio.Task[Any]] = set()
        self._background_tasks: Set[asyncio.Task[Any]] = set()
        self._keyed_tasks: dict[Hashable, asyncio.Task[Any]] = {}
        self._dirty_keys: Set[Hashable] = set()

    def _track(
        self,
        task_set: Set[asyncio.Task[Any]],
        coro: Coroutine[None, None, Any],
        name: str | None,
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        task_set.add(task)
        task.add_done_callback(partial(self._task_done, task_set))
        return task

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        return self._track(self._active_tasks, coro, name)

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        return self._track(self._background_tasks, coro, name)

    def create_keyed_task(
        self,
        key: Hashable,
        factory: CoroutineFactory,
        name: str | None = None,
    ) -> asyncio.Task[Any]:
        running = self._keyed_tasks.get(key)
        if running is not None and not running.done():
            _LOGGER.debug("Task for %s is running, scheduling another run", key)
            self._dirty_keys.add(key)
            return running
        task = self.create_task(self._run_keyed(key, factory), name=name)
        self._keyed_tasks[key] = task
        return task

    async def _run_keyed(self, key: Hashable, factory: CoroutineFactory) -> None:
        try:
            while True:
                self._dirty_keys.discard(key)
                await factory()
                if key not in self._dirty_keys:
                    break
                _LOGGER.debug("Key %s changed while running, running again", key)
        finally:
            self._dirty_keys.discard(key)
            if self._keyed_tasks.get(key) is asyncio.current_task():
                del self._keyed_tasks[key]

    def _task_done(
        self, task_set: Set[asyncio.Task[Any]], task: asyncio.Task[Any]
    ) -> None:
        task_set.discard(task)
        if task.cancelled():
            return
        if (err := task.exception()) is not None:
            _LOGGER.error("Task %s failed: %s", task.get_name(), err)

    async def block_till_done(self) -> None:
        pending = list(self._active_tasks)
        if not pending:
            _LOGGER.debug("No active tasks to wait for")
            await asyncio.sleep(0)
            return
        _LOGGER.debug("Waiting for %d tasks to complete", len(pending))
        await asyncio.gather(*pending, return_exceptions=True)

    def get_num_active_tasks(self) -> int:
        return len(self._active_tasks)
