"""The TaskService of the current context."""

import contextvars
import contextlib
from collections.abc import Generator

from .service import TaskService, TaskServiceImpl

__all__: list[str] = []

_current_service: contextvars.ContextVar[TaskService | None] = contextvars.ContextVar(
    "appdef_task_service", default=None
)


def get_task_service() -> TaskService:
    """Return the TaskService of the current context.

    A service is created and installed on first use.
    """
    if (service := _current_service.get()) is None:
        service = TaskServiceImpl()
        _current_service.set(service)
    return service


@contextlib.contextmanager
def task_service_context(
    service: TaskService | None = None,
) -> Generator[TaskService, None, None]:
    """Install a TaskService while the context is active.

    Contexts nest: leaving one restores the service that was installed
    before it was entered.
    """
    installed = service or TaskServiceImpl()
    token = _current_service.set(installed)
    try:
        yield installed
    finally:
        _current_service.reset(token)
