"""Component task framework.

Each component runs an ordered list of idempotent tasks on every pass. The
default list only applies the component's objects.
"""

from .task import Task, TaskContext, TaskFailedError, TaskResult
from .runner import TaskRunner
from .apply_task import ApplyTask, set_controller_reference
from .health_task import HealthCheckTask

__all__ = [
    "Task",
    "TaskContext",
    "TaskFailedError",
    "TaskResult",
    "TaskRunner",
    "ApplyTask",
    "HealthCheckTask",
    "set_controller_reference",
]
