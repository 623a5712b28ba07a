"""Task interfaces shared by every component task list."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any, TYPE_CHECKING

from appdef.applier import Applier, ApplyResult
from appdef.events import EventRecorder
from appdef.exceptions import AppDefException
from appdef.manifest import (
    ApplicationComponent,
    ApplicationDefinition,
    ComponentStatus,
    NamedResource,
)
from appdef.store import Store

if TYPE_CHECKING:
    from appdef.strategy import ComponentStrategy, StrategyRegistry

__all__ = [
    "TaskResult",
    "TaskFailedError",
    "TaskContext",
    "Task",
]


class TaskResult(StrEnum):
    """Outcome of executing a task in one pass."""

    COMPLETE = "Complete"
    """The task finished its work for this pass."""

    PENDING = "Pending"
    """The task is waiting on cluster state and the pass should requeue."""

    FAILED = "Failed"
    """The task hit an error that stops the remaining tasks."""

    SKIPPED = "Skipped"
    """The task had nothing to do."""


class TaskFailedError(AppDefException):
    """Raised by a task to fail with the underlying cause."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause))
        self.cause = cause


@dataclass
class TaskContext:
    """Shared state of one component while its tasks execute."""

    owner: ApplicationDefinition
    component: ApplicationComponent
    status: ComponentStatus
    """Mutable status entry of the component, updated by tasks."""

    config: Any
    """Decoded, type specific component configuration."""

    objects: dict[NamedResource, dict[str, Any]]
    """Desired objects built for this component."""

    apply_results: dict[NamedResource, ApplyResult]
    """Apply outcomes shared by all components of the pass."""

    applier: Applier
    strategy: "ComponentStrategy"
    registry: "StrategyRegistry"
    store: Store
    recorder: EventRecorder
    logger: logging.LoggerAdapter = field(
        default_factory=lambda: logging.LoggerAdapter(logging.getLogger(__name__))
    )


class Task(ABC):
    """A single idempotent step run for a component on every pass."""

    @property
    def name(self) -> str:
        """Return the name of the task used in logs."""
        return type(self).__name__

    @abstractmethod
    async def execute(self, ctx: TaskContext) -> TaskResult:
        """Execute the task.

        Raises:
            TaskFailedError: Or any other exception, to fail the task with
                the error as cause.
        """
