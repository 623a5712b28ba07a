"""Event sinks for notifications emitted during a convergence pass.

Recording an event is fire-and-forget: recorders never raise and never block
the caller.
"""

from abc import ABC, abstractmethod
from enum import StrEnum
import logging
from typing import Any
import uuid

from .manifest import ApplicationDefinition
from .store import Store
from .task import get_task_service

__all__ = [
    "EventType",
    "EventRecorder",
    "LoggingEventRecorder",
    "StoreEventRecorder",
]

_LOGGER = logging.getLogger(__name__)


class EventType(StrEnum):
    """Severity of an event."""

    NORMAL = "Normal"
    WARNING = "Warning"


class EventRecorder(ABC):
    """Receives events about an ApplicationDefinition."""

    @abstractmethod
    def record(
        self,
        obj: ApplicationDefinition,
        event_type: EventType,
        reason: str,
        message: str,
        annotations: dict[str, str] | None = None,
    ) -> None:
        """Record an event about the object."""


class LoggingEventRecorder(EventRecorder):
    """Writes events to the log."""

    def record(
        self,
        obj: ApplicationDefinition,
        event_type: EventType,
        reason: str,
        message: str,
        annotations: dict[str, str] | None = None,
    ) -> None:
        level = logging.WARNING if event_type == EventType.WARNING else logging.INFO
        _LOGGER.log(
            level,
            "Event %s %s/%s: %s: %s",
            event_type,
            obj.namespace,
            obj.name,
            reason,
            message,
        )


class StoreEventRecorder(EventRecorder):
    """Writes events as Event objects into the store.

    The write happens in a task tracked by the task service so the caller is
    never blocked. Failures are logged.
    """

    def __init__(self, store: Store, source: str) -> None:
        """Initialize the StoreEventRecorder.

        Args:
            store: The store to write Event objects to.
            source: Name of the component reporting the events.
        """
        self._store = store
        self._source = source

    def _build_event(
        self,
        obj: ApplicationDefinition,
        event_type: EventType,
        reason: str,
        message: str,
        annotations: dict[str, str] | None,
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": f"{obj.name}.{uuid.uuid4().hex[:16]}",
            "namespace": obj.namespace,
        }
        if annotations:
            metadata["annotations"] = dict(annotations)
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": metadata,
            "involvedObject": {
                "apiVersion": obj.api_version,
                "kind": obj.kind,
                "namespace": obj.namespace,
                "name": obj.name,
                "uid": obj.uid,
            },
            "type": str(event_type),
            "reason": reason,
            "message": message,
            "source": {"component": self._source},
        }

    def record(
        self,
        obj: ApplicationDefinition,
        event_type: EventType,
        reason: str,
        message: str,
        annotations: dict[str, str] | None = None,
    ) -> None:
        try:
            event = self._build_event(obj, event_type, reason, message, annotations)
            get_task_service().create_task(self._write(event))
        except Exception:
            _LOGGER.exception("Failed to record event %s for %s", reason, obj.name)

    async def _write(self, event: dict[str, Any]) -> None:
        try:
            await self._store.create(event)
        except Exception as err:
            _LOGGER.warning(
                "Failed to write event %s: %s", event["metadata"]["name"], err
            )
