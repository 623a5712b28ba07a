"""Store module holding the objects the controller reads and writes."""

from abc import ABC, abstractmethod
from collections.abc import Callable, AsyncGenerator
from enum import Enum
from typing import Any, TYPE_CHECKING

from appdef.manifest import NamedResource


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_UPDATED = "object_updated"
    STATUS_UPDATED = "status_updated"
    OBJECT_DELETED = "object_deleted"


StoreCallback = Callable[[StoreEvent, NamedResource, dict[str, Any]], None]


class Store(ABC):
    """Abstract base class for an API server like object store.

    Objects are unstructured documents. Every write assigns a new
    `metadata.resourceVersion`, and writes that carry a stale resource
    version are rejected with `ConflictError`.
    """

    @abstractmethod
    async def get(self, resource_id: NamedResource) -> dict[str, Any]:
        """Return a copy of the object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def list(
        self,
        kind: str | None = None,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List objects, optionally filtered by kind, namespace and labels."""

    @abstractmethod
    async def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Create a new object and return the stored copy.

        Raises:
            ConflictError: If the object already exists.
            InvalidObjectError: If the object has no complete identity.
        """

    @abstractmethod
    async def apply(
        self, obj: dict[str, Any], field_manager: str, force: bool = False
    ) -> dict[str, Any]:
        """Declaratively apply the object, tracking the fields it sets.

        The fields present in `obj` become owned by `field_manager`. Fields
        previously owned by the same manager and absent from `obj` are
        removed. Setting a field owned by another manager to a different
        value is a conflict unless `force` transfers the ownership.

        Raises:
            ConflictError: On field ownership conflicts without `force`.
            InvalidObjectError: If the object is malformed or changes an
                immutable field.
        """

    @abstractmethod
    async def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the object, except its status.

        Raises:
            ConflictError: If `metadata.resourceVersion` is stale.
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the status sub-document of the object.

        Raises:
            ConflictError: If `metadata.resourceVersion` is stale.
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def delete(self, resource_id: NamedResource) -> None:
        """Request deletion of the object.

        Objects with finalizers are only marked with a deletion timestamp and
        are removed once their last finalizer is removed. Removing an object
        also removes the objects that name it as owner.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: StoreCallback,
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event.

        Returns a callable that can be called to remove the listener.
        """

    @abstractmethod
    async def watch(
        self, kind: str | None = None
    ) -> AsyncGenerator[tuple[StoreEvent, NamedResource, dict[str, Any]]]:
        """
        Watch for changes of objects of a specific kind.

        This is an asynchronous iterator that first yields every existing
        object as `OBJECT_ADDED`, then yields each change as it happens.

        Args:
            kind: The kind of resource to watch, or None for all kinds.

        Yields:
            A tuple of the event, the resource identity and a copy of the object.
        """
        if TYPE_CHECKING:
            yield None, None, None  # type: ignore[misc]
