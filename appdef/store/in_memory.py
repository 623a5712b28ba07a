"""Module for in memory object store."""

import asyncio
import copy
from collections import defaultdict
from collections.abc import Callable, AsyncGenerator, Iterable
import datetime
from typing import Any, DefaultDict
import uuid

import logging

from appdef.manifest import NamedResource, object_id
from appdef.exceptions import (
    ConflictError,
    InvalidObjectError,
    ObjectNotFoundError,
)

from .store import Store, StoreEvent, StoreCallback


_LOGGER = logging.getLogger(__name__)

FieldPath = tuple[str, ...]

# Metadata maintained by the store itself and never owned by a field manager.
_SYSTEM_METADATA = frozenset(
    {
        "name",
        "namespace",
        "uid",
        "resourceVersion",
        "generation",
        "creationTimestamp",
        "deletionTimestamp",
        "managedFields",
    }
)
_IMMUTABLE_FIELDS: dict[str, list[FieldPath]] = {
    "Service": [("spec", "clusterIP")],
}


def _now() -> str:
    return datetime.datetime.now(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _field_paths(doc: dict[str, Any], prefix: FieldPath = ()) -> set[FieldPath]:
    """Return the leaf field paths set in the document.

    Lists are atomic and count as a single leaf.
    """
    paths: set[FieldPath] = set()
    for key, value in doc.items():
        path = prefix + (key,)
        if not prefix and key in ("apiVersion", "kind", "status"):
            continue
        if prefix == ("metadata",) and key in _SYSTEM_METADATA:
            continue
        if isinstance(value, dict) and value:
            paths |= _field_paths(value, path)
        else:
            paths.add(path)
    return paths


def _get_path(doc: dict[str, Any], path: FieldPath) -> Any:
    value: Any = doc
    for key in path:
        if not isinstance(value, dict) or key not in value:
            return None
        value = value[key]
    return value


def _delete_path(doc: dict[str, Any], path: FieldPath) -> None:
    parents = []
    value: Any = doc
    for key in path[:-1]:
        if not isinstance(value, dict) or key not in value:
            return
        parents.append((value, key))
        value = value[key]
    if isinstance(value, dict):
        value.pop(path[-1], None)
    # Drop parents left empty by the removal
    for parent, key in reversed(parents):
        if parent[key] == {}:
            del parent[key]


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> None:
    """Merge the overlay into base, recursing into mappings only."""
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


def _without_status(doc: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in doc.items() if k != "status"}


def _spec_changed(old: dict[str, Any], new: dict[str, Any]) -> bool:
    """Return True if anything other than metadata and status differs."""
    ignore = ("metadata", "status")
    return {k: v for k, v in old.items() if k not in ignore} != {
        k: v for k, v in new.items() if k not in ignore
    }


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are stored as documents keyed by NamedResource. The store assigns
    uids, resource versions and generations, tracks field ownership per field
    manager, and fires events to registered listeners on every change.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, dict[str, Any]] = {}
        self._managed: DefaultDict[NamedResource, dict[str, set[FieldPath]]] = (
            defaultdict(dict)
        )
        self._listeners: DefaultDict[StoreEvent, list[StoreCallback]] = defaultdict(
            list
        )
        self._resource_version = 0
        self._cluster_ip = 0

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _allocate_cluster_ip(self) -> str:
        self._cluster_ip += 1
        return f"10.96.{self._cluster_ip // 254}.{self._cluster_ip % 254 + 1}"

    def _lookup(self, resource_id: NamedResource) -> dict[str, Any]:
        if (obj := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(f"{resource_id.kind} {resource_id.namespaced_name} not found")
        return obj

    def _check_resource_version(
        self, resource_id: NamedResource, obj: dict[str, Any], live: dict[str, Any]
    ) -> None:
        requested = (obj.get("metadata") or {}).get("resourceVersion")
        current = live["metadata"]["resourceVersion"]
        if requested and requested != current:
            raise ConflictError(
                f"Operation cannot be fulfilled on {resource_id.kind} "
                f"{resource_id.namespaced_name}: the object has been modified; "
                "please apply your changes to the latest version and try again"
            )

    def _check_immutable(
        self, resource_id: NamedResource, live: dict[str, Any], new: dict[str, Any]
    ) -> None:
        for path in _IMMUTABLE_FIELDS.get(resource_id.kind, []):
            before = _get_path(live, path)
            after = _get_path(new, path)
            if before and after != before:
                raise InvalidObjectError(
                    f"{resource_id.kind} {resource_id.namespaced_name} is invalid: "
                    f"{'.'.join(path)}: field is immutable"
                )

    def _default_fields(self, resource_id: NamedResource, obj: dict[str, Any]) -> None:
        if resource_id.kind == "Service":
            spec = obj.setdefault("spec", {})
            if spec.get("type") != "ExternalName" and not spec.get("clusterIP"):
                spec["clusterIP"] = self._allocate_cluster_ip()

    def _validate(self, obj: dict[str, Any]) -> NamedResource:
        resource_id = object_id(obj)
        if resource_id.namespace is None and resource_id.kind not in (
            "Namespace",
            "ClusterRole",
            "ClusterRoleBinding",
            "PersistentVolume",
            "StorageClass",
        ):
            raise InvalidObjectError(
                f"{resource_id.kind} {resource_id.name} requires a namespace"
            )
        return resource_id

    def _insert(self, resource_id: NamedResource, obj: dict[str, Any]) -> dict[str, Any]:
        metadata = obj.setdefault("metadata", {})
        metadata["uid"] = str(uuid.uuid4())
        metadata["resourceVersion"] = self._next_resource_version()
        metadata["generation"] = 1
        metadata["creationTimestamp"] = _now()
        metadata.pop("deletionTimestamp", None)
        self._default_fields(resource_id, obj)
        self._objects[resource_id] = obj
        _LOGGER.debug("Created object %s", resource_id)
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, obj)
        return copy.deepcopy(obj)

    def _replace(
        self,
        resource_id: NamedResource,
        live: dict[str, Any],
        new: dict[str, Any],
        event: StoreEvent,
    ) -> dict[str, Any]:
        """Store `new` in place of `live` when anything changed."""
        if new == live:
            _LOGGER.debug("Object %s unchanged", resource_id)
            return copy.deepcopy(live)
        if _spec_changed(live, new):
            new["metadata"]["generation"] = live["metadata"].get("generation", 0) + 1
        new["metadata"]["resourceVersion"] = self._next_resource_version()
        self._objects[resource_id] = new
        _LOGGER.debug(
            "Updated object %s (resourceVersion=%s)",
            resource_id,
            new["metadata"]["resourceVersion"],
        )
        self._fire_event(event, resource_id, new)
        if new["metadata"].get("deletionTimestamp") and not new["metadata"].get(
            "finalizers"
        ):
            self._remove(resource_id)
        return copy.deepcopy(new)

    async def get(self, resource_id: NamedResource) -> dict[str, Any]:
        """Return a copy of the object."""
        return copy.deepcopy(self._lookup(resource_id))

    async def list(
        self,
        kind: str | None = None,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List objects, optionally filtered by kind, namespace and labels."""
        results = []
        for resource_id, obj in sorted(self._objects.items()):
            if kind is not None and resource_id.kind != kind:
                continue
            if namespace is not None and resource_id.namespace != namespace:
                continue
            if labels:
                obj_labels = obj["metadata"].get("labels") or {}
                if any(obj_labels.get(k) != v for k, v in labels.items()):
                    continue
            results.append(copy.deepcopy(obj))
        return results

    async def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Create a new object and return the stored copy."""
        resource_id = self._validate(obj)
        if resource_id in self._objects:
            raise ConflictError(
                f"{resource_id.kind} {resource_id.namespaced_name} already exists"
            )
        return self._insert(resource_id, copy.deepcopy(obj))

    async def apply(
        self, obj: dict[str, Any], field_manager: str, force: bool = False
    ) -> dict[str, Any]:
        """Declaratively apply the object, tracking the fields it sets."""
        resource_id = self._validate(obj)
        applied = _without_status(copy.deepcopy(obj))
        applied_paths = _field_paths(applied)
        managers = self._managed[resource_id]

        if (live := self._objects.get(resource_id)) is None:
            result = self._insert(resource_id, applied)
            managers.clear()
            managers[field_manager] = applied_paths
            return result

        conflicts = []
        for manager, paths in managers.items():
            if manager == field_manager:
                continue
            for path in paths & applied_paths:
                if _get_path(live, path) != _get_path(applied, path):
                    conflicts.append((manager, path))
        if conflicts and not force:
            raise ConflictError(
                f"Apply failed with {len(conflicts)} conflict(s): "
                + ", ".join(
                    f'conflict with "{manager}": .{".".join(path)}'
                    for manager, path in sorted(conflicts)
                )
            )

        new = copy.deepcopy(live)
        other_paths = set().union(
            *(paths for manager, paths in managers.items() if manager != field_manager)
        )
        for path in managers.get(field_manager, set()) - applied_paths - other_paths:
            _delete_path(new, path)
        _merge(new, applied)
        self._check_immutable(resource_id, live, new)
        result = self._replace(resource_id, live, new, StoreEvent.OBJECT_UPDATED)
        # Ownership only moves once the write is accepted.
        for manager, path in conflicts:
            managers[manager].discard(path)
        managers[field_manager] = applied_paths
        return result

    async def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the object, except its status."""
        resource_id = self._validate(obj)
        live = self._lookup(resource_id)
        self._check_resource_version(resource_id, obj, live)
        new = _without_status(copy.deepcopy(obj))
        if "status" in live:
            new["status"] = copy.deepcopy(live["status"])
        metadata = new.setdefault("metadata", {})
        for key in ("uid", "generation", "creationTimestamp", "deletionTimestamp"):
            if key in live["metadata"]:
                metadata[key] = live["metadata"][key]
            else:
                metadata.pop(key, None)
        metadata["resourceVersion"] = live["metadata"]["resourceVersion"]
        self._check_immutable(resource_id, live, new)
        return self._replace(resource_id, live, new, StoreEvent.OBJECT_UPDATED)

    async def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the status sub-document of the object."""
        resource_id = self._validate(obj)
        live = self._lookup(resource_id)
        self._check_resource_version(resource_id, obj, live)
        new = copy.deepcopy(live)
        new["status"] = copy.deepcopy(obj.get("status") or {})
        return self._replace(resource_id, live, new, StoreEvent.STATUS_UPDATED)

    async def delete(self, resource_id: NamedResource) -> None:
        """Request deletion of the object."""
        live = self._lookup(resource_id)
        metadata = live["metadata"]
        if metadata.get("finalizers"):
            if metadata.get("deletionTimestamp"):
                return
            new = copy.deepcopy(live)
            new["metadata"]["deletionTimestamp"] = _now()
            self._replace(resource_id, live, new, StoreEvent.OBJECT_UPDATED)
            return
        self._remove(resource_id)

    def _remove(self, resource_id: NamedResource) -> None:
        obj = self._objects.pop(resource_id)
        self._managed.pop(resource_id, None)
        _LOGGER.debug("Deleted object %s", resource_id)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, obj)
        uid = obj["metadata"].get("uid")
        for child_id in list(self._dependents(uid)):
            if child_id in self._objects:
                _LOGGER.debug("Garbage collecting %s owned by %s", child_id, resource_id)
                self._remove(child_id)

    def _dependents(self, uid: str | None) -> Iterable[NamedResource]:
        if not uid:
            return
        for child_id, child in self._objects.items():
            for ref in child["metadata"].get("ownerReferences") or ():
                if ref.get("uid") == uid:
                    yield child_id
                    break

    def add_listener(
        self,
        event: StoreEvent,
        callback: StoreCallback,
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a specific event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)

        if flush and event == StoreEvent.OBJECT_ADDED:
            _LOGGER.debug("Flushing objects for event type %s", event)
            for resource_id, obj in list(self._objects.items()):
                callback(event, resource_id, copy.deepcopy(obj))

        return remove

    def _fire_event(
        self, event: StoreEvent, resource_id: NamedResource, obj: dict[str, Any]
    ) -> None:
        for cb in list(self._listeners[event]):
            try:
                cb(event, resource_id, copy.deepcopy(obj))
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)

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
        queue: asyncio.Queue[tuple[StoreEvent, NamedResource, dict[str, Any]]] = (
            asyncio.Queue()
        )

        def callback(
            event: StoreEvent, resource_id: NamedResource, obj: dict[str, Any]
        ) -> None:
            if kind is None or resource_id.kind == kind:
                queue.put_nowait((event, resource_id, obj))

        removers = [
            self.add_listener(event, callback, flush=(event == StoreEvent.OBJECT_ADDED))
            for event in StoreEvent
        ]
        try:
            while True:
                yield await queue.get()
                queue.task_done()
        except asyncio.CancelledError:
            _LOGGER.debug("watch for kind '%s' cancelled.", kind)
            raise
        finally:
            _LOGGER.debug("Cleaning up listeners for watch (kind: %s)", kind)
            for remove in removers:
                remove()
