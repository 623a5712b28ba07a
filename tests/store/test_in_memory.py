"""Tests for the in-memory store."""

import asyncio
from typing import Any

import pytest

from appdef.exceptions import ConflictError, InvalidObjectError, ObjectNotFoundError
from appdef.manifest import NamedResource
from appdef.store import InMemoryStore, StoreEvent


CM_ID = NamedResource("v1", "ConfigMap", "ns", "settings")


def configmap(data: dict[str, str], **metadata: Any) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "settings", "namespace": "ns", **metadata},
        "data": data,
    }


async def test_create_and_get(store: InMemoryStore) -> None:
    """Test creating and retrieving an object."""
    created = await store.create(configmap({"a": "1"}))
    metadata = created["metadata"]
    assert metadata["uid"]
    assert metadata["generation"] == 1
    assert metadata["resourceVersion"]
    assert metadata["creationTimestamp"]

    result = await store.get(CM_ID)
    assert result == created

    # The returned object is a copy
    result["data"]["a"] = "2"
    assert (await store.get(CM_ID))["data"] == {"a": "1"}

    with pytest.raises(ConflictError, match="already exists"):
        await store.create(configmap({"a": "1"}))


async def test_get_missing(store: InMemoryStore) -> None:
    """Test retrieving an object that does not exist."""
    with pytest.raises(ObjectNotFoundError, match="ConfigMap ns/settings not found"):
        await store.get(CM_ID)


async def test_namespace_required(store: InMemoryStore) -> None:
    """Test namespaced kinds are rejected without a namespace."""
    with pytest.raises(InvalidObjectError, match="requires a namespace"):
        await store.create(
            {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "x"}}
        )
    await store.create({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "x"}})
    assert await store.get(NamedResource("v1", "Namespace", None, "x"))


async def test_list(store: InMemoryStore) -> None:
    """Test listing objects with filters."""
    await store.create(configmap({}, labels={"app": "one"}))
    await store.create(
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {"name": "creds", "namespace": "ns", "labels": {"app": "two"}},
        }
    )
    await store.create(
        {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "b", "namespace": "other"}}
    )

    assert len(await store.list()) == 3
    assert [o["metadata"]["name"] for o in await store.list(kind="ConfigMap")] == [
        "settings",
        "b",
    ]
    assert [o["metadata"]["name"] for o in await store.list(namespace="ns")] == [
        "settings",
        "creds",
    ]
    assert [
        o["metadata"]["name"] for o in await store.list(labels={"app": "two"})
    ] == ["creds"]


async def test_update_resource_version(store: InMemoryStore) -> None:
    """Test optimistic concurrency on update."""
    created = await store.create(configmap({"a": "1"}))

    created["data"] = {"a": "2"}
    updated = await store.update(created)
    assert updated["data"] == {"a": "2"}
    assert updated["metadata"]["generation"] == 2
    assert updated["metadata"]["resourceVersion"] != created["metadata"]["resourceVersion"]

    # Writing with the stale version conflicts
    created["data"] = {"a": "3"}
    with pytest.raises(ConflictError, match="the object has been modified"):
        await store.update(created)


async def test_update_metadata_keeps_generation(store: InMemoryStore) -> None:
    """Test metadata only changes do not bump the generation."""
    created = await store.create(configmap({"a": "1"}))
    created["metadata"]["labels"] = {"x": "y"}
    updated = await store.update(created)
    assert updated["metadata"]["generation"] == 1
    assert updated["metadata"]["labels"] == {"x": "y"}


async def test_update_status(store: InMemoryStore) -> None:
    """Test the status sub-document is written separately."""
    created = await store.create(configmap({"a": "1"}))
    created["status"] = {"phase": "Ready"}
    created["data"] = {"a": "changed"}
    updated = await store.update_status(created)
    assert updated["status"] == {"phase": "Ready"}
    assert updated["data"] == {"a": "1"}
    assert updated["metadata"]["generation"] == 1

    # Status is preserved by a regular update
    updated["data"] = {"a": "2"}
    updated["status"] = {"phase": "Ignored"}
    result = await store.update(updated)
    assert result["status"] == {"phase": "Ready"}


async def test_unchanged_write(store: InMemoryStore) -> None:
    """Test that a write without changes keeps the resource version."""
    created = await store.create(configmap({"a": "1"}))
    result = await store.update(created)
    assert result["metadata"]["resourceVersion"] == created["metadata"]["resourceVersion"]


async def test_apply_field_ownership(store: InMemoryStore) -> None:
    """Test conflicts between field managers."""
    await store.apply(configmap({"a": "1"}), field_manager="one")

    # Fields of another manager cannot be changed without force
    with pytest.raises(ConflictError, match='conflict with "one": .data.a'):
        await store.apply(configmap({"a": "2"}), field_manager="two")

    # Setting the same value, or other fields, is fine
    await store.apply(configmap({"a": "1", "b": "2"}), field_manager="two")
    assert (await store.get(CM_ID))["data"] == {"a": "1", "b": "2"}

    result = await store.apply(configmap({"a": "3"}), field_manager="two", force=True)
    assert result["data"] == {"a": "3"}

    # Manager one no longer owns data.a
    await store.apply(configmap({}), field_manager="one")
    assert (await store.get(CM_ID))["data"] == {"a": "3"}


async def test_apply_removes_dropped_fields(store: InMemoryStore) -> None:
    """Test fields dropped from the applied configuration are removed."""
    await store.apply(configmap({"a": "1", "b": "2"}), field_manager="one")
    result = await store.apply(configmap({"a": "1"}), field_manager="one")
    assert result["data"] == {"a": "1"}


async def test_apply_idempotent(store: InMemoryStore) -> None:
    """Test applying the same configuration twice changes nothing."""
    first = await store.apply(configmap({"a": "1"}), field_manager="one")
    second = await store.apply(configmap({"a": "1"}), field_manager="one")
    assert first == second


async def test_apply_ignores_status(store: InMemoryStore) -> None:
    """Test that apply never writes the status."""
    obj = configmap({"a": "1"})
    obj["status"] = {"phase": "Ready"}
    result = await store.apply(obj, field_manager="one")
    assert "status" not in result


async def test_service_cluster_ip(store: InMemoryStore) -> None:
    """Test clusterIP allocation and immutability."""
    svc_id = NamedResource("v1", "Service", "ns", "web")
    svc = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "web", "namespace": "ns"},
        "spec": {"ports": [{"port": 80}]},
    }
    created = await store.apply(svc, field_manager="one")
    cluster_ip = created["spec"]["clusterIP"]
    assert cluster_ip.startswith("10.96.")

    svc["spec"]["clusterIP"] = "10.0.0.1"
    with pytest.raises(InvalidObjectError, match="field is immutable"):
        await store.apply(svc, field_manager="one")
    assert (await store.get(svc_id))["spec"]["clusterIP"] == cluster_ip

    external = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "ext", "namespace": "ns"},
        "spec": {"type": "ExternalName", "externalName": "example.com"},
    }
    created = await store.apply(external, field_manager="one")
    assert "clusterIP" not in created["spec"]


async def test_rejected_force_apply_keeps_ownership(store: InMemoryStore) -> None:
    """Test a forced apply rejected as invalid does not take over any fields."""
    svc_id = NamedResource("v1", "Service", "ns", "web")

    def service(app: str, cluster_ip: str | None = None) -> dict[str, Any]:
        spec: dict[str, Any] = {"selector": {"app": app}}
        if cluster_ip:
            spec["clusterIP"] = cluster_ip
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "web", "namespace": "ns"},
            "spec": spec,
        }

    await store.apply(service("web", "10.0.0.5"), field_manager="other")

    with pytest.raises(InvalidObjectError, match="field is immutable"):
        await store.apply(service("mine", "10.0.0.9"), field_manager="mine", force=True)
    live = await store.get(svc_id)
    assert live["spec"] == {"selector": {"app": "web"}, "clusterIP": "10.0.0.5"}

    # The selector still belongs to the other manager
    with pytest.raises(ConflictError, match='conflict with "other": .spec.selector.app'):
        await store.apply(service("mine"), field_manager="mine")


async def test_delete_with_finalizer(store: InMemoryStore) -> None:
    """Test deletion is deferred until finalizers are removed."""
    await store.create(configmap({}, finalizers=["example.com/cleanup"]))

    await store.delete(CM_ID)
    obj = await store.get(CM_ID)
    assert obj["metadata"]["deletionTimestamp"]

    obj["metadata"]["finalizers"] = []
    await store.update(obj)
    with pytest.raises(ObjectNotFoundError):
        await store.get(CM_ID)


async def test_garbage_collection(store: InMemoryStore) -> None:
    """Test that dependents are removed with their owner."""
    owner = await store.create(configmap({}))
    child = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": "child",
            "namespace": "ns",
            "ownerReferences": [
                {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "name": "settings",
                    "uid": owner["metadata"]["uid"],
                    "controller": True,
                }
            ],
        },
    }
    await store.create(child)
    await store.create(
        {"apiVersion": "v1", "kind": "Secret", "metadata": {"name": "other", "namespace": "ns"}}
    )

    await store.delete(CM_ID)
    assert [o["metadata"]["name"] for o in await store.list()] == ["other"]


async def test_listeners(store: InMemoryStore) -> None:
    """Test listener callbacks and their removal."""
    events: list[tuple[StoreEvent, NamedResource]] = []

    def callback(event: StoreEvent, resource_id: NamedResource, obj: dict[str, Any]) -> None:
        events.append((event, resource_id))

    def failing(event: StoreEvent, resource_id: NamedResource, obj: dict[str, Any]) -> None:
        raise ValueError("listener error")

    remove = store.add_listener(StoreEvent.OBJECT_ADDED, callback)
    store.add_listener(StoreEvent.OBJECT_ADDED, failing)
    store.add_listener(StoreEvent.OBJECT_DELETED, callback)

    await store.create(configmap({}))
    await store.delete(CM_ID)
    assert events == [
        (StoreEvent.OBJECT_ADDED, CM_ID),
        (StoreEvent.OBJECT_DELETED, CM_ID),
    ]

    remove()
    await store.create(configmap({}))
    assert len(events) == 2


async def test_listener_flush(store: InMemoryStore) -> None:
    """Test flushing existing objects to a new listener."""
    await store.create(configmap({}))
    seen = []
    store.add_listener(
        StoreEvent.OBJECT_ADDED,
        lambda event, resource_id, obj: seen.append(resource_id),
        flush=True,
    )
    assert seen == [CM_ID]


async def test_watch(store: InMemoryStore) -> None:
    """Test watching for changes of a kind."""
    await store.create(configmap({"a": "1"}))
    received: list[tuple[StoreEvent, NamedResource]] = []

    async def watcher() -> None:
        async for event, resource_id, _ in store.watch("ConfigMap"):
            received.append((event, resource_id))
            if event == StoreEvent.OBJECT_DELETED:
                return

    task = asyncio.create_task(watcher())
    await asyncio.sleep(0)

    await store.create(
        {"apiVersion": "v1", "kind": "Secret", "metadata": {"name": "s", "namespace": "ns"}}
    )
    obj = await store.get(CM_ID)
    obj["data"] = {"a": "2"}
    await store.update(obj)
    obj = await store.get(CM_ID)
    obj["status"] = {"ok": True}
    await store.update_status(obj)
    await store.delete(CM_ID)

    await asyncio.wait_for(task, timeout=1)
    assert received == [
        (StoreEvent.OBJECT_ADDED, CM_ID),
        (StoreEvent.OBJECT_UPDATED, CM_ID),
        (StoreEvent.STATUS_UPDATED, CM_ID),
        (StoreEvent.OBJECT_DELETED, CM_ID),
    ]
