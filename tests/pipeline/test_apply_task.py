"""Tests for the apply and health check tasks."""

import pytest

from appdef.applier import Applier, ApplyOperation
from appdef.config import ApplierConfig
from appdef.exceptions import ConflictError, OwnershipError
from appdef.manifest import ApplicationDefinition
from appdef.pipeline import (
    ApplyTask,
    HealthCheckTask,
    TaskContext,
    TaskFailedError,
    TaskResult,
    set_controller_reference,
)
from appdef.store import InMemoryStore

from tests.conftest import ConfigMapStrategy, FakeEventRecorder
from tests.pipeline.conftest import add_configmap


async def test_apply_objects(context: TaskContext, store: InMemoryStore) -> None:
    """Test applying every object of the component."""
    first = add_configmap(context, "b")
    second = add_configmap(context, "a")

    assert await ApplyTask().execute(context) == TaskResult.COMPLETE
    assert context.apply_results[first].operation == ApplyOperation.CREATED
    assert context.apply_results[second].operation == ApplyOperation.CREATED

    obj = await store.get(first)
    (ref,) = obj["metadata"]["ownerReferences"]
    assert ref["uid"] == context.owner.uid
    assert ref["kind"] == "ApplicationDefinition"

    assert await ApplyTask().execute(context) == TaskResult.COMPLETE
    assert context.apply_results[first].operation == ApplyOperation.UNCHANGED
    assert context.status.message == "Built successfully"


async def test_no_objects(context: TaskContext) -> None:
    assert await ApplyTask().execute(context) == TaskResult.COMPLETE
    assert context.apply_results == {}


async def test_apply_failure_continues(
    context: TaskContext, store: InMemoryStore, recorder: FakeEventRecorder
) -> None:
    """Test that one failing object does not stop the others."""
    failing = add_configmap(context, "a")
    ok = add_configmap(context, "b")
    await store.apply(
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "a", "namespace": "default"},
            "data": {"name": "theirs"},
        },
        field_manager="other",
    )
    context.applier = Applier(store, ApplierConfig(force=False))

    with pytest.raises(TaskFailedError) as exc_info:
        await ApplyTask().execute(context)
    assert isinstance(exc_info.value.cause, ConflictError)

    assert context.apply_results[failing].failed
    assert context.apply_results[ok].operation == ApplyOperation.CREATED
    assert context.status.message.startswith(
        "ApplyFailed: ApplyError: Failed for ConfigMap default/a"
    )
    assert not context.status.health
    assert recorder.reasons == ["ResourceApplyFailed"]


async def test_cross_namespace_owner(
    context: TaskContext, recorder: FakeEventRecorder
) -> None:
    """Test that children in another namespace cannot be owned."""
    add_configmap(context, "a", namespace="other")

    with pytest.raises(TaskFailedError) as exc_info:
        await ApplyTask().execute(context)
    assert isinstance(exc_info.value.cause, OwnershipError)
    assert context.status.message.startswith("SetOwnerRefFailed: ")
    assert recorder.reasons == ["SetOwnerRefFailed"]


def test_set_controller_reference(owner: ApplicationDefinition) -> None:
    """Test owner reference handling."""
    obj = {
        "metadata": {
            "name": "a",
            "namespace": "default",
            "ownerReferences": [
                {"apiVersion": "v1", "kind": "ConfigMap", "name": "x", "uid": "1234"},
                {**owner.owner_reference(), "name": "stale"},
            ],
        }
    }
    set_controller_reference(owner, obj)
    refs = obj["metadata"]["ownerReferences"]
    assert [ref["name"] for ref in refs] == ["x", "demo"]

    other = {
        "metadata": {
            "name": "a",
            "namespace": "default",
            "ownerReferences": [
                {"apiVersion": "v1", "kind": "Thing", "name": "y", "uid": "5678", "controller": True}
            ],
        }
    }
    with pytest.raises(OwnershipError, match="already owned"):
        set_controller_reference(owner, other)

    owner.uid = None
    with pytest.raises(OwnershipError, match="has no uid"):
        set_controller_reference(owner, {"metadata": {"name": "a", "namespace": "default"}})


async def test_health_check_task(
    context: TaskContext, configmap_strategy: ConfigMapStrategy
) -> None:
    """Test the health check task gating on readiness."""
    assert await HealthCheckTask().execute(context) == TaskResult.SKIPPED

    key = add_configmap(context, "demo-settings")
    context.status.resource_name = key.name
    context.status.namespace = "default"
    assert await HealthCheckTask().execute(context) == TaskResult.PENDING
    assert context.status.message == "Resource not found"

    assert await ApplyTask().execute(context) == TaskResult.COMPLETE
    assert await HealthCheckTask().execute(context) == TaskResult.COMPLETE
    assert context.status.health
    assert context.status.message == "ConfigMap exists"

    configmap_strategy.healthy = False
    assert await HealthCheckTask().execute(context) == TaskResult.PENDING
    assert context.status.message == "application not serving"
