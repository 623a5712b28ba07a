"""Test fixtures for component tasks."""

import pytest

from appdef.applier import Applier
from appdef.config import ApplierConfig
from appdef.manifest import (
    ApplicationDefinition,
    ComponentStatus,
    NamedResource,
)
from appdef.pipeline import TaskContext
from appdef.store import InMemoryStore
from appdef.strategy import StrategyRegistry

from tests import app_doc, configmap_component
from tests.conftest import FakeEventRecorder


@pytest.fixture
async def owner(store: InMemoryStore) -> ApplicationDefinition:
    """Create an ApplicationDefinition stored with a uid."""
    doc = await store.create(app_doc("demo", [configmap_component("settings")]))
    return ApplicationDefinition.parse_doc(doc)


@pytest.fixture
def context(
    owner: ApplicationDefinition,
    store: InMemoryStore,
    registry: StrategyRegistry,
    recorder: FakeEventRecorder,
) -> TaskContext:
    """Create a task context for the single component of the owner."""
    component = owner.components[0]
    strategy = registry.get(component.type)
    assert strategy
    return TaskContext(
        owner=owner,
        component=component,
        status=ComponentStatus(
            name=component.name, kind="ConfigMap", api_version="v1", message="Built successfully"
        ),
        config=registry.decode_config(component.type, component.properties),
        objects={},
        apply_results={},
        applier=Applier(store, ApplierConfig()),
        strategy=strategy,
        registry=registry,
        store=store,
        recorder=recorder,
    )


def add_configmap(ctx: TaskContext, name: str, namespace: str = "default") -> NamedResource:
    """Add a desired ConfigMap to the context."""
    key = NamedResource("v1", "ConfigMap", namespace, name)
    ctx.objects[key] = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": {"name": name},
    }
    return key
