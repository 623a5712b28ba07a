"""Shared test fixtures."""

import copy
from collections.abc import Generator
from dataclasses import dataclass, field
from typing import Any

import pytest
from mashumaro import DataClassDictMixin

from appdef.events import EventRecorder, EventType
from appdef.manifest import ApplicationComponent, ApplicationDefinition
from appdef.store import InMemoryStore, Store
from appdef.strategy import (
    MANIFESTS_TYPE,
    ComponentStrategy,
    ManifestsStrategy,
    StrategyRegistry,
)
from appdef.task import TaskService, task_service_context


@pytest.fixture(name="task_service", autouse=True)
def task_service_fixture() -> Generator[TaskService, None, None]:
    """Create a task service for testing."""
    with task_service_context() as service:
        yield service


@pytest.fixture
def store() -> InMemoryStore:
    """Create an in-memory store for testing."""
    return InMemoryStore()


class FakeEventRecorder(EventRecorder):
    """Keeps recorded events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[EventType, str, str]] = []

    def record(
        self,
        obj: ApplicationDefinition,
        event_type: EventType,
        reason: str,
        message: str,
        annotations: dict[str, str] | None = None,
    ) -> None:
        self.events.append((event_type, reason, message))

    @property
    def reasons(self) -> list[str]:
        return [reason for _, reason, _ in self.events]


@pytest.fixture
def recorder() -> FakeEventRecorder:
    return FakeEventRecorder()


@dataclass
class ConfigMapConfig(DataClassDictMixin):
    data: dict[str, str] = field(default_factory=dict)


class ConfigMapStrategy(ComponentStrategy):
    """Builds a single ConfigMap named after the owner and component."""

    config_class = ConfigMapConfig
    workload_api_version = "v1"
    workload_kind = "ConfigMap"

    def __init__(self) -> None:
        self.healthy = True
        self.cleaned: list[str] = []

    async def build_objects(
        self,
        store: Store,
        registry: StrategyRegistry,
        owner: ApplicationDefinition,
        component: ApplicationComponent,
        config: ConfigMapConfig,
    ) -> list[dict[str, Any]]:
        return [
            {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {
                    "name": f"{owner.name}-{component.name}",
                    "namespace": owner.namespace,
                },
                "data": dict(config.data),
            }
        ]

    async def check_app_health(
        self,
        store: Store,
        registry: StrategyRegistry,
        owner: ApplicationDefinition,
        component: ApplicationComponent,
        config: ConfigMapConfig,
    ) -> tuple[bool, str]:
        if self.healthy:
            return True, ""
        return False, "application not serving"

    async def cleanup(
        self,
        store: Store,
        registry: StrategyRegistry,
        owner: ApplicationDefinition,
        component: ApplicationComponent,
    ) -> None:
        self.cleaned.append(component.name)


class RawStrategy(ComponentStrategy):
    """Returns `properties.objects` exactly as given."""

    async def build_objects(
        self,
        store: Store,
        registry: StrategyRegistry,
        owner: ApplicationDefinition,
        component: ApplicationComponent,
        config: dict[str, Any],
    ) -> list[dict[str, Any]]:
        return copy.deepcopy(config.get("objects", []))


@pytest.fixture
def configmap_strategy() -> ConfigMapStrategy:
    return ConfigMapStrategy()


@pytest.fixture
def registry(configmap_strategy: ConfigMapStrategy) -> StrategyRegistry:
    """Create a registry with the test component types."""
    registry = StrategyRegistry()
    registry.register("configmap", configmap_strategy)
    registry.register("raw", RawStrategy())
    registry.register(MANIFESTS_TYPE, ManifestsStrategy())
    return registry
