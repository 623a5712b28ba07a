"""Interface implemented by every component type."""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, TYPE_CHECKING

from mashumaro import DataClassDictMixin

from appdef.manifest import ApplicationComponent, ApplicationDefinition
from appdef.pipeline import ApplyTask, Task
from appdef.store import Store

if TYPE_CHECKING:
    from .registry import StrategyRegistry

__all__ = ["ComponentStrategy"]


class ComponentStrategy(ABC):
    """Builds, checks and cleans up the objects of one component type.

    Subclasses declare the dataclass their `properties` decode into and the
    identity of their primary workload. A strategy with an empty
    `workload_kind` takes the first object it builds as the primary resource.
    """

    config_class: ClassVar[type[DataClassDictMixin] | None] = None
    """Dataclass the component properties decode into, or None for a raw dict."""

    workload_api_version: ClassVar[str] = "apps/v1"
    workload_kind: ClassVar[str] = "Deployment"

    @abstractmethod
    async def build_objects(
        self,
        store: Store,
        registry: "StrategyRegistry",
        owner: ApplicationDefinition,
        component: ApplicationComponent,
        config: Any,
    ) -> list[dict[str, Any]]:
        """Return the desired child objects of the component.

        Every returned object must carry apiVersion, kind, namespace and name.
        Owner references and standard labels are added by the controller.
        """

    async def check_app_health(
        self,
        store: Store,
        registry: "StrategyRegistry",
        owner: ApplicationDefinition,
        component: ApplicationComponent,
        config: Any,
    ) -> tuple[bool, str]:
        """Check application level health once the resource is structurally ready.

        Returns:
            Readiness and a message, empty to keep the structural message.

        Raises:
            Exception: If the check itself could not be performed.
        """
        return True, ""

    def tasks(self) -> list[Task]:
        """Return the ordered task list run for each component on every pass."""
        return [ApplyTask()]

    async def cleanup(
        self,
        store: Store,
        registry: "StrategyRegistry",
        owner: ApplicationDefinition,
        component: ApplicationComponent,
    ) -> None:
        """Release external state of the component before the owner is deleted."""
