"""Component type that applies a list of literal manifests."""

import copy
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from mashumaro import DataClassDictMixin

from appdef.exceptions import BuildError
from appdef.manifest import ApplicationComponent, ApplicationDefinition
from appdef.store import Store

from .strategy import ComponentStrategy

if TYPE_CHECKING:
    from .registry import StrategyRegistry

__all__ = ["MANIFESTS_TYPE", "ManifestsConfig", "ManifestsStrategy"]


MANIFESTS_TYPE = "manifests"


@dataclass
class ManifestsConfig(DataClassDictMixin):
    """Properties of a `manifests` component."""

    objects: list[dict[str, Any]] = field(default_factory=list)
    """Objects applied as-is. Objects without a namespace get the owner's."""


class ManifestsStrategy(ComponentStrategy):
    """Applies literal objects and considers them healthy once structurally ready.

    The primary resource is the first object, unless the component names
    its kind.
    """

    config_class = ManifestsConfig
    workload_api_version = ""
    workload_kind = ""

    async def build_objects(
        self,
        store: Store,
        registry: "StrategyRegistry",
        owner: ApplicationDefinition,
        component: ApplicationComponent,
        config: ManifestsConfig,
    ) -> list[dict[str, Any]]:
        objects = []
        for index, obj in enumerate(config.objects):
            if not isinstance(obj, dict):
                raise BuildError(
                    f"object {index} of component {component.name} is not a mapping"
                )
            obj = copy.deepcopy(obj)
            obj.setdefault("metadata", {}).setdefault("namespace", owner.namespace)
            objects.append(obj)
        return objects
