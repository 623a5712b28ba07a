"""Component strategies.

A strategy bundles everything specific to a component type: the config
decoder, the builder of child objects, the application level health check and
the task list. The default registry is populated when this module is imported.
"""

from .strategy import ComponentStrategy
from .registry import StrategyRegistry
from .manifests import MANIFESTS_TYPE, ManifestsConfig, ManifestsStrategy

__all__ = [
    "ComponentStrategy",
    "StrategyRegistry",
    "ManifestsConfig",
    "ManifestsStrategy",
    "MANIFESTS_TYPE",
    "default_registry",
]


_DEFAULT_REGISTRY = StrategyRegistry()
_DEFAULT_REGISTRY.register(MANIFESTS_TYPE, ManifestsStrategy())


def default_registry() -> StrategyRegistry:
    """Return the registry used when a controller is given none."""
    return _DEFAULT_REGISTRY
