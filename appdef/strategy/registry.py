"""Registry mapping component type tags to their strategy."""

import logging
from typing import Any

from mashumaro.exceptions import (
    InvalidFieldValue,
    MissingField,
    SuitableVariantNotFoundError,
)

from appdef.exceptions import DecodeError

from .strategy import ComponentStrategy

__all__ = ["StrategyRegistry"]

_LOGGER = logging.getLogger(__name__)


class StrategyRegistry:
    """Holds one strategy per component type.

    The registry is populated at import time and frozen before the controller
    starts. Lookups never mutate it.
    """

    def __init__(self) -> None:
        """Initialize the StrategyRegistry."""
        self._strategies: dict[str, ComponentStrategy] = {}
        self._frozen = False

    def register(self, component_type: str, strategy: ComponentStrategy) -> None:
        """Register the strategy for a component type.

        Raises:
            ValueError: If the type is empty or already registered, or the
                registry is frozen.
        """
        if not component_type:
            raise ValueError("Cannot register strategy with an empty component type")
        if self._frozen:
            raise ValueError(
                f"Cannot register strategy for {component_type}, registry is frozen"
            )
        if component_type in self._strategies:
            raise ValueError(
                f"Strategy already registered for component type: {component_type}"
            )
        self._strategies[component_type] = strategy
        _LOGGER.debug(
            "Strategy %s registered for component type %s",
            type(strategy).__name__,
            component_type,
        )

    def freeze(self) -> None:
        """Reject further registrations."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, component_type: str) -> ComponentStrategy | None:
        return self._strategies.get(component_type)

    def types(self) -> list[str]:
        return sorted(self._strategies)

    def decode_config(self, component_type: str, properties: dict[str, Any]) -> Any:
        """Decode component properties with the type's config class.

        Raises:
            DecodeError: If the type is unknown or the properties do not decode.
        """
        if (strategy := self.get(component_type)) is None:
            raise DecodeError(f"no strategy registered for component type: {component_type}")
        if strategy.config_class is None:
            return dict(properties)
        try:
            return strategy.config_class.from_dict(properties)
        except (
            MissingField,
            InvalidFieldValue,
            SuitableVariantNotFoundError,
            ValueError,
            TypeError,
        ) as err:
            raise DecodeError(
                f"failed to decode properties for component type {component_type}: {err}"
            ) from err
