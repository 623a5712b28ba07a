"""Configuration objects for appdef."""

from dataclasses import dataclass, field
import logging
from pathlib import Path

import aiofiles
from mashumaro import DataClassDictMixin
from mashumaro.exceptions import MissingField, InvalidFieldValue
import yaml

from .exceptions import AppDefException

__all__ = [
    "ApplierConfig",
    "LabelConfig",
    "ControllerConfig",
    "load_config",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ApplierConfig(DataClassDictMixin):
    """Configuration for the Applier."""

    field_manager: str = "appdef-controller"
    """Name recorded as owner of the fields the applier sets."""

    force: bool = True
    """Take over ownership of fields held by other managers."""


@dataclass
class LabelConfig(DataClassDictMixin):
    """Label keys stamped on every built child object."""

    application_name: str = "app.appdef.dev/application-name"
    component_type: str = "app.appdef.dev/component-name"
    component_instance: str = "app.appdef.dev/component-instance"
    managed_by: str = "app.kubernetes.io/managed-by"


@dataclass
class ControllerConfig(DataClassDictMixin):
    """Configuration for the ApplicationController."""

    operator_name: str = "appdef-operator"
    """Value of the managed-by label and source of emitted events."""

    finalizer: str = "apps.appdef.dev/finalizer"
    """Finalizer guarding cleanup of an ApplicationDefinition."""

    requeue_after: float = 30.0
    """Delay in seconds before the next pass when not converged."""

    conflict_requeue_after: float = 5.0
    """Delay in seconds before the next pass after a write conflict."""

    reconcile_timeout: float = 120.0
    """Upper bound in seconds for a single pass."""

    finalizer_retries: int = 3
    """Attempts to add or remove the finalizer when writes conflict."""

    watch_namespace: str | None = None
    """Only reconcile objects in this namespace, all namespaces when unset."""

    applier: ApplierConfig = field(default_factory=ApplierConfig)
    labels: LabelConfig = field(default_factory=LabelConfig)


async def load_config(path: Path) -> ControllerConfig:
    """Load the controller configuration from a YAML file.

    Missing keys take their default values.

    Raises:
        AppDefException: If the file cannot be read or is not valid.
    """
    _LOGGER.debug("Loading configuration from %s", path)
    try:
        async with aiofiles.open(str(path)) as config_file:
            content = await config_file.read()
    except OSError as err:
        raise AppDefException(f"Failed to read config file {path}: {err}") from err
    try:
        doc = yaml.safe_load(content) or {}
    except yaml.YAMLError as err:
        raise AppDefException(f"Invalid YAML in config file {path}: {err}") from err
    if not isinstance(doc, dict):
        raise AppDefException(f"Config file {path} must contain a mapping")
    try:
        return ControllerConfig.from_dict(doc)
    except (MissingField, InvalidFieldValue, ValueError, TypeError) as err:
        raise AppDefException(f"Invalid config file {path}: {err}") from err
