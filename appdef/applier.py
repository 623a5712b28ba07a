"""Idempotent create-or-patch of child objects.

The applier reads the live object, then issues a declarative apply naming the
configured field manager as the owner of the fields it sets. The operation
reported back is derived from the resource version before and after the
write, so applying unchanged state reports `unchanged`.
"""

import copy
from dataclasses import dataclass
from enum import StrEnum
import logging
from typing import Any

from .config import ApplierConfig
from .exceptions import ApplyError, ObjectNotFoundError
from .manifest import NamedResource, object_id
from .store import Store

__all__ = [
    "ApplyOperation",
    "ApplyResult",
    "Applier",
    "result_key",
]

_LOGGER = logging.getLogger(__name__)


class ApplyOperation(StrEnum):
    """What an apply did to the live object."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    NONE = "none"


@dataclass
class ApplyResult:
    """Outcome of applying one child object."""

    operation: ApplyOperation
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def result_key(obj: dict[str, Any]) -> NamedResource:
    """Return the key identifying the object in a desired object set."""
    return object_id(obj)


def _missing_identity(obj: dict[str, Any]) -> list[str]:
    metadata = obj.get("metadata") or {}
    missing = [key for key in ("apiVersion", "kind") if not obj.get(key)]
    missing.extend(
        f"metadata.{key}" for key in ("namespace", "name") if not metadata.get(key)
    )
    return missing


class Applier:
    """Applies child objects to the store with explicit field ownership."""

    def __init__(self, store: Store, config: ApplierConfig) -> None:
        """Initialize the Applier."""
        self._store = store
        self._config = config

    @property
    def field_manager(self) -> str:
        return self._config.field_manager

    async def apply(self, obj: dict[str, Any]) -> ApplyResult:
        """Apply the object, returning the outcome.

        Errors are returned in the result and never raised.
        """
        if not isinstance(obj, dict) or (missing := _missing_identity(obj)):
            return ApplyResult(
                ApplyOperation.NONE,
                ApplyError(
                    f"Object is missing required identity fields "
                    f"{', '.join(missing) if isinstance(obj, dict) else 'all'}"
                ),
            )
        resource_id = result_key(obj)

        live: dict[str, Any] | None = None
        try:
            live = await self._store.get(resource_id)
        except ObjectNotFoundError:
            _LOGGER.debug("Object %s does not exist yet", resource_id)
        except Exception as err:
            _LOGGER.debug("Failed to read %s before apply: %s", resource_id, err)
            return ApplyResult(ApplyOperation.NONE, err)

        desired = copy.deepcopy(obj)
        if live is not None and resource_id.kind == "Service":
            if cluster_ip := (live.get("spec") or {}).get("clusterIP"):
                desired.setdefault("spec", {})["clusterIP"] = cluster_ip

        try:
            applied = await self._store.apply(
                desired, field_manager=self._config.field_manager, force=self._config.force
            )
        except Exception as err:
            _LOGGER.debug("Apply of %s failed: %s", resource_id, err)
            return ApplyResult(ApplyOperation.NONE, err)

        new_version = (applied.get("metadata") or {}).get("resourceVersion")
        if not new_version:
            _LOGGER.info("Apply of %s returned no resource version", resource_id)
            return ApplyResult(ApplyOperation.NONE)
        if live is None:
            operation = ApplyOperation.CREATED
        elif live["metadata"].get("resourceVersion") == new_version:
            operation = ApplyOperation.UNCHANGED
        else:
            operation = ApplyOperation.UPDATED
        _LOGGER.debug("Applied %s: %s", resource_id, operation)
        return ApplyResult(operation)
