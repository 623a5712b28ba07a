"""Representation of the objects managed by the reconciliation engine.

The desired-state `ApplicationDefinition` and its persisted status are typed
dataclasses. Child objects produced by builders stay as unstructured
documents (`dict[str, Any]`) in the same shape the object store accepts, and
are identified by a `NamedResource`.
"""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField
import yaml

from .exceptions import DecodeError, InvalidObjectError

__all__ = [
    "APPLICATION_API_VERSION",
    "APPLICATION_KIND",
    "BaseManifest",
    "NamedResource",
    "ApplicationPhase",
    "ConditionStatus",
    "Condition",
    "ComponentStatus",
    "ApplicationStatus",
    "ApplicationComponent",
    "ApplicationDefinition",
    "object_id",
    "get_labels",
    "set_labels",
]

_LOGGER = logging.getLogger(__name__)


APPLICATION_GROUP = "apps.appdef.dev"
APPLICATION_API_VERSION = f"{APPLICATION_GROUP}/v1"
APPLICATION_KIND = "ApplicationDefinition"
CONDITION_READY = "Ready"


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all typed manifest objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> "BaseManifest":
        """Parse a serialized manifest."""
        return cls.from_dict(yaml.safe_load(content) or {})

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml.dump(self.to_dict(), sort_keys=False, explicit_start=True)

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a kubernetes style resource."""

    api_version: str
    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @property
    def group(self) -> str:
        """Return the API group, empty for the core group."""
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    @property
    def version(self) -> str:
        """Return the API version without the group."""
        return self.api_version.rsplit("/", 1)[-1]

    def __str__(self) -> str:
        """Return the group-version-kind and namespaced name concatenated as an id."""
        return f"{self.api_version}, Kind={self.kind}/{self.namespaced_name}"


class ApplicationPhase(StrEnum):
    """Overall reconciliation phase of an ApplicationDefinition."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    APPLYING = "Applying"
    AVAILABLE = "Available"
    DEGRADED = "Degraded"
    FAILED = "Failed"
    SUSPENDED = "Suspended"


class ConditionStatus(StrEnum):
    """Status value of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition(BaseManifest):
    """An observation of one aspect of the application state."""

    type: str
    """The type of the condition, e.g. Ready."""

    status: ConditionStatus
    """Whether the condition holds."""

    reason: str
    """Machine readable reason for the last transition."""

    message: str = ""
    """Human readable details."""

    last_transition_time: str | None = field(
        metadata=field_options(alias="lastTransitionTime"), default=None
    )
    """Time of the last change of `status`, RFC3339."""

    observed_generation: int | None = field(
        metadata=field_options(alias="observedGeneration"), default=None
    )
    """Generation the condition was computed for."""


@dataclass
class ComponentStatus(BaseManifest):
    """Observed state of one component's primary resource."""

    name: str
    """Name of the component, unique within `spec.components`."""

    kind: str = ""
    """Kind of the primary resource."""

    api_version: str = field(metadata=field_options(alias="apiVersion"), default="")
    """API version of the primary resource."""

    resource_name: str = field(metadata=field_options(alias="resourceName"), default="")
    """Name of the primary resource in the cluster."""

    namespace: str = ""
    """Namespace of the primary resource."""

    health: bool = False
    """True when both structural and application level checks passed."""

    message: str = ""
    """Human readable status or error details."""

    @property
    def resource_id(self) -> NamedResource | None:
        """Return the identity of the primary resource, if fully known."""
        if not (
            self.resource_name and self.kind and self.api_version and self.namespace
        ):
            return None
        return NamedResource(
            api_version=self.api_version,
            kind=self.kind,
            namespace=self.namespace,
            name=self.resource_name,
        )


@dataclass
class ApplicationStatus(BaseManifest):
    """The persisted status sub-document."""

    observed_generation: int = field(
        metadata=field_options(alias="observedGeneration"), default=0
    )
    phase: ApplicationPhase | None = None
    conditions: list[Condition] = field(default_factory=list)
    components: list[ComponentStatus] = field(default_factory=list)
    suspended_replicas: dict[str, int] = field(
        metadata=field_options(alias="suspendedReplicas"), default_factory=dict
    )

    def get_condition(self, condition_type: str) -> Condition | None:
        """Return the condition with the given type, if any."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    @classmethod
    def from_status_doc(cls, raw: Any) -> "ApplicationStatus":
        """Decode a persisted status, dropping the parts that do not decode.

        An unknown phase decodes as None, which restarts processing.
        """
        status = cls()
        if not raw:
            return status
        if not isinstance(raw, dict):
            _LOGGER.warning("Ignoring status that is not a mapping: %s", raw)
            return status
        if isinstance(generation := raw.get("observedGeneration"), int):
            status.observed_generation = generation
        if (phase := raw.get("phase")) is not None:
            try:
                status.phase = ApplicationPhase(phase)
            except ValueError:
                _LOGGER.warning("Ignoring unknown status phase: %s", phase)
        status.conditions = _decode_entries(Condition, raw.get("conditions"))
        status.components = _decode_entries(ComponentStatus, raw.get("components"))
        replicas = raw.get("suspendedReplicas")
        if isinstance(replicas, dict):
            status.suspended_replicas = {
                str(name): count
                for name, count in replicas.items()
                if isinstance(count, int) and not isinstance(count, bool)
            }
        return status


def _decode_entries(entry_class: Any, entries: Any) -> list[Any]:
    if not isinstance(entries, list):
        return []
    result = []
    for entry in entries:
        if not isinstance(entry, dict):
            _LOGGER.warning("Ignoring %s that is not a mapping: %s", entry_class.__name__, entry)
            continue
        try:
            result.append(entry_class.from_dict(entry))
        except (MissingField, InvalidFieldValue, ValueError, TypeError) as err:
            _LOGGER.warning("Ignoring %s that does not decode: %s", entry_class.__name__, err)
    return result


@dataclass
class ApplicationComponent(BaseManifest):
    """A single component instance within an ApplicationDefinition."""

    name: str = ""
    """Unique name of the component within the application.

    Required. An empty name is rejected when the application is reconciled so
    the failure is reported on the object status.
    """

    type: str = ""
    """Component type, selects the strategy used to build and check it."""

    properties: dict[str, Any] = field(default_factory=dict)
    """Opaque, type specific configuration."""

    kind: str | None = None
    """Kind of the primary resource, defaults to the strategy workload kind."""

    api_version: str | None = field(
        metadata=field_options(alias="apiVersion"), default=None
    )
    """API version of the primary resource."""


@dataclass
class ApplicationDefinition(BaseManifest):
    """Working copy of the top-level desired-state object."""

    name: str
    namespace: str
    uid: str | None = None
    generation: int = 0
    resource_version: str | None = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: str | None = field(
        metadata=field_options(alias="deletionTimestamp"), default=None
    )
    components: list[ApplicationComponent] = field(default_factory=list)
    suspend: bool = False
    status: ApplicationStatus = field(default_factory=ApplicationStatus)

    api_version: str = field(
        metadata=field_options(alias="apiVersion"), default=APPLICATION_API_VERSION
    )
    kind: str = APPLICATION_KIND

    @property
    def resource_id(self) -> NamedResource:
        return NamedResource(
            api_version=self.api_version,
            kind=self.kind,
            namespace=self.namespace,
            name=self.name,
        )

    @property
    def deleting(self) -> bool:
        """Return True if deletion of the object was requested."""
        return self.deletion_timestamp is not None

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ApplicationDefinition":
        """Parse an ApplicationDefinition from a raw document."""
        if not (api_version := doc.get("apiVersion")):
            raise InvalidObjectError(f"Invalid object missing apiVersion: {doc}")
        if doc.get("kind") != APPLICATION_KIND:
            raise InvalidObjectError(f"Invalid object expected {APPLICATION_KIND}: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InvalidObjectError(f"Invalid object missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InvalidObjectError(f"Invalid object missing metadata.name: {doc}")
        if not (namespace := metadata.get("namespace")):
            raise InvalidObjectError(
                f"Invalid object missing metadata.namespace: {doc}"
            )
        spec = doc.get("spec") or {}
        raw_components = (spec.get("components") or []) if isinstance(spec, dict) else None
        if not isinstance(raw_components, list) or not all(
            isinstance(comp, dict) for comp in raw_components
        ):
            raise DecodeError(
                f"Invalid {APPLICATION_KIND} {namespace}/{name}: "
                "spec.components must be a list of mappings"
            )
        try:
            components = [ApplicationComponent.from_dict(comp) for comp in raw_components]
        except (MissingField, InvalidFieldValue, ValueError, TypeError) as err:
            raise DecodeError(f"Invalid {APPLICATION_KIND} {namespace}/{name}: {err}") from err
        return cls(
            api_version=api_version,
            name=name,
            namespace=namespace,
            uid=metadata.get("uid"),
            generation=metadata.get("generation", 0),
            resource_version=metadata.get("resourceVersion"),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            components=components,
            suspend=bool(spec.get("suspend", False)),
            status=ApplicationStatus.from_status_doc(doc.get("status")),
        )

    def to_doc(self) -> dict[str, Any]:
        """Return the raw document representation of the object."""
        metadata: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "generation": self.generation,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "finalizers": list(self.finalizers),
        }
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.deletion_timestamp:
            metadata["deletionTimestamp"] = self.deletion_timestamp
        spec: dict[str, Any] = {
            "components": [comp.to_dict() for comp in self.components],
        }
        if self.suspend:
            spec["suspend"] = True
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
            "spec": spec,
            "status": self.status.to_dict(),
        }

    def owner_reference(self) -> dict[str, Any]:
        """Return a controller owner reference pointing at this object."""
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }


def object_id(doc: dict[str, Any]) -> NamedResource:
    """Return the identity of an unstructured object.

    Raises InvalidObjectError when apiVersion, kind or metadata.name is missing.
    The namespace may be absent for cluster scoped objects.
    """
    if not isinstance(doc, dict):
        raise InvalidObjectError(f"Invalid object is not a mapping: {doc!r}")
    if not (api_version := doc.get("apiVersion")):
        raise InvalidObjectError(f"Invalid object missing apiVersion: {doc}")
    if not (kind := doc.get("kind")):
        raise InvalidObjectError(f"Invalid object missing kind: {doc}")
    metadata = doc.get("metadata") or {}
    if not (name := metadata.get("name")):
        raise InvalidObjectError(f"Invalid object missing metadata.name: {doc}")
    return NamedResource(
        api_version=api_version,
        kind=kind,
        namespace=metadata.get("namespace") or None,
        name=name,
    )


def get_labels(doc: dict[str, Any]) -> dict[str, str]:
    """Return the labels of an unstructured object."""
    return dict((doc.get("metadata") or {}).get("labels") or {})


def set_labels(doc: dict[str, Any], labels: dict[str, str]) -> None:
    """Merge the labels into the metadata of an unstructured object."""
    metadata = doc.setdefault("metadata", {})
    existing = metadata.get("labels") or {}
    metadata["labels"] = {**existing, **labels}
