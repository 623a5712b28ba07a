"""Structural readiness checks for common resource kinds.

These checks only look at cluster visible state of the object (its status and
related Endpoints). Application level health is the job of each component
strategy.
"""

from collections.abc import Awaitable, Callable
import logging
from typing import Any

from .exceptions import HealthCheckError, ObjectNotFoundError
from .manifest import NamedResource
from .store import Store

__all__ = [
    "check_resource_health",
]

_LOGGER = logging.getLogger(__name__)

HealthResult = tuple[bool, str]


def _int(value: Any, default: int = 0) -> int:
    return value if isinstance(value, int) else default


def _desired_replicas(obj: dict[str, Any]) -> int:
    return _int((obj.get("spec") or {}).get("replicas"), 1)


def _observed_behind(obj: dict[str, Any]) -> str | None:
    generation = _int(obj["metadata"].get("generation"))
    observed = _int((obj.get("status") or {}).get("observedGeneration"))
    if observed < generation:
        return (
            f"Waiting for rollout to be observed (generation {observed} < desired {generation})"
        )
    return None


async def _check_deployment(store: Store, obj: dict[str, Any]) -> HealthResult:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    if spec.get("paused"):
        return False, "Deployment is paused"
    if msg := _observed_behind(obj):
        return False, msg
    conditions = {cond.get("type"): cond for cond in status.get("conditions") or ()}
    available = conditions.get("Available")
    if available is None or available.get("status") != "True":
        msg = "Deployment not available"
        if available is not None:
            msg = f"{msg}: {available.get('reason', '')} ({available.get('message', '')})"
        return False, msg
    progressing = conditions.get("Progressing")
    if (
        progressing is None
        or progressing.get("status") != "True"
        or progressing.get("reason") != "NewReplicaSetAvailable"
    ):
        reason = progressing.get("reason", "Unknown") if progressing else "Unknown"
        return False, f"Deployment rollout not complete (Progressing reason: {reason})"
    desired = _desired_replicas(obj)
    for field, label in (
        ("updatedReplicas", "update"),
        ("readyReplicas", "readiness"),
        ("availableReplicas", "availability"),
    ):
        count = _int(status.get(field))
        if count < desired:
            noun = field.removesuffix("Replicas")
            return False, f"Waiting for {label}: {count}/{desired} {noun} replicas"
    ready = _int(status.get("readyReplicas"))
    return True, f"Deployment available ({ready}/{desired} replicas ready)"


async def _check_statefulset(store: Store, obj: dict[str, Any]) -> HealthResult:
    spec = obj.get("spec") or {}
    status = obj.get("status") or {}
    if msg := _observed_behind(obj):
        return False, msg
    desired = _desired_replicas(obj)
    ready = _int(status.get("readyReplicas"))
    current = _int(status.get("currentReplicas"))
    updated = _int(status.get("updatedReplicas"))
    if updated < desired:
        return False, f"Rollout in progress: {updated}/{desired} pods updated"
    if ready < desired:
        return False, f"Waiting for readiness: {ready}/{desired} ready replicas"
    if current < desired:
        return False, f"Waiting for stability: {current}/{desired} current replicas"
    strategy = spec.get("updateStrategy") or {}
    partition = (strategy.get("rollingUpdate") or {}).get("partition")
    if strategy.get("type", "RollingUpdate") == "RollingUpdate" and isinstance(
        partition, int
    ):
        if updated < desired - partition:
            return (
                False,
                f"Waiting for partitioned rollout: {updated}/{desired} updated "
                f"replicas above partition {partition}",
            )
    return True, f"StatefulSet available ({ready}/{desired} replicas ready)"


async def _get_endpoints(store: Store, svc_id: NamedResource) -> dict[str, Any] | None:
    endpoints_id = NamedResource("v1", "Endpoints", svc_id.namespace, svc_id.name)
    try:
        return await store.get(endpoints_id)
    except ObjectNotFoundError:
        return None
    except Exception as err:
        raise HealthCheckError(f"Failed to get Endpoints for {svc_id.namespaced_name}: {err}") from err


async def _check_service(store: Store, obj: dict[str, Any]) -> HealthResult:
    spec = obj.get("spec") or {}
    metadata = obj["metadata"]
    svc_id = NamedResource("v1", "Service", metadata.get("namespace"), metadata["name"])

    if spec.get("clusterIP") == "None":
        if (endpoints := await _get_endpoints(store, svc_id)) is None:
            return False, "Headless service endpoints not found"
        if not any(
            subset.get("addresses") or subset.get("notReadyAddresses")
            for subset in endpoints.get("subsets") or ()
        ):
            return False, "Headless service exists but no endpoints found"
        return True, "Headless service exists and endpoints found"

    service_type = spec.get("type", "ClusterIP")
    if service_type == "LoadBalancer":
        ingress = ((obj.get("status") or {}).get("loadBalancer") or {}).get("ingress")
        if any(item.get("ip") or item.get("hostname") for item in ingress or ()):
            return True, "LoadBalancer has assigned ingress point(s)"
        return False, "Waiting for LoadBalancer ingress assignment"
    if service_type == "ExternalName":
        return True, "ExternalName Service exists"

    if (endpoints := await _get_endpoints(store, svc_id)) is None:
        return False, "Service endpoints not found"
    ready = 0
    not_ready = 0
    for subset in endpoints.get("subsets") or ():
        ready += len(subset.get("addresses") or ())
        not_ready += len(subset.get("notReadyAddresses") or ())
    total = ready + not_ready
    if not ready:
        return False, f"No ready endpoints found for Service ({ready}/{total} ready/total)"
    return True, f"Service has ready endpoints ({ready}/{total} ready/total)"


async def _check_pvc(store: Store, obj: dict[str, Any]) -> HealthResult:
    phase = (obj.get("status") or {}).get("phase", "")
    if phase == "Bound":
        return True, "PVC is Bound"
    if phase == "Pending":
        return False, f"PVC is Pending (waiting for volume provision). Phase: {phase}"
    if phase == "Lost":
        return False, f"PVC is Lost. Phase: {phase}"
    return False, f"PVC phase is {phase} (needs Bound)"


async def _check_pdb(store: Store, obj: dict[str, Any]) -> HealthResult:
    status = obj.get("status") or {}
    generation = _int(obj["metadata"].get("generation"))
    observed = _int(status.get("observedGeneration"))
    if observed < generation:
        return False, f"PDB sync in progress (gen {observed} < desired {generation})"
    current = _int(status.get("currentHealthy"))
    desired = _int(status.get("desiredHealthy"))
    allowed = _int(status.get("disruptionsAllowed"))
    if current >= desired:
        if allowed > 0:
            return (
                True,
                f"PDB allows disruptions ({allowed} allowed, {current}/{desired} healthy)",
            )
        return True, f"PDB healthy ({current}/{desired}), but no disruptions allowed"
    return (
        False,
        f"PDB not healthy ({current}/{desired} healthy, {allowed} disruptions allowed)",
    )


async def _check_exists(store: Store, obj: dict[str, Any]) -> HealthResult:
    return True, f"{obj['kind']} exists"


_CHECKERS: dict[tuple[str, str], Callable[[Store, dict[str, Any]], Awaitable[HealthResult]]] = {
    ("apps", "Deployment"): _check_deployment,
    ("apps", "StatefulSet"): _check_statefulset,
    ("", "Service"): _check_service,
    ("", "PersistentVolumeClaim"): _check_pvc,
    ("policy", "PodDisruptionBudget"): _check_pdb,
    ("", "ConfigMap"): _check_exists,
    ("", "Secret"): _check_exists,
    ("", "ServiceAccount"): _check_exists,
}


async def check_resource_health(
    store: Store, resource_id: NamedResource
) -> HealthResult:
    """Check the structural readiness of a resource.

    Args:
        store: The store to read the resource from.
        resource_id: Identity of the resource to check.

    Returns:
        A tuple of readiness and a human readable message. A resource that
        does not exist is reported as not ready.

    Raises:
        HealthCheckError: If the check itself could not be performed.
    """
    _LOGGER.debug("Checking resource health status for %s", resource_id)
    try:
        obj = await store.get(resource_id)
    except ObjectNotFoundError:
        _LOGGER.info("Resource %s not found during health check", resource_id)
        return False, "Resource not found"
    except Exception as err:
        raise HealthCheckError(
            f"failed to get resource {resource_id.kind} {resource_id.namespaced_name}: {err}"
        ) from err

    if (checker := _CHECKERS.get((resource_id.group, resource_id.kind))) is None:
        _LOGGER.debug(
            "No specific health check for %s, assuming exists implies healthy",
            resource_id,
        )
        return True, f"Exists, specific health check for {resource_id.kind} not implemented"
    return await checker(store, obj)
