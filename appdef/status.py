"""Status and health aggregation for an ApplicationDefinition.

This module merges apply outcomes and health signals into a single readiness
verdict, maintains the Ready condition and decides whether the persisted status
changed. Everything here except the health checks is pure.
"""

from dataclasses import dataclass
import datetime
from enum import StrEnum
import logging
from typing import Any, TYPE_CHECKING

from .exceptions import (
    AppDefException,
    ErrorCategory,
    HealthCheckError,
    InternalError,
)
from .health import check_resource_health
from .manifest import (
    CONDITION_READY,
    ApplicationComponent,
    ApplicationDefinition,
    ApplicationPhase,
    ApplicationStatus,
    ComponentStatus,
    Condition,
    ConditionStatus,
)
from .store import Store

if TYPE_CHECKING:
    from .strategy import ComponentStrategy, StrategyRegistry

__all__ = [
    "PassStage",
    "HealthSummary",
    "PhaseDecision",
    "has_error",
    "set_component_error",
    "mark_error_unless_failed",
    "check_component_health",
    "aggregate_health",
    "set_condition",
    "conditions_equal",
    "component_statuses_equal",
    "status_changed",
    "classify_error",
    "determine_phase",
    "ready_condition",
]

_LOGGER = logging.getLogger(__name__)

RESOURCE_INFO_MISSING = "Resource Info Missing"

# Reasons prefixing component messages that record a failure.
_ERROR_REASONS = frozenset(
    {
        "ApplyFailed",
        "AppHealthCheckError",
        "BuilderStrategyNotFound",
        "BuildObjectsFailed",
        "ConfigUnmarshalFailed",
        "DuplicateBuiltObject",
        "HealthCheckError",
        "InvalidBuiltObject",
        "OverallReconcileError",
        "SetOwnerRefFailed",
    }
)
_ERROR_MARKERS = ("Error:", "Failed")


class PassStage(StrEnum):
    """Stage of a convergence pass in which an error occurred."""

    INITIALIZE = "Initialize"
    BUILD = "Build"
    APPLY = "Apply"
    HEALTH = "Health"
    STATUS = "Status"


@dataclass
class HealthSummary:
    """Aggregated readiness of all components."""

    all_ready: bool
    needs_requeue: bool
    error: Exception | None = None


@dataclass
class PhaseDecision:
    """Outcome of the phase state machine for one pass."""

    phase: ApplicationPhase
    ready: ConditionStatus
    reason: str
    message: str


def has_error(status: ComponentStatus) -> bool:
    """Return True if the component message records a failure."""
    reason, sep, _ = status.message.partition(":")
    if sep and reason in _ERROR_REASONS:
        return True
    return any(marker in status.message for marker in _ERROR_MARKERS)


def set_component_error(status: ComponentStatus, reason: str, message: str) -> None:
    """Mark the component unhealthy with a message prefixed by the reason."""
    status.health = False
    status.message = f"{reason}: {message}"


def mark_error_unless_failed(
    status: ComponentStatus, reason: str, message: str
) -> None:
    """Record an error unless a more specific failure is already recorded."""
    if has_error(status):
        status.health = False
        return
    set_component_error(status, reason, message)


async def check_component_health(
    store: Store,
    registry: "StrategyRegistry",
    strategy: "ComponentStrategy",
    owner: ApplicationDefinition,
    component: ApplicationComponent,
    status: ComponentStatus,
    config: Any,
) -> bool:
    """Check structural, then application level health of a component.

    The component status is updated with the result.

    Returns:
        True when the component is ready.

    Raises:
        HealthCheckError: If either check could not be performed. The component
            message is updated before raising.
    """
    if (resource_id := status.resource_id) is None:
        status.health = False
        if not has_error(status):
            status.message = RESOURCE_INFO_MISSING
        return False

    try:
        ready, message = await check_resource_health(store, resource_id)
    except HealthCheckError as err:
        set_component_error(status, "HealthCheckError", str(err))
        raise
    if not ready:
        status.health = False
        status.message = message
        return False

    try:
        app_ready, app_message = await strategy.check_app_health(
            store, registry, owner, component, config
        )
    except Exception as err:
        set_component_error(status, "AppHealthCheckError", str(err))
        if isinstance(err, HealthCheckError):
            raise
        raise HealthCheckError(
            f"application health check failed for component {component.name}: {err}"
        ) from err
    status.health = app_ready
    status.message = app_message or message
    return app_ready


async def aggregate_health(
    store: Store,
    registry: "StrategyRegistry",
    owner: ApplicationDefinition,
    statuses: dict[str, ComponentStatus],
    configs: dict[str, Any],
) -> HealthSummary:
    """Aggregate the health of every component into one verdict.

    Components with unknown identity or with an error recorded earlier in the
    pass are not ready and are not checked. A failing check is recorded
    as the error (the first one wins) and forces a requeue.
    """
    components = {component.name: component for component in owner.components}
    all_ready = True
    first_error: Exception | None = None

    for name in sorted(statuses):
        status = statuses[name]
        if (component := components.get(name)) is None:
            _LOGGER.error("No component spec for status entry %s", name)
            all_ready = False
            first_error = first_error or InternalError(
                f"cannot find component spec for status entry {name}"
            )
            continue
        if has_error(status):
            _LOGGER.debug("Component %s has a recorded error, not probing", name)
            status.health = False
            all_ready = False
            continue
        if (strategy := registry.get(component.type)) is None:
            all_ready = False
            first_error = first_error or InternalError(
                f"no strategy registered for component type {component.type}"
            )
            continue
        try:
            ready = await check_component_health(
                store,
                registry,
                strategy,
                owner,
                component,
                status,
                configs.get(name),
            )
        except HealthCheckError as err:
            _LOGGER.warning("Health check of component %s failed: %s", name, err)
            all_ready = False
            first_error = first_error or err
            continue
        if not ready:
            _LOGGER.debug("Component %s not ready: %s", name, status.message)
            all_ready = False

    return HealthSummary(
        all_ready=all_ready,
        needs_requeue=not all_ready or first_error is not None,
        error=first_error,
    )


def _now() -> str:
    return datetime.datetime.now(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(
    conditions: list[Condition], condition: Condition, now: str | None = None
) -> list[Condition]:
    """Set a condition, replacing any condition of the same type.

    The transition time only moves when the condition status changes.
    """
    existing = next((c for c in conditions if c.type == condition.type), None)
    if existing is not None and existing.status == condition.status:
        condition.last_transition_time = existing.last_transition_time
    else:
        condition.last_transition_time = now or _now()
    result = [c for c in conditions if c.type != condition.type]
    result.append(condition)
    return sorted(result, key=lambda c: c.type)


def _condition_key(condition: Condition) -> tuple[Any, ...]:
    return (
        condition.type,
        condition.status,
        condition.reason,
        condition.message,
        condition.observed_generation,
    )


def conditions_equal(a: list[Condition], b: list[Condition]) -> bool:
    """Compare conditions ignoring transition timestamps and order."""
    return sorted(map(_condition_key, a)) == sorted(map(_condition_key, b))


def component_statuses_equal(
    a: list[ComponentStatus], b: list[ComponentStatus]
) -> bool:
    """Compare component statuses ignoring order."""
    return sorted(a, key=lambda s: s.name) == sorted(b, key=lambda s: s.name)


def status_changed(old: ApplicationStatus, new: ApplicationStatus) -> bool:
    """Return True if the status needs to be persisted."""
    return (
        old.phase != new.phase
        or old.observed_generation != new.observed_generation
        or old.suspended_replicas != new.suspended_replicas
        or not conditions_equal(old.conditions, new.conditions)
        or not component_statuses_equal(old.components, new.components)
    )


_CATEGORY_REASONS = {
    ErrorCategory.VALIDATION: "InitializationFailed",
    ErrorCategory.DECODE: "ProcessingFailed",
    ErrorCategory.BUILD: "ProcessingFailed",
    ErrorCategory.OWNERSHIP: "ApplyFailed",
    ErrorCategory.APPLY: "ApplyFailed",
    ErrorCategory.HEALTH: "HealthCheckFailed",
}
_STAGE_REASONS = {
    PassStage.INITIALIZE: "InitializationFailed",
    PassStage.BUILD: "ProcessingFailed",
    PassStage.APPLY: "ApplyFailed",
    PassStage.HEALTH: "HealthCheckFailed",
}
_KEYWORD_REASONS = (
    (("apply", "Apply", "OwnerRef"), "ApplyFailed"),
    (("build", "Build", "Config", "strategy", "Strategy"), "ProcessingFailed"),
    (("HealthCheck", "health check"), "HealthCheckFailed"),
)


def classify_error(error: Exception, stage: PassStage | None = None) -> str:
    """Return the Ready condition reason for the first error of a pass.

    The error category decides where it is specific. Store, conflict and
    internal errors take the reason of the stage they occurred in. Errors
    from outside the library fall back to keywords in their message.
    """
    if isinstance(error, AppDefException):
        if reason := _CATEGORY_REASONS.get(error.category):
            return reason
        if stage is not None and (reason := _STAGE_REASONS.get(stage)):
            return reason
        return "ReconcileFailed"
    message = str(error)
    for keywords, reason in _KEYWORD_REASONS:
        if any(keyword in message for keyword in keywords):
            return reason
    if stage is not None and (reason := _STAGE_REASONS.get(stage)):
        return reason
    return "ReconcileFailed"


def determine_phase(
    previous: ApplicationPhase | None,
    error: Exception | None,
    all_ready: bool,
    suspended: bool = False,
    stage: PassStage | None = None,
) -> PhaseDecision:
    """Decide the phase and Ready condition at the end of a pass.

    An error always wins, then readiness. A pass that is not ready degrades a
    previously available application and otherwise keeps it applying.
    """
    if error is not None:
        return PhaseDecision(
            ApplicationPhase.FAILED,
            ConditionStatus.FALSE,
            classify_error(error, stage),
            str(error),
        )
    if suspended:
        return PhaseDecision(
            ApplicationPhase.SUSPENDED,
            ConditionStatus.FALSE,
            "Suspended",
            "Application is intentionally suspended",
        )
    if all_ready:
        return PhaseDecision(
            ApplicationPhase.AVAILABLE,
            ConditionStatus.TRUE,
            "ComponentsReady",
            "All components reconciled and healthy",
        )
    if previous in (ApplicationPhase.AVAILABLE, ApplicationPhase.DEGRADED):
        return PhaseDecision(
            ApplicationPhase.DEGRADED,
            ConditionStatus.FALSE,
            "ComponentsDegraded",
            "One or more previously ready components are now unhealthy or not ready",
        )
    return PhaseDecision(
        ApplicationPhase.APPLYING,
        ConditionStatus.FALSE,
        "ComponentsApplying",
        "Waiting for components to become ready and healthy",
    )


def ready_condition(decision: PhaseDecision, generation: int) -> Condition:
    """Return the Ready condition for a phase decision."""
    return Condition(
        type=CONDITION_READY,
        status=decision.ready,
        reason=decision.reason,
        message=decision.message,
        observed_generation=generation,
    )
