"""
ApplicationDefinition controller implementation.

This controller drives the cluster state toward the components described by an
ApplicationDefinition. Every convergence pass reads a fresh copy of the
object, builds the desired child objects of each component, applies them
idempotently, aggregates their health and persists the resulting status. A
pass never loops internally; it returns the delay after which the next pass
should run.

Key Concepts:
    - Component: One entry of `spec.components`, handled by the strategy
      registered for its type.
    - Child object: An object built for a component, owned by the
      ApplicationDefinition through a controller owner reference.
    - Finalizer: Guards the cleanup hook of the strategies before the
      ApplicationDefinition is removed from the store.

Dependencies:
    - appdef.store.Store: Source of desired state and target of all writes.
    - appdef.strategy.StrategyRegistry: Component type to strategy lookup.
    - appdef.applier.Applier: Idempotent apply of child objects.
    - appdef.status: Health aggregation and the phase state machine.
"""

import asyncio
import copy
from dataclasses import dataclass, field
from functools import partial
import logging
import time
from typing import Any

from appdef.applier import Applier, ApplyResult, result_key
from appdef.config import ControllerConfig
from appdef.events import EventRecorder, EventType, LoggingEventRecorder
from appdef.exceptions import (
    AppDefException,
    BuildError,
    ConflictError,
    DecodeError,
    InternalError,
    InvalidBuiltObjectError,
    ObjectNotFoundError,
    StoreError,
    ValidationError,
)
from appdef.manifest import (
    APPLICATION_GROUP,
    APPLICATION_KIND,
    ApplicationDefinition,
    ApplicationPhase,
    ApplicationStatus,
    ComponentStatus,
    Condition,
    ConditionStatus,
    CONDITION_READY,
    NamedResource,
    set_labels,
)
from appdef.pipeline import TaskContext, TaskResult, TaskRunner
from appdef.status import (
    PassStage,
    aggregate_health,
    determine_phase,
    has_error,
    mark_error_unless_failed,
    ready_condition,
    set_component_error,
    set_condition,
    status_changed,
)
from appdef.store import Store, StoreEvent
from appdef.strategy import ComponentStrategy, StrategyRegistry, default_registry
from appdef.task import get_task_service

__all__ = ["ApplicationController", "ReconcileResult"]

_LOGGER = logging.getLogger(__name__)

INITIALIZING = "Initializing"
PROCESSING = "Processing"
BUILT = "Built successfully"
APPLIED = "Applied successfully, awaiting health check"

_SCALABLE_KINDS = frozenset({"Deployment", "StatefulSet"})


@dataclass
class ReconcileResult:
    """Outcome of one convergence pass."""

    requeue: bool = False
    """Run the next pass right away."""

    requeue_after: float | None = None
    """Run the next pass after this many seconds."""

    error: Exception | None = None
    """The first error of the pass, if any."""


@dataclass
class _PassState:
    """State local to one convergence pass."""

    doc: dict[str, Any]
    app: ApplicationDefinition
    original_status: ApplicationStatus
    statuses: dict[str, ComponentStatus] = field(default_factory=dict)
    strategies: dict[str, ComponentStrategy] = field(default_factory=dict)
    configs: dict[str, Any] = field(default_factory=dict)
    objects: dict[str, dict[NamedResource, dict[str, Any]]] = field(
        default_factory=dict
    )
    apply_results: dict[NamedResource, ApplyResult] = field(default_factory=dict)
    first_error: Exception | None = None
    error_stage: PassStage | None = None
    pending: bool = False
    resuming: bool = False

    def record_error(self, err: Exception, stage: PassStage) -> None:
        if self.first_error is None:
            self.first_error = err
            self.error_stage = stage
        else:
            _LOGGER.debug("Ignoring subsequent error during %s: %s", stage, err)


class ApplicationController:
    """
    Controller for reconciling ApplicationDefinition resources.

    `reconcile` runs a single convergence pass and may be called directly.
    `start` additionally watches the store and dispatches passes, one at a
    time per object, honoring the returned requeue delays.
    """

    def __init__(
        self,
        store: Store,
        config: ControllerConfig,
        registry: StrategyRegistry | None = None,
        recorder: EventRecorder | None = None,
    ) -> None:
        """
        Initialize the controller.

        The registry is frozen: strategies must be registered before the
        controller is created.

        Args:
            store: The store holding ApplicationDefinitions and child objects
            config: The configuration for the controller
            registry: Strategies per component type, the default registry if unset
            recorder: Sink for events, events are logged if unset
        """
        self._store = store
        self._config = config
        self._registry = registry or default_registry()
        self._registry.freeze()
        self._recorder = recorder or LoggingEventRecorder()
        self._applier = Applier(store, config.applier)
        self._runner = TaskRunner()
        self._task_service = get_task_service()
        self._tasks: list[asyncio.Task[None]] = []
        self._pass_tasks: set[asyncio.Task[Any]] = set()
        self._timers: dict[NamedResource, asyncio.Task[None]] = {}

    def start(self) -> None:
        """Start watching the store and reconciling objects as they change."""
        _LOGGER.info("Starting ApplicationController")
        self._tasks.append(
            self._task_service.create_background_task(
                self._watch(), name="appdef-controller-watch"
            )
        )

    async def close(self) -> None:
        """Clean up any resources used by the controller.

        This method cancels the watch, pending requeues and running passes, and
        waits for them to complete.
        """
        _LOGGER.info("Closing ApplicationController, cancelling tasks")
        tasks = [*self._tasks, *self._timers.values(), *self._pass_tasks]
        for task in tasks:
            task.cancel()
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            pass
        self._tasks.clear()
        self._timers.clear()
        self._pass_tasks.clear()

    def enqueue(self, resource_id: NamedResource) -> None:
        """Request a pass for the object.

        A request made while a pass for the same object runs results in
        exactly one more pass once it finishes.
        """
        task = self._task_service.create_keyed_task(
            resource_id,
            partial(self._run_pass, resource_id),
            name=f"reconcile-{resource_id.namespaced_name}",
        )
        if task not in self._pass_tasks:
            self._pass_tasks.add(task)
            task.add_done_callback(self._pass_tasks.discard)

    async def _watch(self) -> None:
        """Watch the store and enqueue the ApplicationDefinitions affected by each change."""
        _LOGGER.info("Watching for %s objects in the store", APPLICATION_KIND)
        async for event, resource_id, obj in self._store.watch():
            if resource_id.kind == APPLICATION_KIND and resource_id.group == APPLICATION_GROUP:
                if event == StoreEvent.OBJECT_DELETED:
                    if (timer := self._timers.pop(resource_id, None)) is not None:
                        timer.cancel()
                    continue
                if event == StoreEvent.STATUS_UPDATED:
                    continue
                self.enqueue(resource_id)
                continue
            for ref in (obj.get("metadata") or {}).get("ownerReferences") or ():
                if ref.get("controller") and ref.get("kind") == APPLICATION_KIND:
                    self.enqueue(
                        NamedResource(
                            api_version=ref.get("apiVersion", ""),
                            kind=APPLICATION_KIND,
                            namespace=resource_id.namespace,
                            name=ref.get("name", ""),
                        )
                    )
        _LOGGER.info("Stopped watching for %s objects", APPLICATION_KIND)

    async def _run_pass(self, resource_id: NamedResource) -> None:
        result = await self.reconcile(resource_id)
        if result.error is not None:
            _LOGGER.warning(
                "Reconcile of %s returned error: %s", resource_id.namespaced_name, result.error
            )
        if (timer := self._timers.pop(resource_id, None)) is not None:
            timer.cancel()
        if result.requeue_after:
            self._timers[resource_id] = self._task_service.create_background_task(
                self._requeue_later(resource_id, result.requeue_after)
            )
        elif result.requeue:
            self.enqueue(resource_id)

    async def _requeue_later(self, resource_id: NamedResource, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._timers.get(resource_id) is asyncio.current_task():
            del self._timers[resource_id]
        self.enqueue(resource_id)

    async def reconcile(self, resource_id: NamedResource) -> ReconcileResult:
        """
        Run one convergence pass for an ApplicationDefinition.

        Args:
            resource_id: The identifier of the ApplicationDefinition.

        Returns:
            Whether and when the next pass should run, and the first error.
        """
        if (
            self._config.watch_namespace
            and resource_id.namespace != self._config.watch_namespace
        ):
            _LOGGER.debug("Ignoring %s outside of the watched namespace", resource_id)
            return ReconcileResult()
        start = time.monotonic()
        try:
            async with asyncio.timeout(self._config.reconcile_timeout):
                result = await self._reconcile(resource_id)
        except TimeoutError:
            err = InternalError(
                f"reconcile of {resource_id.namespaced_name} timed out after "
                f"{self._config.reconcile_timeout}s"
            )
            _LOGGER.error("%s", err)
            return ReconcileResult(requeue_after=self._config.requeue_after, error=err)
        _LOGGER.debug(
            "Reconcile of %s finished in %.3fs: %s",
            resource_id.namespaced_name,
            time.monotonic() - start,
            result,
        )
        return result

    async def _reconcile(self, resource_id: NamedResource) -> ReconcileResult:
        try:
            doc = await self._store.get(resource_id)
        except ObjectNotFoundError:
            _LOGGER.info(
                "ApplicationDefinition %s not found, assuming deleted",
                resource_id.namespaced_name,
            )
            return ReconcileResult()
        except StoreError as err:
            _LOGGER.error(
                "Failed to get ApplicationDefinition %s: %s", resource_id.namespaced_name, err
            )
            return ReconcileResult(requeue_after=self._config.requeue_after, error=err)
        try:
            app = ApplicationDefinition.parse_doc(doc)
        except DecodeError as err:
            return await self._fail_decode(resource_id, doc, err)
        except AppDefException as err:
            _LOGGER.error("Invalid ApplicationDefinition %s: %s", resource_id.namespaced_name, err)
            return ReconcileResult(error=err)

        state = _PassState(
            doc=doc, app=app, original_status=copy.deepcopy(app.status)
        )
        self._recorder.record(
            app, EventType.NORMAL, "ReconcileStarted", "Starting reconciliation"
        )

        try:
            state.statuses = self._initialize_statuses(app)
        except ValidationError as err:
            if app.deleting:
                return await self._finalize(state)
            return await self._fail_initialization(state, err)

        if app.deleting:
            return await self._finalize(state)
        if not app.components:
            return await self._handle_empty(state)
        if self._config.finalizer not in app.finalizers:
            return await self._add_finalizer(state)
        if app.status.phase in (None, ApplicationPhase.PENDING):
            return await self._set_initial_phase(state)
        if app.suspend and app.status.phase == ApplicationPhase.SUSPENDED:
            _LOGGER.info(
                "ApplicationDefinition %s is suspended, skipping reconciliation",
                resource_id.namespaced_name,
            )
            return ReconcileResult()

        try:
            await self._build(state)
        except AppDefException as err:
            _LOGGER.error(
                "Processing components of %s failed: %s", resource_id.namespaced_name, err
            )
            state.record_error(err, PassStage.BUILD)
        else:
            self._handle_suspend(state)
            await self._apply(state)

        all_ready = False
        if state.first_error is None:
            summary = await aggregate_health(
                self._store, self._registry, app, state.statuses, state.configs
            )
            all_ready = summary.all_ready
            if summary.error is not None:
                _LOGGER.error("Error occurred during health checking: %s", summary.error)
                state.record_error(summary.error, PassStage.HEALTH)
        else:
            for status in state.statuses.values():
                mark_error_unless_failed(
                    status, "OverallReconcileError", str(state.first_error)
                )

        return await self._finish(state, all_ready)

    def _initialize_statuses(self, app: ApplicationDefinition) -> dict[str, ComponentStatus]:
        """Create a fresh status entry per component.

        Raises:
            ValidationError: If a component name is empty or duplicated.
        """
        statuses: dict[str, ComponentStatus] = {}
        for component in app.components:
            if not component.name:
                raise ValidationError("component name cannot be empty in spec")
            if component.name in statuses:
                raise ValidationError(
                    f"duplicate component name found in spec: {component.name}"
                )
            strategy = self._registry.get(component.type)
            statuses[component.name] = ComponentStatus(
                name=component.name,
                kind=component.kind or (strategy.workload_kind if strategy else ""),
                api_version=component.api_version
                or (strategy.workload_api_version if strategy else ""),
                health=False,
                message=INITIALIZING,
            )
        return statuses

    async def _fail_decode(
        self, resource_id: NamedResource, doc: dict[str, Any], err: DecodeError
    ) -> ReconcileResult:
        """Persist a spec that does not decode as a failed pass.

        A deleted object only has its finalizer released, the cleanup hooks
        need the components that did not decode.
        """
        metadata = doc.get("metadata") or {}
        app = ApplicationDefinition(
            api_version=resource_id.api_version,
            name=resource_id.name,
            namespace=resource_id.namespace or "",
            uid=metadata.get("uid"),
            generation=metadata.get("generation", 0),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=metadata.get("deletionTimestamp"),
            status=ApplicationStatus.from_status_doc(doc.get("status")),
        )
        state = _PassState(doc=doc, app=app, original_status=copy.deepcopy(app.status))
        if app.deleting:
            return await self._finalize(state)
        return await self._fail_initialization(state, err)

    async def _fail_initialization(
        self, state: _PassState, err: ValidationError | DecodeError
    ) -> ReconcileResult:
        """Persist a failure to initialize the pass, keeping the previous component statuses."""
        app = state.app
        _LOGGER.error("Initialization of %s/%s failed: %s", app.namespace, app.name, err)
        decision = determine_phase(
            state.original_status.phase, err, False, stage=PassStage.INITIALIZE
        )
        app.status.phase = decision.phase
        app.status.conditions = set_condition(
            app.status.conditions, ready_condition(decision, app.generation)
        )
        self._recorder.record(
            app, EventType.WARNING, "ReconcileFailed", f"Reconciliation failed: {err}"
        )
        conflict, _ = await self._persist_status(state)
        return self._result(conflict, err, requeue=True)

    async def _finalize(self, state: _PassState) -> ReconcileResult:
        """Run the cleanup hooks and release the finalizer."""
        app = state.app
        if self._config.finalizer not in app.finalizers:
            return ReconcileResult()
        _LOGGER.info("Performing cleanup of %s/%s before finalizer removal", app.namespace, app.name)
        for component in app.components:
            if (strategy := self._registry.get(component.type)) is None:
                continue
            try:
                await strategy.cleanup(self._store, self._registry, app, component)
            except Exception as err:
                _LOGGER.error(
                    "Cleanup of component %s failed: %s", component.name, err, exc_info=True
                )
                return ReconcileResult(requeue_after=self._config.requeue_after, error=err)
        try:
            await self._update_finalizer(state, add=False)
        except ConflictError as err:
            return ReconcileResult(
                requeue_after=self._config.conflict_requeue_after, error=err
            )
        except StoreError as err:
            _LOGGER.error("Failed to remove finalizer: %s", err)
            return ReconcileResult(requeue_after=self._config.requeue_after, error=err)
        _LOGGER.info("Finalizer removed from %s/%s", app.namespace, app.name)
        return ReconcileResult()

    async def _add_finalizer(self, state: _PassState) -> ReconcileResult:
        _LOGGER.info("Adding finalizer to %s/%s", state.app.namespace, state.app.name)
        try:
            await self._update_finalizer(state, add=True)
        except ConflictError as err:
            return ReconcileResult(
                requeue_after=self._config.conflict_requeue_after, error=err
            )
        except StoreError as err:
            _LOGGER.error("Failed to add finalizer: %s", err)
            return ReconcileResult(requeue_after=self._config.requeue_after, error=err)
        return ReconcileResult(requeue=True)

    async def _update_finalizer(self, state: _PassState, add: bool) -> None:
        """Add or remove the finalizer, re-fetching the object on conflict.

        Raises:
            ConflictError: If every attempt conflicted.
        """
        finalizer = self._config.finalizer
        doc = copy.deepcopy(state.doc)
        for attempt in range(1, self._config.finalizer_retries + 1):
            metadata = doc.setdefault("metadata", {})
            finalizers = [f for f in metadata.get("finalizers") or () if f != finalizer]
            if add:
                finalizers.append(finalizer)
            metadata["finalizers"] = finalizers
            try:
                await self._store.update(doc)
                return
            except ConflictError:
                _LOGGER.info("Conflict updating finalizer, retrying (attempt %d)", attempt)
            try:
                doc = await self._store.get(state.app.resource_id)
            except ObjectNotFoundError:
                if not add:
                    return
                raise
        raise ConflictError(
            f"failed to update finalizer after {self._config.finalizer_retries} attempts"
        )

    async def _handle_empty(self, state: _PassState) -> ReconcileResult:
        app = state.app
        _LOGGER.info("ApplicationDefinition %s/%s has no components defined", app.namespace, app.name)
        app.status.phase = ApplicationPhase.AVAILABLE
        app.status.components = []
        app.status.conditions = set_condition(
            app.status.conditions,
            Condition(
                type=CONDITION_READY,
                status=ConditionStatus.TRUE,
                reason="NoComponentsDefined",
                message="Application has no components defined",
                observed_generation=app.generation,
            ),
        )
        conflict, write_error = await self._persist_status(state)
        return self._result(conflict, write_error)

    async def _set_initial_phase(self, state: _PassState) -> ReconcileResult:
        app = state.app
        app.status.phase = ApplicationPhase.PROCESSING
        app.status.conditions = set_condition(
            app.status.conditions,
            Condition(
                type=CONDITION_READY,
                status=ConditionStatus.FALSE,
                reason="Processing",
                message="Starting component processing",
                observed_generation=app.generation,
            ),
        )
        conflict, write_error = await self._persist_status(state, force=True)
        if conflict or write_error:
            return self._result(conflict, write_error)
        self._recorder.record(
            app, EventType.NORMAL, "Processing", "Starting component processing"
        )
        return ReconcileResult(requeue=True)

    async def _build(self, state: _PassState) -> None:
        """Build the desired objects of every component.

        Raises:
            AppDefException: On the first component that fails to build. Its
                status records the failure.
        """
        app = state.app
        labels = self._config.labels
        seen: dict[NamedResource, str] = {}
        for component in app.components:
            status = state.statuses[component.name]
            status.message = PROCESSING

            if (strategy := self._registry.get(component.type)) is None:
                err = BuildError(
                    f"no builder strategy registered for component type: {component.type}",
                    reason="BuilderStrategyNotFound",
                )
                set_component_error(status, err.reason, str(err))
                self._recorder.record(app, EventType.WARNING, err.reason, str(err))
                raise err
            state.strategies[component.name] = strategy

            try:
                config = self._registry.decode_config(component.type, component.properties)
            except DecodeError as err:
                message = f"failed to unmarshal properties for component '{component.name}': {err}"
                set_component_error(status, "ConfigUnmarshalFailed", message)
                raise DecodeError(message) from err
            state.configs[component.name] = config

            try:
                objects = await strategy.build_objects(
                    self._store, self._registry, app, component, config
                )
            except Exception as err:
                build_err = BuildError(
                    f"builder strategy failed for component {component.name}: {err}"
                )
                set_component_error(status, build_err.reason, str(build_err))
                self._recorder.record(app, EventType.WARNING, "BuilderFailed", str(build_err))
                raise build_err from err

            desired: dict[NamedResource, dict[str, Any]] = {}
            for obj in objects or ():
                if obj is None:
                    _LOGGER.info("Builder for %s returned a None object, skipping", component.name)
                    continue
                metadata = (obj.get("metadata") or {}) if isinstance(obj, dict) else {}
                if (
                    not isinstance(obj, dict)
                    or not obj.get("apiVersion")
                    or not obj.get("kind")
                    or not metadata.get("name")
                    or not metadata.get("namespace")
                ):
                    kind = obj.get("kind", "unknown") if isinstance(obj, dict) else type(obj).__name__
                    err = InvalidBuiltObjectError(
                        f"builder returned object of type {kind} without complete "
                        f"identity for component {component.name}"
                    )
                    set_component_error(status, err.reason, str(err))
                    raise err
                key = result_key(obj)
                if (other := seen.get(key)) is not None:
                    err = BuildError(
                        f"object {key.kind} {key.namespaced_name} of component "
                        f"{component.name} was already built by component {other}",
                        reason="DuplicateBuiltObject",
                    )
                    set_component_error(status, err.reason, str(err))
                    raise err
                seen[key] = component.name
                obj = copy.deepcopy(obj)
                set_labels(
                    obj,
                    {
                        labels.application_name: app.name,
                        labels.component_type: component.type,
                        labels.component_instance: component.name,
                        labels.managed_by: self._config.operator_name,
                    },
                )
                desired[key] = obj
                if (
                    not status.resource_name
                    and key.kind == status.kind
                    and (not status.api_version or key.api_version == status.api_version)
                ):
                    status.resource_name = key.name
                    status.api_version = key.api_version
                    status.namespace = key.namespace or ""
                    _LOGGER.debug("Identified primary resource %s for %s", key, component.name)

            if not status.kind and desired:
                key = next(iter(desired))
                status.kind = key.kind
                status.api_version = key.api_version
                status.resource_name = key.name
                status.namespace = key.namespace or ""
                _LOGGER.debug("Using first object %s as primary resource of %s", key, component.name)

            state.objects[component.name] = desired
            status.message = BUILT
            _LOGGER.debug(
                "Component %s built %d objects", component.name, len(desired)
            )

    def _handle_suspend(self, state: _PassState) -> None:
        """Scale workloads to zero while suspended and restore them on resume."""
        app = state.app
        suspended = app.status.suspended_replicas
        for name, objects in state.objects.items():
            for key, obj in objects.items():
                if key.kind not in _SCALABLE_KINDS or key.group != "apps":
                    continue
                spec = obj.setdefault("spec", {})
                if app.suspend:
                    if name not in suspended:
                        suspended[name] = spec.get("replicas", 1)
                        _LOGGER.debug(
                            "Recording %d replicas of %s for suspend", suspended[name], key
                        )
                    spec["replicas"] = 0
                elif name in suspended:
                    spec["replicas"] = suspended.pop(name)
                    _LOGGER.info(
                        "Resuming %s of component %s with %d replicas",
                        key,
                        name,
                        spec["replicas"],
                    )
        state.resuming = (
            not app.suspend and state.original_status.phase == ApplicationPhase.SUSPENDED
        )

    async def _apply(self, state: _PassState) -> None:
        """Run the task list of every component, continuing past failures."""
        app = state.app
        for component in app.components:
            status = state.statuses[component.name]
            strategy = state.strategies[component.name]
            ctx = TaskContext(
                owner=app,
                component=component,
                status=status,
                config=state.configs[component.name],
                objects=state.objects.get(component.name, {}),
                apply_results=state.apply_results,
                applier=self._applier,
                strategy=strategy,
                registry=self._registry,
                store=self._store,
                recorder=self._recorder,
                logger=logging.LoggerAdapter(
                    _LOGGER, {"component": component.name, "type": component.type}
                ),
            )
            result, err = await self._runner.run(ctx, strategy.tasks())
            if result == TaskResult.FAILED:
                _LOGGER.error("Tasks of component %s failed: %s", component.name, err)
                state.record_error(
                    err or InternalError(f"tasks of {component.name} failed"),
                    PassStage.APPLY,
                )
            elif result == TaskResult.PENDING:
                state.pending = True
            if status.message == BUILT and not has_error(status):
                status.message = APPLIED

    async def _finish(self, state: _PassState, all_ready: bool) -> ReconcileResult:
        """Decide the phase, persist the status and compute the next delay."""
        app = state.app
        previous = state.original_status.phase
        if state.resuming:
            previous = ApplicationPhase.APPLYING
        decision = determine_phase(
            previous,
            state.first_error,
            all_ready,
            suspended=app.suspend,
            stage=state.error_stage,
        )
        app.status.phase = decision.phase
        app.status.conditions = set_condition(
            app.status.conditions, ready_condition(decision, app.generation)
        )
        app.status.components = [state.statuses[name] for name in sorted(state.statuses)]

        conflict, write_error = await self._persist_status(state)
        error = state.first_error or write_error

        if state.first_error is not None:
            self._recorder.record(
                app,
                EventType.WARNING,
                "ReconcileFailed",
                f"Reconciliation failed: {state.first_error}",
            )
        elif all_ready:
            self._recorder.record(
                app,
                EventType.NORMAL,
                "ReconcileCompleted",
                "Reconciliation completed successfully, all components ready",
            )
        else:
            self._recorder.record(
                app,
                EventType.NORMAL,
                "ReconcileProgressing",
                "Reconciliation in progress, waiting for components to be ready",
            )
        _LOGGER.info(
            "Reconciliation of %s/%s completed: phase=%s ready=%s",
            app.namespace,
            app.name,
            app.status.phase,
            all_ready,
        )
        waiting = not all_ready and not app.suspend
        return self._result(conflict, error, requeue=waiting or state.pending)

    async def _persist_status(
        self, state: _PassState, force: bool = False
    ) -> tuple[bool, Exception | None]:
        """Write the status when it changed.

        Returns:
            Whether the write conflicted, and the error of a failed write.
        """
        app = state.app
        app.status.observed_generation = app.generation
        if not force and not status_changed(state.original_status, app.status):
            _LOGGER.debug("Status of %s/%s unchanged, skipping update", app.namespace, app.name)
            return False, None
        doc = copy.deepcopy(state.doc)
        doc["status"] = app.status.to_dict()
        try:
            await self._store.update_status(doc)
        except ConflictError as err:
            _LOGGER.info("Status update conflict for %s/%s: %s", app.namespace, app.name, err)
            return True, err
        except StoreError as err:
            _LOGGER.error("Failed to update status of %s/%s: %s", app.namespace, app.name, err)
            return False, err
        _LOGGER.debug("Status of %s/%s updated to phase %s", app.namespace, app.name, app.status.phase)
        return False, None

    def _result(
        self, conflict: bool, error: Exception | None, requeue: bool = False
    ) -> ReconcileResult:
        if conflict:
            return ReconcileResult(
                requeue_after=self._config.conflict_requeue_after, error=error
            )
        if error is not None or requeue:
            return ReconcileResult(requeue_after=self._config.requeue_after, error=error)
        return ReconcileResult()
