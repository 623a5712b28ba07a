"""Task applying every desired object of a component."""

from typing import Any

from appdef.applier import ApplyOperation
from appdef.events import EventType
from appdef.exceptions import OwnershipError
from appdef.manifest import ApplicationDefinition
from appdef.status import mark_error_unless_failed

from .task import Task, TaskContext, TaskFailedError, TaskResult

__all__ = ["ApplyTask", "set_controller_reference"]


def set_controller_reference(owner: ApplicationDefinition, obj: dict[str, Any]) -> None:
    """Set the owner as the controlling owner reference of the object.

    Raises:
        OwnershipError: If the owner has no uid, the object lives in another
            namespace or another controller already owns the object.
    """
    metadata = obj.setdefault("metadata", {})
    name = metadata.get("name")
    if not owner.uid:
        raise OwnershipError(
            f"owner {owner.namespace}/{owner.name} has no uid, cannot own {name}"
        )
    if metadata.get("namespace") != owner.namespace:
        raise OwnershipError(
            f"cross-namespace owner references are disallowed, owner's namespace "
            f"{owner.namespace}, obj's namespace {metadata.get('namespace')}"
        )
    refs = []
    for ref in metadata.get("ownerReferences") or ():
        if ref.get("uid") == owner.uid:
            continue
        if ref.get("controller"):
            raise OwnershipError(
                f"Object {metadata.get('namespace')}/{name} is already owned by "
                f"another {ref.get('kind')} controller {ref.get('name')}"
            )
        refs.append(ref)
    refs.append(owner.owner_reference())
    metadata["ownerReferences"] = refs


class ApplyTask(Task):
    """Applies the component's objects in key order.

    A failing object does not stop the remaining ones. The task fails with the
    first error once every object was attempted.
    """

    async def execute(self, ctx: TaskContext) -> TaskResult:
        if not ctx.objects:
            ctx.logger.debug("No objects to apply")
            return TaskResult.COMPLETE

        first_error: Exception | None = None
        for key in sorted(ctx.objects):
            obj = ctx.objects[key]
            try:
                set_controller_reference(ctx.owner, obj)
            except OwnershipError as err:
                ctx.logger.error("Failed to set owner reference on %s: %s", key, err)
                ctx.recorder.record(
                    ctx.owner, EventType.WARNING, "SetOwnerRefFailed", str(err)
                )
                mark_error_unless_failed(ctx.status, "SetOwnerRefFailed", str(err))
                raise TaskFailedError(err) from err

            result = await ctx.applier.apply(obj)
            ctx.apply_results[key] = result
            if result.error is not None:
                message = (
                    f"ApplyError: Failed for {key.kind} {key.namespaced_name}: {result.error}"
                )
                ctx.logger.warning("Apply of %s failed: %s", key, result.error)
                mark_error_unless_failed(ctx.status, "ApplyFailed", message)
                ctx.recorder.record(
                    ctx.owner, EventType.WARNING, "ResourceApplyFailed", message
                )
                if first_error is None:
                    first_error = result.error
                continue
            if result.operation == ApplyOperation.NONE:
                ctx.logger.info("Apply of %s reported no operation", key)
            else:
                ctx.logger.debug("Apply of %s: %s", key, result.operation)

        if first_error is not None:
            raise TaskFailedError(first_error)
        return TaskResult.COMPLETE
