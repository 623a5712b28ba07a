"""Task gating the component task list on its health."""

from appdef.status import check_component_health

from .task import Task, TaskContext, TaskResult

__all__ = ["HealthCheckTask"]


class HealthCheckTask(Task):
    """Waits until the component's declared resource is healthy.

    The task is Pending while the component is not ready and fails only when
    the check itself cannot be performed.
    """

    async def execute(self, ctx: TaskContext) -> TaskResult:
        if ctx.status.resource_id is None:
            ctx.logger.debug("Component resource identity unknown, skipping")
            ctx.status.health = False
            return TaskResult.SKIPPED
        ready = await check_component_health(
            ctx.store,
            ctx.registry,
            ctx.strategy,
            ctx.owner,
            ctx.component,
            ctx.status,
            ctx.config,
        )
        if not ready:
            ctx.logger.debug("Component not ready: %s", ctx.status.message)
            return TaskResult.PENDING
        return TaskResult.COMPLETE
