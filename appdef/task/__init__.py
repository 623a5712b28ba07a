"""Task tracking module for appdef.

This module provides a task tracking service that allows the controller to
track and wait for asynchronous tasks, and to serialize work per key.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
