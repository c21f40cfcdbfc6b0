"""Task tracking module.

This module provides a simple task tracking service that allows
controllers to schedule reconciliations and wait for them to finish.
"""

from .context import task_service_context, get_task_service
from .service import TaskService

__all__ = ["get_task_service", "task_service_context", "TaskService"]
