"""Project Controller module.

Completes the ownership of a Project namespace. The project webhook creates
the namespace with only a project label; once the Project exists this
controller adds the owner reference linking the namespace to the Project.
"""

import asyncio
import logging
from typing import Any

from kargo_core.manifest import (
    KARGO_API_VERSION,
    LABEL_TRUE_VALUE,
    NAMESPACE_KIND,
    PROJECT_KIND,
    PROJECT_LABEL_KEY,
    BaseManifest,
    NamedResource,
    Namespace,
    OwnerReference,
    Project,
)
from kargo_core.store import Store, StoreEvent
from kargo_core.task import TaskService, get_task_service

_LOGGER = logging.getLogger(__name__)


class ProjectController:
    """Links Project namespaces to their Project with an owner reference."""

    def __init__(self, store: Store, task_service: TaskService | None = None) -> None:
        """Initialize the ProjectController."""
        self._store = store
        self._task_service = task_service or get_task_service()
        self._tasks: set[asyncio.Task[Any]] = set()

        def listener(resource_id: NamedResource, obj: BaseManifest) -> None:
            if resource_id.kind != PROJECT_KIND:
                return
            task = self._task_service.create_task(
                self.reconcile(resource_id), name=f"reconcile-{resource_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._remove_listeners = [
            self._store.add_listener(StoreEvent.OBJECT_ADDED, listener, flush=True),
            self._store.add_listener(StoreEvent.OBJECT_UPDATED, listener),
        ]

    async def close(self) -> None:
        """Stop watching Projects and cancel in progress passes."""
        for remove in self._remove_listeners:
            remove()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def reconcile(self, resource_id: NamedResource) -> None:
        """Add an owner reference to the Project namespace if it has none."""
        project = await self._store.get_object(resource_id, Project)
        if project is None or not project.uid:
            return
        namespace = await self._store.get_object(
            NamedResource(NAMESPACE_KIND, None, project.name), Namespace
        )
        if namespace is None:
            _LOGGER.debug("Namespace of Project %s does not exist", project.name)
            return
        if namespace.labels.get(PROJECT_LABEL_KEY) != LABEL_TRUE_VALUE:
            _LOGGER.debug("Namespace %s is not a Project namespace", namespace.name)
            return
        if namespace.owner_references:
            if not any(ref.uid == project.uid for ref in namespace.owner_references):
                _LOGGER.warning(
                    "Namespace %s is owned by another resource, not linking Project",
                    namespace.name,
                )
            return
        namespace.owner_references = [
            OwnerReference(
                api_version=KARGO_API_VERSION,
                kind=PROJECT_KIND,
                name=project.name,
                uid=project.uid,
            )
        ]
        await self._store.update_object(namespace)
        _LOGGER.info("Linked namespace %s to Project", namespace.name)
