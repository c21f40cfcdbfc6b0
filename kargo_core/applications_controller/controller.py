"""Applications Controller module.

Stages that update Argo CD Applications must re-reconcile whenever one of those
Applications changes. This controller keeps a field index from Application
identity to the Stages that reference it and, for every Application event,
requests a refresh of each dependent Stage by patching its refresh annotation.

Key Concepts:
    - Index key: `"<namespace>:<name>"` of an Application, where a Stage
      reference without a namespace means the configured Argo CD namespace
    - Sharding: an instance only handles objects whose shard label matches its
      shard name; the default instance only handles unlabeled objects

Integration Points:
    - kargo_core.store.Store: Provides the field index and annotation patches
"""

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any

from kargo_core.config import ApplicationsControllerConfig
from kargo_core.manifest import (
    APPLICATION_KIND,
    REFRESH_ANNOTATION_KEY,
    SHARD_LABEL_KEY,
    STAGE_KIND,
    BaseManifest,
    NamedResource,
    Stage,
)
from kargo_core.store import IndexFunc, Store, StoreEvent
from kargo_core.task import TaskService, get_task_service

_LOGGER = logging.getLogger(__name__)

STAGES_BY_ARGOCD_APPLICATIONS_INDEX = "stagesByArgoCDApplications"


def application_key(namespace: str, name: str) -> str:
    """Return the index key of an Application."""
    return f"{namespace}:{name}"


def in_shard(labels: dict[str, str], shard_name: str | None) -> bool:
    """Return True if an object with the labels belongs to the shard."""
    if shard_name:
        return labels.get(SHARD_LABEL_KEY) == shard_name
    return SHARD_LABEL_KEY not in labels


def index_stages_by_app(shard_name: str | None, argocd_namespace: str) -> IndexFunc:
    """Return an index function mapping a Stage to the Applications it updates."""

    def index(obj: BaseManifest) -> list[str]:
        if not isinstance(obj, Stage) or obj.promotion_mechanisms is None:
            return []
        if not in_shard(obj.labels, shard_name):
            return []
        return [
            application_key(
                update.app_namespace_or_default(argocd_namespace), update.app_name
            )
            for update in obj.promotion_mechanisms.argocd_app_updates
        ]

    return index


async def refresh_stage(store: Store, resource_id: NamedResource) -> None:
    """Request a refresh of a Stage by setting its refresh annotation."""
    await store.patch_annotations(
        resource_id,
        {REFRESH_ANNOTATION_KEY: datetime.now(timezone.utc).isoformat()},
    )


class ApplicationsController:
    """Refreshes the Stages that depend on an Application when it changes."""

    def __init__(
        self,
        store: Store,
        config: ApplicationsControllerConfig | None = None,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize the ApplicationsController and register the Stage index."""
        self._store = store
        self._config = config or ApplicationsControllerConfig()
        self._task_service = task_service or get_task_service()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._store.add_index(
            STAGE_KIND,
            STAGES_BY_ARGOCD_APPLICATIONS_INDEX,
            index_stages_by_app(
                self._config.shard_name, self._config.argocd_namespace
            ),
        )

        def listener(resource_id: NamedResource, obj: BaseManifest) -> None:
            if resource_id.kind != APPLICATION_KIND:
                return
            if not in_shard(getattr(obj, "labels", {}), self._config.shard_name):
                _LOGGER.debug("Ignoring %s from another shard", resource_id)
                return
            task = self._task_service.create_task(
                self.reconcile(resource_id), name=f"refresh-{resource_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._remove_listeners = [
            self._store.add_listener(event, listener)
            for event in (
                StoreEvent.OBJECT_ADDED,
                StoreEvent.OBJECT_UPDATED,
                StoreEvent.OBJECT_DELETED,
            )
        ]

    async def close(self) -> None:
        """Stop watching Applications and cancel in progress refreshes."""
        for remove in self._remove_listeners:
            remove()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def reconcile(self, resource_id: NamedResource) -> None:
        """Refresh every Stage that updates the Application.

        Every Stage is attempted even when refreshing another one fails. The
        first error is raised once all Stages were attempted.
        """
        key = application_key(
            resource_id.namespace or self._config.argocd_namespace, resource_id.name
        )
        stages = await self._store.list_objects(
            STAGE_KIND,
            field_selector=(STAGES_BY_ARGOCD_APPLICATIONS_INDEX, key),
        )
        errors: list[Exception] = []
        for stage in stages:
            try:
                await refresh_stage(self._store, stage.resource_id)
            except Exception as err:
                _LOGGER.error(
                    "Failed to refresh Stage %s for Application %s: %s",
                    stage.resource_id,
                    key,
                    err,
                )
                errors.append(err)
                continue
            _LOGGER.debug("Refreshed Stage %s for Application %s", stage.resource_id, key)
        if errors:
            raise errors[0]
