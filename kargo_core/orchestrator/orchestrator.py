"""Orchestrator for kargo-core.

The orchestrator runs the admission webhooks and controllers against a store.
Resources applied through it are admitted the way an API server would admit
them, then stored so that the controllers react to them.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from kargo_core.applications_controller import ApplicationsController
from kargo_core.config import (
    ApplicationsControllerConfig,
    WarehouseControllerConfig,
    WebhookConfig,
)
from kargo_core.manifest import (
    FREIGHT_KIND,
    WAREHOUSE_KIND,
    BaseManifest,
    Freight,
    Project,
    Warehouse,
)
from kargo_core.project_controller import ProjectController
from kargo_core.sources import SourceClients
from kargo_core.store import Store
from kargo_core.task import TaskService
from kargo_core.warehouse_controller import WarehouseController
from kargo_core.webhook import ProjectWebhook, WarehouseWebhook

from .loader import LoadOptions, ResourceLoader

_LOGGER = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    webhook_config: WebhookConfig
    warehouse_controller_config: WarehouseControllerConfig = field(
        default_factory=WarehouseControllerConfig
    )
    applications_controller_config: ApplicationsControllerConfig = field(
        default_factory=ApplicationsControllerConfig
    )
    dry_run: bool = False
    """Only run admission, without storing resources."""


class Orchestrator:
    """Orchestrator for admitting resources and running controllers.

    The orchestrator is responsible for:
    - Managing the lifecycle of controllers
    - Admitting resources before they are written to the store
    - Waiting until the controllers have no work left
    """

    def __init__(
        self,
        store: Store,
        sources: SourceClients,
        config: OrchestratorConfig,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize the orchestrator."""
        self.store = store
        self.sources = sources
        self.config = config
        self.task_service = task_service or TaskService()
        self.controllers: dict[str, Any] = {}
        self._project_webhook = ProjectWebhook(store, config.webhook_config)
        self._warehouse_webhook = WarehouseWebhook()

    async def start(self) -> None:
        """Start all controllers."""
        if self.controllers:
            return
        _LOGGER.info("Starting orchestrator")
        self.controllers = {
            "applications": ApplicationsController(
                self.store,
                self.config.applications_controller_config,
                task_service=self.task_service,
            ),
            "project": ProjectController(self.store, task_service=self.task_service),
            "warehouse": WarehouseController(
                self.store,
                self.sources,
                self.config.warehouse_controller_config,
                task_service=self.task_service,
            ),
        }
        _LOGGER.debug("Initialized controllers: %s", ", ".join(self.controllers))

    async def stop(self) -> None:
        """Stop all controllers and cancel their remaining tasks."""
        if not self.controllers:
            return
        _LOGGER.info("Stopping orchestrator")
        for name, controller in reversed(self.controllers.items()):
            _LOGGER.debug("Stopping controller: %s", name)
            await controller.close()
        if pending := self.task_service.get_num_active_tasks():
            _LOGGER.debug("Cancelling %d pending tasks", pending)
            await self.task_service.cancel_all()
        self.controllers.clear()

    async def apply(self, obj: BaseManifest) -> None:
        """Admit a resource and create or update it in the store.

        Raises:
            KargoException: If admission rejects the resource.
        """
        existing = await self.store.get_object(obj.resource_id, obj.__class__)
        dry_run = self.config.dry_run
        if isinstance(obj, Project):
            if existing is None:
                await self._project_webhook.validate_create(obj, dry_run=dry_run)
            else:
                await self._project_webhook.validate_update(existing, obj)
        elif isinstance(obj, Warehouse):
            if existing is None:
                await self._warehouse_webhook.validate_create(obj, dry_run=dry_run)
            else:
                await self._warehouse_webhook.validate_update(existing, obj)
        if dry_run:
            _LOGGER.info("Admitted %s (dry run)", obj.resource_id)
            return
        if existing is None:
            await self.store.create_object(obj)
            _LOGGER.info("Created %s", obj.resource_id)
            return
        _carry_over(existing, obj)
        await self.store.update_object(obj)
        _LOGGER.info("Updated %s", obj.resource_id)

    async def apply_path(self, path: Path) -> list[BaseManifest]:
        """Apply every resource found in a file or directory, in order."""
        loader = ResourceLoader()
        applied: list[BaseManifest] = []
        async for resource in loader.load(LoadOptions(path=path)):
            await self.apply(resource)
            applied.append(resource)
        return applied

    async def run_until_idle(self) -> None:
        """Wait until no controller has work left."""
        await self.task_service.block_till_done()

    async def freight(self) -> list[Freight]:
        """Return all Freight in the store."""
        return [
            obj
            for obj in await self.store.list_objects(FREIGHT_KIND)
            if isinstance(obj, Freight)
        ]

    async def warehouses(self) -> list[Warehouse]:
        """Return all Warehouses in the store."""
        return [
            obj
            for obj in await self.store.list_objects(WAREHOUSE_KIND)
            if isinstance(obj, Warehouse)
        ]


def _carry_over(existing: BaseManifest, obj: BaseManifest) -> None:
    """Keep server managed fields of an object being replaced."""
    if hasattr(existing, "uid") and hasattr(obj, "uid"):
        obj.uid = existing.uid
    if isinstance(existing, Warehouse) and isinstance(obj, Warehouse):
        obj.status = existing.status
        obj.generation = existing.generation
        if obj.subscriptions != existing.subscriptions:
            obj.generation += 1
