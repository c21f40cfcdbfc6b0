"""Warehouse Controller module.

This controller discovers new Freight for Warehouses. For every subscription of
a Warehouse it lists the candidates offered by the artifact source, selects the
newest one according to the subscription's selection strategy and bundles the
chosen artifacts into a single Freight object.

Key Concepts:
    - Warehouse: A set of subscriptions to artifact sources
    - Freight: An immutable bundle of one artifact per subscription, named by
      a fingerprint of its contents
    - Status: The last error and the last successfully observed generation

Integration Points:
    - kargo_core.store.Store: Warehouses are read from and Freight written to it
    - kargo_core.sources.SourceClients: List candidates from artifact sources
    - kargo_core.selection: Chooses the newest candidate
"""

import asyncio
from collections.abc import Awaitable
import logging
from typing import Any, TypeVar, assert_never

from kargo_core.config import WarehouseControllerConfig
from kargo_core.exceptions import (
    ObjectNotFoundError,
    PlatformUnavailableError,
    TransientSourceError,
)
from kargo_core.manifest import (
    WAREHOUSE_KIND,
    BaseManifest,
    Chart,
    ChartSubscription,
    Freight,
    GitCommit,
    GitSubscription,
    Image,
    ImageSubscription,
    NamedResource,
    Subscription,
    Warehouse,
    WarehouseStatus,
)
from kargo_core.selection import (
    Candidate,
    ChartCandidate,
    GitCandidate,
    ImageCandidate,
    select,
)
from kargo_core.sources import SourceClients
from kargo_core.store import CreateResult, Store, StoreEvent
from kargo_core.task import TaskService, get_task_service

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class WarehouseController:
    """Controller that discovers Freight for Warehouses.

    A reconciliation pass is scheduled whenever a Warehouse is added or
    updated. Passes for the same Warehouse may overlap; Freight is content
    addressed so identical passes create a single Freight object.
    """

    def __init__(
        self,
        store: Store,
        sources: SourceClients,
        config: WarehouseControllerConfig | None = None,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize the WarehouseController."""
        self._store = store
        self._sources = sources
        self._config = config or WarehouseControllerConfig()
        self._task_service = task_service or get_task_service()
        self._tasks: set[asyncio.Task[Any]] = set()

        def listener(resource_id: NamedResource, obj: BaseManifest) -> None:
            if resource_id.kind != WAREHOUSE_KIND:
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
        """Stop watching Warehouses and cancel in progress passes."""
        for remove in self._remove_listeners:
            remove()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def reconcile(self, resource_id: NamedResource) -> Freight | None:
        """Run one reconciliation pass for a Warehouse.

        Returns the discovered Freight, or None when no Freight was produced.
        Failures are recorded in the Warehouse status rather than raised.
        """
        warehouse = await self._store.get_object(resource_id, Warehouse)
        if warehouse is None:
            _LOGGER.debug("Warehouse %s no longer exists", resource_id)
            return None
        _LOGGER.info("Reconciling Warehouse %s", resource_id)
        try:
            freight = await self._discover(warehouse)
            if freight is not None:
                result = await self._store.create_if_absent(freight)
                if result == CreateResult.CREATED:
                    _LOGGER.info("Created Freight %s for %s", freight.name, resource_id)
                else:
                    _LOGGER.debug(
                        "Freight %s for %s already exists", freight.name, resource_id
                    )
        except Exception as err:
            _LOGGER.error("Failed to reconcile Warehouse %s: %s", resource_id, err)
            await self._update_status(
                resource_id,
                WarehouseStatus(
                    error=str(err),
                    observed_generation=warehouse.status.observed_generation,
                ),
            )
            return None
        if not await self._update_status(
            resource_id,
            WarehouseStatus(error=None, observed_generation=warehouse.generation),
        ):
            return None
        return freight

    async def _update_status(
        self, resource_id: NamedResource, status: WarehouseStatus
    ) -> bool:
        """Record the status, returning False if the Warehouse was deleted."""
        try:
            await self._store.update_status(resource_id, status)
        except ObjectNotFoundError:
            _LOGGER.debug(
                "Warehouse %s was deleted during reconciliation", resource_id
            )
            return False
        return True

    async def _discover(self, warehouse: Warehouse) -> Freight | None:
        """Select one artifact per subscription, None if any has no candidate."""
        commits: list[GitCommit] = []
        images: list[Image] = []
        charts: list[Chart] = []
        missing: list[str] = []
        for repo_subscription in warehouse.subscriptions:
            subscription = repo_subscription.subscription
            client = self._sources.client_for(subscription)
            candidates = await self._with_timeout(
                subscription, client.list_candidates(subscription)
            )
            if (chosen := await self._choose(subscription, candidates)) is None:
                missing.append(subscription.repo_url)
                continue
            artifact = _to_artifact(subscription, chosen)
            if isinstance(artifact, GitCommit):
                commits.append(artifact)
            elif isinstance(artifact, Image):
                images.append(artifact)
            else:
                charts.append(artifact)
        if missing:
            _LOGGER.info(
                "No qualifying versions yet for %s: %s",
                warehouse.resource_id,
                ", ".join(missing),
            )
            return None
        return Freight.build(warehouse, commits, images, charts)

    async def _choose(
        self, subscription: Subscription, candidates: list[Any]
    ) -> Candidate | None:
        """Select and resolve the newest candidate.

        Image tags without a variant for the subscribed platform are dropped and
        the next newest tag is selected instead.
        """
        client = self._sources.client_for(subscription)
        remaining = list(candidates)
        while (chosen := select(subscription, remaining)) is not None:
            try:
                return await self._with_timeout(
                    subscription, client.resolve(subscription, chosen)
                )
            except PlatformUnavailableError as err:
                _LOGGER.debug("Skipping candidate: %s", err)
                remaining = [c for c in remaining if c is not chosen]
        return None

    async def _with_timeout(self, subscription: Subscription, aw: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(aw, self._config.fetch_timeout)
        except asyncio.TimeoutError as err:
            raise TransientSourceError(
                f"Timed out after {self._config.fetch_timeout}s fetching {subscription.repo_url}"
            ) from err


def _to_artifact(
    subscription: Subscription, candidate: Candidate
) -> GitCommit | Image | Chart:
    """Convert a chosen candidate to the Freight artifact it represents."""
    if isinstance(subscription, GitSubscription):
        assert isinstance(candidate, GitCandidate)
        return GitCommit(
            repo_url=subscription.repo_url,
            id=candidate.commit_id,
            branch=candidate.branch,
            tag=candidate.tag,
            message=candidate.message,
        )
    if isinstance(subscription, ImageSubscription):
        assert isinstance(candidate, ImageCandidate)
        return Image(
            repo_url=subscription.repo_url,
            tag=candidate.tag,
            digest=candidate.digest,
            git_repo_url=subscription.git_repo_url,
        )
    if isinstance(subscription, ChartSubscription):
        assert isinstance(candidate, ChartCandidate)
        return Chart(
            repo_url=subscription.repo_url,
            version=candidate.version,
            name=subscription.name,
        )
    assert_never(subscription)
