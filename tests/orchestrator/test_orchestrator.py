"""Tests for the orchestrator."""

import asyncio
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from kargo_core.config import WebhookConfig
from kargo_core.exceptions import ValidationError
from kargo_core.manifest import (
    NAMESPACE_KIND,
    PROJECT_KIND,
    REFRESH_ANNOTATION_KEY,
    ROLE_BINDING_KIND,
    STAGE_KIND,
    ImageSubscription,
    NamedResource,
    Namespace,
    Project,
    RepoSubscription,
    RoleBinding,
    Stage,
    Warehouse,
)
from kargo_core.orchestrator import Orchestrator, OrchestratorConfig
from kargo_core.sources import SourceClients
from kargo_core.store import InMemoryStore

from ..conftest import COMMIT_ID

TESTDATA = Path("tests/testdata")
CONFIG = OrchestratorConfig(webhook_config=WebhookConfig(kargo_namespace="kargo"))


@pytest.fixture(name="store")
def store_fixture() -> InMemoryStore:
    """Fixture for an empty store."""
    return InMemoryStore()


@pytest.fixture(name="orchestrator")
async def orchestrator_fixture(
    store: InMemoryStore, sources: SourceClients
) -> AsyncGenerator[Orchestrator, None]:
    """Fixture for a started orchestrator."""
    orchestrator = Orchestrator(store, sources, CONFIG)
    await orchestrator.start()
    yield orchestrator
    await orchestrator.stop()


async def test_apply_project_and_warehouse(
    store: InMemoryStore, orchestrator: Orchestrator
) -> None:
    """Test applying a project directory provisions it and discovers Freight."""
    applied = await orchestrator.apply_path(TESTDATA / "team1")
    await orchestrator.run_until_idle()

    assert len(applied) == 6

    project = await store.get_object(
        NamedResource(PROJECT_KIND, None, "team1"), Project
    )
    assert project is not None
    namespace = await store.get_object(
        NamedResource(NAMESPACE_KIND, None, "team1"), Namespace
    )
    assert namespace is not None
    assert [ref.uid for ref in namespace.owner_references] == [project.uid]
    assert await store.get_object(
        NamedResource(
            ROLE_BINDING_KIND, "team1", "kargo-api-server-manage-project-secrets"
        ),
        RoleBinding,
    )

    freight = await orchestrator.freight()
    assert len(freight) == 1
    assert [c.id for c in freight[0].commits] == [COMMIT_ID]
    assert [i.tag for i in freight[0].images] == ["1.2.0"]
    assert [c.version for c in freight[0].charts] == ["0.2.0"]

    [warehouse] = await orchestrator.warehouses()
    assert warehouse.status.error is None
    assert warehouse.status.observed_generation == 1


async def test_applications_refresh_stages(
    store: InMemoryStore, orchestrator: Orchestrator
) -> None:
    """Test applying Applications refreshes the Stages that update them."""
    await orchestrator.apply_path(TESTDATA / "team1")
    await orchestrator.run_until_idle()

    for name in ("test", "prod"):
        stage = await store.get_object(NamedResource(STAGE_KIND, "team1", name), Stage)
        assert stage is not None
        assert REFRESH_ANNOTATION_KEY in stage.annotations


async def test_reapply(store: InMemoryStore, orchestrator: Orchestrator) -> None:
    """Test applying the same resources again keeps server managed fields."""
    await orchestrator.apply_path(TESTDATA / "team1")
    await orchestrator.run_until_idle()
    [before] = await orchestrator.warehouses()

    await orchestrator.apply_path(TESTDATA / "team1")
    await orchestrator.run_until_idle()

    [after] = await orchestrator.warehouses()
    assert after.uid == before.uid
    assert after.generation == 1
    assert len(await orchestrator.freight()) == 1


async def test_warehouse_generation(
    store: InMemoryStore, orchestrator: Orchestrator
) -> None:
    """Test changing subscriptions starts a new generation."""
    await orchestrator.apply_path(TESTDATA / "team1")
    await orchestrator.run_until_idle()
    [warehouse] = await orchestrator.warehouses()

    warehouse.subscriptions[1] = RepoSubscription(
        image=ImageSubscription(
            repo_url="ghcr.io/example/app",
            semver_constraint="^2.0.0",
            platform="linux/amd64",
        )
    )
    await orchestrator.apply(
        Warehouse(
            name=warehouse.name,
            namespace=warehouse.namespace,
            subscriptions=warehouse.subscriptions,
        )
    )
    await orchestrator.run_until_idle()

    [updated] = await orchestrator.warehouses()
    assert updated.generation == 2
    assert updated.status.observed_generation == 2
    freight = await orchestrator.freight()
    assert sorted(f.images[0].tag for f in freight) == ["1.2.0", "2.0.0"]


async def test_invalid_project(store: InMemoryStore, orchestrator: Orchestrator) -> None:
    """Test a rejected Project is not stored."""
    with pytest.raises(ValidationError, match="reference stage a"):
        await orchestrator.apply_path(TESTDATA / "invalid")

    assert await store.list_objects(PROJECT_KIND) == []
    assert await store.list_objects(NAMESPACE_KIND) == []


async def test_dry_run(store: InMemoryStore, sources: SourceClients) -> None:
    """Test a dry run admits resources without storing them."""
    orchestrator = Orchestrator(
        store,
        sources,
        OrchestratorConfig(
            webhook_config=WebhookConfig(kargo_namespace="kargo"), dry_run=True
        ),
    )
    await orchestrator.start()

    await orchestrator.apply_path(TESTDATA / "team1")
    await orchestrator.run_until_idle()

    assert await store.list_objects(PROJECT_KIND) == []
    assert await store.list_objects(NAMESPACE_KIND) == []
    assert await orchestrator.freight() == []
    await orchestrator.stop()


async def test_start_stop(store: InMemoryStore, sources: SourceClients) -> None:
    """Test starting and stopping are idempotent."""
    orchestrator = Orchestrator(store, sources, CONFIG)
    await orchestrator.start()
    controllers = dict(orchestrator.controllers)
    await orchestrator.start()
    assert orchestrator.controllers == controllers

    await orchestrator.stop()
    await orchestrator.stop()
    assert orchestrator.controllers == {}


async def test_stop_cancels_pending_tasks(
    store: InMemoryStore, sources: SourceClients
) -> None:
    """Test stopping cancels tasks that are still running."""
    orchestrator = Orchestrator(store, sources, CONFIG)
    await orchestrator.start()
    task = orchestrator.task_service.create_task(asyncio.sleep(10), name="pending")
    assert orchestrator.task_service.get_num_active_tasks() == 1

    await orchestrator.stop()

    assert task.cancelled()
    assert orchestrator.task_service.get_num_active_tasks() == 0
