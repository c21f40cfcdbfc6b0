"""Command line tool for applying manifests and discovering Freight.

Manifests are admitted and stored in an in-memory store, then the controllers
run until they have no work left. The discovered Freight is printed as YAML and
Warehouses that failed to discover Freight are reported on stderr.
"""

import logging
import os
import pathlib
import sys
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import cast

from kargo_core.config import (
    KARGO_NAMESPACE_ENV,
    ApplicationsControllerConfig,
    WarehouseControllerConfig,
    WebhookConfig,
)
from kargo_core.exceptions import KargoException
from kargo_core.orchestrator import Orchestrator, OrchestratorConfig
from kargo_core.sources import default_source_clients
from kargo_core.store import InMemoryStore

_LOGGER = logging.getLogger(__name__)


class ApplyAction:
    """kargo-core apply action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        env_config = ApplicationsControllerConfig.from_env()
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "apply",
                help="Apply manifests and print the discovered Freight",
                description=(
                    "Admit the resources in the manifests, run the controllers "
                    "until idle and print the Freight discovered for Warehouses."
                ),
            ),
        )
        args.add_argument(
            "-f",
            "--filename",
            dest="filenames",
            help="File or directory of manifests to apply, may be repeated",
            type=pathlib.Path,
            action="append",
            required=True,
        )
        args.add_argument(
            "--kargo-namespace",
            help="Namespace of the kargo control plane",
            default=os.environ.get(KARGO_NAMESPACE_ENV),
        )
        args.add_argument(
            "--shard",
            help="Only refresh Stages and Applications labeled for this shard",
            default=env_config.shard_name,
        )
        args.add_argument(
            "--argocd-namespace",
            help="Namespace of Argo CD Applications referenced without a namespace",
            default=env_config.argocd_namespace,
        )
        args.add_argument(
            "--fetch-timeout",
            help="Seconds allowed for listing the versions of one subscription",
            type=float,
            default=WarehouseControllerConfig.fetch_timeout,
        )
        args.add_argument(
            "--dry-run",
            help="Only validate the resources without storing them",
            action="store_true",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        filenames: list[pathlib.Path],
        kargo_namespace: str | None,
        shard: str | None,
        argocd_namespace: str,
        fetch_timeout: float,
        dry_run: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        webhook_config = (
            WebhookConfig(kargo_namespace=kargo_namespace)
            if kargo_namespace
            else WebhookConfig.from_env()
        )
        orchestrator = Orchestrator(
            InMemoryStore(),
            default_source_clients(),
            OrchestratorConfig(
                webhook_config=webhook_config,
                warehouse_controller_config=WarehouseControllerConfig(
                    fetch_timeout=fetch_timeout
                ),
                applications_controller_config=ApplicationsControllerConfig(
                    shard_name=shard, argocd_namespace=argocd_namespace
                ),
                dry_run=dry_run,
            ),
        )
        await orchestrator.start()
        try:
            for path in filenames:
                await orchestrator.apply_path(path)
            await orchestrator.run_until_idle()
            freight = await orchestrator.freight()
            warehouses = await orchestrator.warehouses()
        finally:
            await orchestrator.stop()

        for item in freight:
            print("---")
            print(item.yaml(), end="")

        failed = [warehouse for warehouse in warehouses if warehouse.status.error]
        for warehouse in failed:
            print(
                f"Warehouse {warehouse.namespace}/{warehouse.name}: {warehouse.status.error}",
                file=sys.stderr,
            )
        if failed:
            raise KargoException(f"{len(failed)} Warehouse(s) failed to discover Freight")
