"""Helm chart source client.

Classic chart repositories are queried with the `helm` command line tool using
a throwaway repository config, the same way a local helm installation would
see them. Charts in OCI registries are listed with the oras registry client.
"""

import asyncio
import datetime
import json
import logging
from pathlib import Path
import tempfile
from typing import Any

import aiofiles
from oras.client import OrasClient
from slugify import slugify
import yaml

from kargo_core import command
from kargo_core.exceptions import TransientSourceError
from kargo_core.manifest import OCI_PREFIX, ChartSubscription
from kargo_core.selection import ChartCandidate

from .client import SourceClient

_LOGGER = logging.getLogger(__name__)

__all__ = ["ChartSourceClient"]

HELM_BIN = "helm"


def _repository_config(alias: str, url: str) -> dict[str, Any]:
    """Return a helm repository config holding a single repository."""
    now = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    return {
        "apiVersion": "",
        "generated": now.isoformat(),
        "repositories": [{"name": alias, "url": url}],
    }


def _list_oci_tags(repository: str) -> list[str]:
    return list(OrasClient().get_tags(repository))


class ChartSourceClient(SourceClient[ChartSubscription, ChartCandidate]):
    """Lists the versions of a Helm chart."""

    def __init__(self, helm_bin: str = HELM_BIN) -> None:
        """Initialize the ChartSourceClient."""
        self._helm_bin = helm_bin

    async def list_candidates(
        self, subscription: ChartSubscription
    ) -> list[ChartCandidate]:
        """List every version of the subscribed chart."""
        if subscription.is_oci:
            versions = await self._list_oci(subscription)
        else:
            versions = await self._list_classic(subscription)
        _LOGGER.debug(
            "Found %d versions of chart %s", len(versions), subscription.repo_url
        )
        return [ChartCandidate(version=version) for version in versions]

    async def _list_oci(self, subscription: ChartSubscription) -> list[str]:
        repository = subscription.repo_url.removeprefix(OCI_PREFIX)
        try:
            tags = await asyncio.to_thread(_list_oci_tags, repository)
        except Exception as err:
            raise TransientSourceError(
                f"Failed to list tags of {subscription.repo_url}: {err}"
            ) from err
        # OCI tags cannot hold '+', helm pushes build metadata with '_' instead.
        return [tag.replace("_", "+") for tag in tags]

    async def _list_classic(self, subscription: ChartSubscription) -> list[str]:
        alias = slugify(subscription.repo_url, max_length=50) or "repo"
        with tempfile.TemporaryDirectory() as tmp:
            tmp_dir = Path(tmp)
            config_file = tmp_dir / "repository-config.yaml"
            content = yaml.dump(
                _repository_config(alias, subscription.repo_url), sort_keys=False
            )
            async with aiofiles.open(str(config_file), mode="w") as f:
                await f.write(content)
            flags = [
                "--repository-config",
                str(config_file),
                "--repository-cache",
                str(tmp_dir / "cache"),
            ]
            await command.run(
                command.Command(
                    [self._helm_bin, "repo", "update", *flags],
                    exc=TransientSourceError,
                )
            )
            out = await command.run(
                command.Command(
                    [
                        self._helm_bin,
                        "search",
                        "repo",
                        f"{alias}/{subscription.name}",
                        "--versions",
                        "--devel",
                        "--output",
                        "json",
                        *flags,
                    ],
                    exc=TransientSourceError,
                )
            )
        try:
            results = json.loads(out or "[]")
        except json.JSONDecodeError as err:
            raise TransientSourceError(
                f"Invalid chart search results for {subscription.repo_url}: {err}"
            ) from err
        # Search matches by substring, only keep the exact chart.
        full_name = f"{alias}/{subscription.name}"
        return [
            result["version"]
            for result in results
            if result.get("name") == full_name and result.get("version")
        ]
