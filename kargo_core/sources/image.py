"""Container image source client backed by the `crane` command line tool.

Tags are listed with `crane ls`. Build timestamps and platforms, needed by the
NewestBuild strategy, come from the image config (`crane config`). Digests are
only looked up for the tag that was selected, or for the tracked tag of the
Digest strategy.
"""

import asyncio
import dataclasses
from datetime import datetime
import json
import logging
import re

from kargo_core import command
from kargo_core.exceptions import PlatformUnavailableError, TransientSourceError
from kargo_core.manifest import ImageSelectionStrategy, ImageSubscription
from kargo_core.selection import ImageCandidate
from kargo_core.selection.selector import filter_tags

from .client import SourceClient

_LOGGER = logging.getLogger(__name__)

__all__ = ["ImageSourceClient"]

CRANE_BIN = "crane"

# Registry error codes reported when a repository or tag does not exist.
_NOT_FOUND_ERRORS = ("MANIFEST_UNKNOWN", "NAME_UNKNOWN", "NOT_FOUND")
_NO_PLATFORM_ERROR = "no child with platform"
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def _is_not_found(err: TransientSourceError) -> bool:
    return any(code in str(err) for code in _NOT_FOUND_ERRORS)


def _parse_created(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(
            _FRACTION_RE.sub(r"\1", value.replace("Z", "+00:00"))
        )
    except ValueError:
        _LOGGER.debug("Ignoring unparseable image creation time %s", value)
        return None


class ImageSourceClient(SourceClient[ImageSubscription, ImageCandidate]):
    """Lists the tags of a container image repository."""

    def __init__(self, crane_bin: str = CRANE_BIN) -> None:
        """Initialize the ImageSourceClient."""
        self._crane_bin = crane_bin

    async def _crane(self, *args: str) -> str:
        return await command.run(
            command.Command([self._crane_bin, *args], exc=TransientSourceError)
        )

    async def list_candidates(
        self, subscription: ImageSubscription
    ) -> list[ImageCandidate]:
        """List the tags of the image repository.

        Tags are only enriched with details the selection strategy needs.
        """
        try:
            tags = (await self._crane("ls", subscription.repo_url)).split()
        except TransientSourceError as err:
            if _is_not_found(err):
                _LOGGER.info("Image repository %s not found", subscription.repo_url)
                return []
            raise
        strategy = subscription.image_selection_strategy
        if strategy == ImageSelectionStrategy.DIGEST:
            tag = subscription.semver_constraint
            if not tag or tag not in tags:
                return []
            return [
                ImageCandidate(tag=tag, digest=await self._digest(subscription, tag))
            ]
        candidates = [ImageCandidate(tag=tag) for tag in tags]
        if strategy != ImageSelectionStrategy.NEWEST_BUILD:
            return candidates
        allowed = filter_tags(
            candidates,
            lambda c: c.tag,
            subscription.allow_tags,
            subscription.ignore_tags,
        )
        described = await asyncio.gather(
            *(self._describe(subscription, candidate) for candidate in allowed)
        )
        return [candidate for candidate in described if candidate is not None]

    async def resolve(
        self, subscription: ImageSubscription, candidate: ImageCandidate
    ) -> ImageCandidate:
        """Look up the digest of the selected tag for the subscribed platform."""
        if candidate.digest:
            return candidate
        digest = await self._digest(subscription, candidate.tag)
        return dataclasses.replace(candidate, digest=digest)

    async def _digest(self, subscription: ImageSubscription, tag: str) -> str:
        try:
            out = await self._crane(
                "digest",
                f"{subscription.repo_url}:{tag}",
                "--platform",
                subscription.platform_or_default,
            )
        except TransientSourceError as err:
            if _NO_PLATFORM_ERROR in str(err):
                raise PlatformUnavailableError(
                    f"No image {subscription.repo_url}:{tag} for platform "
                    f"{subscription.platform_or_default}"
                ) from err
            raise
        return out.strip()

    async def _describe(
        self, subscription: ImageSubscription, candidate: ImageCandidate
    ) -> ImageCandidate | None:
        """Add the build time and platform from the image config.

        Returns None when the image has no variant for the subscribed platform.
        """
        try:
            out = await self._crane(
                "config",
                f"{subscription.repo_url}:{candidate.tag}",
                "--platform",
                subscription.platform_or_default,
            )
        except TransientSourceError as err:
            if _NO_PLATFORM_ERROR in str(err):
                _LOGGER.debug(
                    "Skipping %s:%s, no image for platform %s",
                    subscription.repo_url,
                    candidate.tag,
                    subscription.platform_or_default,
                )
                return None
            raise
        try:
            config = json.loads(out)
        except json.JSONDecodeError as err:
            raise TransientSourceError(
                f"Invalid image config for {subscription.repo_url}:{candidate.tag}: {err}"
            ) from err
        platforms: frozenset[str] = frozenset()
        if (os_name := config.get("os")) and (arch := config.get("architecture")):
            platform = f"{os_name}/{arch}"
            if variant := config.get("variant"):
                platform = f"{platform}/{variant}"
            platforms = frozenset([platform])
        return dataclasses.replace(
            candidate,
            created_at=_parse_created(config.get("created")),
            platforms=platforms,
        )
