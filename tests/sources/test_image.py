"""Tests for the container image source client."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from kargo_core.exceptions import PlatformUnavailableError, TransientSourceError
from kargo_core.manifest import ImageSelectionStrategy, ImageSubscription
from kargo_core.selection import ImageCandidate
from kargo_core.sources import ImageSourceClient

REPO = "ghcr.io/example/app"

CONFIGS = {
    "1.0.0": {
        "os": "linux",
        "architecture": "amd64",
        "created": "2024-01-01T10:00:00.123456789Z",
    },
    "1.1.0": {
        "os": "linux",
        "architecture": "arm",
        "variant": "v7",
        "created": "2024-01-02T10:00:00Z",
    },
}


def _fake_crane(tags: list[str]) -> AsyncMock:
    async def crane(*args: str) -> str:
        if args[0] == "ls":
            return "\n".join(tags) + "\n"
        if args[0] == "digest":
            tag = args[1].split(":")[-1]
            return f"sha256:{tag}\n"
        if args[0] == "config":
            tag = args[1].split(":")[-1]
            if tag not in CONFIGS:
                raise TransientSourceError(
                    f"no child with platform {args[3]} in index {args[1]}"
                )
            return json.dumps(CONFIGS[tag])
        raise AssertionError(f"Unexpected crane command: {args}")

    return AsyncMock(side_effect=crane)


async def test_list_tags() -> None:
    """Test tags are listed without further lookups for tag strategies."""
    client = ImageSourceClient()
    crane = _fake_crane(["1.0.0", "1.1.0", "latest"])
    with patch.object(client, "_crane", crane):
        candidates = await client.list_candidates(ImageSubscription(repo_url=REPO))

    assert candidates == [
        ImageCandidate(tag="1.0.0"),
        ImageCandidate(tag="1.1.0"),
        ImageCandidate(tag="latest"),
    ]
    crane.assert_awaited_once_with("ls", REPO)


async def test_repository_not_found() -> None:
    """Test a missing repository has no candidates."""
    client = ImageSourceClient()
    crane = AsyncMock(
        side_effect=TransientSourceError("NAME_UNKNOWN: repository name not known")
    )
    with patch.object(client, "_crane", crane):
        assert await client.list_candidates(ImageSubscription(repo_url=REPO)) == []


async def test_registry_error() -> None:
    """Test other registry failures are raised."""
    client = ImageSourceClient()
    crane = AsyncMock(side_effect=TransientSourceError("connection refused"))
    with patch.object(client, "_crane", crane), pytest.raises(
        TransientSourceError, match="connection refused"
    ):
        await client.list_candidates(ImageSubscription(repo_url=REPO))


async def test_newest_build() -> None:
    """Test build details are read from the image config of allowed tags."""
    client = ImageSourceClient()
    subscription = ImageSubscription(
        repo_url=REPO,
        image_selection_strategy=ImageSelectionStrategy.NEWEST_BUILD,
        ignore_tags=["latest"],
        platform="linux/amd64",
    )
    crane = _fake_crane(["1.0.0", "1.1.0", "2.0.0", "latest"])
    with patch.object(client, "_crane", crane):
        candidates = await client.list_candidates(subscription)

    assert candidates == [
        ImageCandidate(
            tag="1.0.0",
            created_at=datetime(2024, 1, 1, 10, 0, 0, 123456, tzinfo=timezone.utc),
            platforms=frozenset(["linux/amd64"]),
        ),
        ImageCandidate(
            tag="1.1.0",
            created_at=datetime(2024, 1, 2, 10, 0, 0, tzinfo=timezone.utc),
            platforms=frozenset(["linux/arm/v7"]),
        ),
    ]
    crane.assert_any_await("config", f"{REPO}:1.0.0", "--platform", "linux/amd64")
    assert all("latest" not in str(call) for call in crane.await_args_list)


async def test_digest() -> None:
    """Test the Digest strategy looks up the tracked tag only."""
    client = ImageSourceClient()
    subscription = ImageSubscription(
        repo_url=REPO,
        image_selection_strategy=ImageSelectionStrategy.DIGEST,
        semver_constraint="latest",
        platform="linux/amd64",
    )
    with patch.object(client, "_crane", _fake_crane(["1.0.0", "latest"])):
        assert await client.list_candidates(subscription) == [
            ImageCandidate(tag="latest", digest="sha256:latest")
        ]
    with patch.object(client, "_crane", _fake_crane(["1.0.0"])):
        assert await client.list_candidates(subscription) == []


async def test_resolve() -> None:
    """Test resolving the digest of a selected tag."""
    client = ImageSourceClient()
    subscription = ImageSubscription(repo_url=REPO, platform="linux/arm64")
    crane = _fake_crane([])
    with patch.object(client, "_crane", crane):
        resolved = await client.resolve(subscription, ImageCandidate(tag="1.0.0"))
        assert resolved == ImageCandidate(tag="1.0.0", digest="sha256:1.0.0")

        assert await client.resolve(subscription, resolved) is resolved

    crane.assert_awaited_once_with(
        "digest", f"{REPO}:1.0.0", "--platform", "linux/arm64"
    )


async def test_resolve_platform_unavailable() -> None:
    """Test resolving a tag that has no image for the subscribed platform."""
    client = ImageSourceClient()
    subscription = ImageSubscription(repo_url=REPO, platform="linux/amd64")
    crane = AsyncMock(
        side_effect=TransientSourceError(
            f"no child with platform linux/amd64 in index {REPO}:2.0.0"
        )
    )
    with patch.object(client, "_crane", crane), pytest.raises(
        PlatformUnavailableError, match="2.0.0 for platform linux/amd64"
    ):
        await client.resolve(subscription, ImageCandidate(tag="2.0.0"))


async def test_resolve_registry_error() -> None:
    """Test other registry failures are not treated as a missing platform."""
    client = ImageSourceClient()
    subscription = ImageSubscription(repo_url=REPO)
    crane = AsyncMock(side_effect=TransientSourceError("connection refused"))
    with patch.object(client, "_crane", crane), pytest.raises(
        TransientSourceError, match="connection refused"
    ) as exc_info:
        await client.resolve(subscription, ImageCandidate(tag="2.0.0"))
    assert not isinstance(exc_info.value, PlatformUnavailableError)


async def test_crane_command() -> None:
    """Test crane is invoked through the command library."""
    client = ImageSourceClient(crane_bin="/opt/bin/crane")
    with patch("kargo_core.command.run", AsyncMock(return_value="1.0.0\n")) as run:
        candidates = await client.list_candidates(ImageSubscription(repo_url=REPO))

    assert candidates == [ImageCandidate(tag="1.0.0")]
    cmd = run.await_args.args[0]
    assert cmd.cmd == ["/opt/bin/crane", "ls", REPO]
    assert cmd.exc is TransientSourceError
