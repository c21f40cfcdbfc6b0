"""Shared fixtures for kargo-core tests."""

import dataclasses
from datetime import datetime, timezone
from typing import Any

import pytest

from kargo_core.manifest import Subscription
from kargo_core.selection import (
    Candidate,
    ChartCandidate,
    GitCandidate,
    ImageCandidate,
)
from kargo_core.sources import SourceClient, SourceClients

GIT_URL = "https://github.com/example/app-config"
IMAGE_URL = "ghcr.io/example/app"
CHART_URL = "oci://ghcr.io/example/charts/app"

COMMIT_ID = "8f2c1a7e5d9b3c4f6a1e2d3c4b5a69788f7e6d5c"


class FakeSourceClient(SourceClient[Any, Any]):
    """A source client returning fixed candidates per repository url.

    A repository mapped to an exception raises it when listed.
    """

    def __init__(self, candidates: dict[str, list[Candidate] | Exception]) -> None:
        self.candidates = candidates
        self.listed: list[str] = []

    async def list_candidates(self, subscription: Subscription) -> list[Candidate]:
        self.listed.append(subscription.repo_url)
        result = self.candidates.get(subscription.repo_url, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def resolve(self, subscription: Subscription, candidate: Any) -> Any:
        if isinstance(candidate, ImageCandidate) and candidate.digest is None:
            return dataclasses.replace(candidate, digest=f"sha256:{candidate.tag}")
        return candidate


def fake_sources() -> SourceClients:
    """Return source clients offering versions of the team1 example app."""
    return SourceClients(
        git=FakeSourceClient(
            {
                GIT_URL: [
                    GitCandidate(
                        commit_id=COMMIT_ID,
                        committed_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
                        branch="main",
                        message="Bump app",
                    ),
                    GitCandidate(
                        commit_id="1" * 40,
                        committed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
                        branch="main",
                        message="Initial commit",
                    ),
                ]
            }
        ),
        image=FakeSourceClient(
            {
                IMAGE_URL: [
                    ImageCandidate(tag="1.0.0"),
                    ImageCandidate(tag="1.2.0"),
                    ImageCandidate(tag="2.0.0"),
                    ImageCandidate(tag="latest"),
                ]
            }
        ),
        chart=FakeSourceClient(
            {
                CHART_URL: [
                    ChartCandidate(version="0.1.0"),
                    ChartCandidate(version="0.2.0"),
                ]
            }
        ),
    )


@pytest.fixture(name="sources")
def sources_fixture() -> SourceClients:
    """Fixture for fake source clients."""
    return fake_sources()
