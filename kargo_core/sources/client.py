"""Interface for clients that list candidate versions from an artifact source."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, assert_never

from kargo_core.manifest import (
    ChartSubscription,
    GitSubscription,
    ImageSubscription,
    Subscription,
)
from kargo_core.selection import Candidate

__all__ = [
    "SourceClient",
    "SourceClients",
]

S = TypeVar("S", GitSubscription, ImageSubscription, ChartSubscription)
C = TypeVar("C", bound=Candidate)


class SourceClient(ABC, Generic[S, C]):
    """Lists the raw candidates of one kind of subscription."""

    @abstractmethod
    async def list_candidates(self, subscription: S) -> list[C]:
        """Return the unfiltered candidates currently offered by the source.

        Raises:
            TransientSourceError: If the source could not be reached.
        """

    async def resolve(self, subscription: S, candidate: C) -> C:
        """Complete the details of a selected candidate.

        Some details are expensive to fetch for every candidate (e.g. the
        digest of an image tag) and are only looked up for the chosen one.
        """
        return candidate


@dataclass
class SourceClients:
    """The source clients used for each kind of subscription."""

    git: SourceClient[GitSubscription, Any]
    image: SourceClient[ImageSubscription, Any]
    chart: SourceClient[ChartSubscription, Any]

    def client_for(self, subscription: Subscription) -> SourceClient[Any, Any]:
        """Return the client able to list candidates for the subscription."""
        if isinstance(subscription, GitSubscription):
            return self.git
        if isinstance(subscription, ImageSubscription):
            return self.image
        if isinstance(subscription, ChartSubscription):
            return self.chart
        assert_never(subscription)
