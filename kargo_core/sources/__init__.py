"""Clients that list candidate versions from artifact sources.

Each kind of subscription has one client. Clients return raw, unfiltered
candidates and raise `TransientSourceError` when a source cannot be reached.
"""

from .chart import ChartSourceClient
from .client import SourceClient, SourceClients
from .git import GitSourceClient
from .image import ImageSourceClient

__all__ = [
    "SourceClient",
    "SourceClients",
    "GitSourceClient",
    "ImageSourceClient",
    "ChartSourceClient",
    "default_source_clients",
]


def default_source_clients() -> SourceClients:
    """Return source clients backed by git, crane, helm and the registry."""
    return SourceClients(
        git=GitSourceClient(),
        image=ImageSourceClient(),
        chart=ChartSourceClient(),
    )
