"""Candidate versions observed from an artifact source before selection."""

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, kw_only=True)
class Candidate(ABC):
    """Base class for all candidates."""


@dataclass(frozen=True, kw_only=True)
class GitCandidate(Candidate):
    """A commit in a Git repository, possibly reachable through a tag."""

    commit_id: str
    """Full hash of the commit."""

    committed_at: datetime | None = None
    """When the commit (or annotated tag) was created."""

    tag: str | None = None
    """Tag pointing at the commit, if listed as a tag."""

    branch: str | None = None
    """Branch the commit was listed from, if listed as a branch commit."""

    message: str | None = None
    """First line of the commit message."""


@dataclass(frozen=True, kw_only=True)
class ImageCandidate(Candidate):
    """A tag in a container image repository."""

    tag: str
    """The image tag."""

    digest: str | None = None
    """Manifest digest the tag points at, when already known."""

    created_at: datetime | None = None
    """When the image was built."""

    platforms: frozenset[str] = field(default_factory=frozenset)
    """Platforms (os/arch) the image supports, empty when unknown."""


@dataclass(frozen=True, kw_only=True)
class ChartCandidate(Candidate):
    """A version of a Helm chart."""

    version: str
    """The chart version."""
