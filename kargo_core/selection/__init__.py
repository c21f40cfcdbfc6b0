"""The version selection module.

Given a subscription and the raw candidates fetched from its source, the
selector deterministically picks the newest candidate according to the
subscription's selection strategy. Selection never performs I/O and never
raises for the absence of a qualifying candidate; it returns None instead.
"""

from .candidate import Candidate, GitCandidate, ImageCandidate, ChartCandidate
from .selector import select

__all__ = [
    "select",
    "Candidate",
    "GitCandidate",
    "ImageCandidate",
    "ChartCandidate",
]
