"""Selection strategies for choosing the newest candidate of a subscription.

All strategies are pure functions over an in-memory list of candidates. Ties
are always broken on a secondary key so the result does not depend on the order
in which a source listed its candidates.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
import logging
import re
from typing import Any, TypeVar, assert_never

from kargo_core.manifest import (
    ChartSubscription,
    CommitSelectionStrategy,
    GitSubscription,
    ImageSelectionStrategy,
    ImageSubscription,
    Subscription,
)
from kargo_core.versions import Constraint, ParsedVersion, parse_version

from .candidate import Candidate, ChartCandidate, GitCandidate, ImageCandidate

__all__ = [
    "select",
    "select_commit",
    "select_image",
    "select_chart",
    "filter_tags",
]

_LOGGER = logging.getLogger(__name__)

C = TypeVar("C", bound=Candidate)

# Candidates without a timestamp sort before every timestamped candidate.
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _timestamp(value: datetime | None) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def filter_tags(
    candidates: Sequence[C],
    tag: Callable[[C], str | None],
    allow_tags: str | None,
    ignore_tags: Sequence[str],
) -> list[C]:
    """Return candidates with a tag that is allowed and not ignored."""
    ignored = set(ignore_tags)
    allowed = re.compile(allow_tags) if allow_tags else None
    result: list[C] = []
    for candidate in candidates:
        if (value := tag(candidate)) is None or value in ignored:
            continue
        if allowed is not None and not allowed.search(value):
            continue
        result.append(candidate)
    return result


def _newest(candidates: Sequence[C], key: Callable[[C], Any]) -> C | None:
    if not candidates:
        return None
    return max(candidates, key=key)


def _newest_semver(
    candidates: Sequence[C],
    version: Callable[[C], str],
    constraint: str | None,
    secondary: Callable[[C], str] = lambda _: "",
) -> C | None:
    """Choose the candidate with the highest semantic version.

    Candidates that are not valid semantic versions are skipped. Candidates of
    equal precedence, differing only in build metadata, are ordered by their raw
    version string.
    """
    parsed_constraint = Constraint.parse(constraint) if constraint else None
    parsed: list[tuple[ParsedVersion, C]] = []
    for candidate in candidates:
        raw = version(candidate)
        if (semver := parse_version(raw)) is None:
            _LOGGER.debug("Skipping candidate %s, not a semantic version", raw)
            continue
        if parsed_constraint is not None and not parsed_constraint.check(semver):
            continue
        parsed.append((ParsedVersion(raw, semver), candidate))
    if not parsed:
        return None
    _, chosen = max(
        parsed,
        key=lambda item: (item[0].version, item[0].raw, secondary(item[1])),
    )
    return chosen


def _commit_tag(candidate: GitCandidate) -> str | None:
    return candidate.tag


def select_commit(
    subscription: GitSubscription, candidates: Sequence[GitCandidate]
) -> GitCandidate | None:
    """Select the newest commit of interest from a Git repository."""
    strategy = subscription.commit_selection_strategy
    if strategy == CommitSelectionStrategy.NEWEST_FROM_BRANCH:
        on_branch = [
            c
            for c in candidates
            if c.tag is None
            and (
                subscription.branch is None
                or c.branch is None
                or c.branch == subscription.branch
            )
        ]
        return _newest(
            on_branch, key=lambda c: (_timestamp(c.committed_at), c.commit_id)
        )

    tagged = filter_tags(
        candidates, _commit_tag, subscription.allow_tags, subscription.ignore_tags
    )
    if strategy == CommitSelectionStrategy.LEXICAL:
        return _newest(tagged, key=lambda c: (c.tag, c.commit_id))
    if strategy == CommitSelectionStrategy.NEWEST_TAG:
        return _newest(
            tagged, key=lambda c: (_timestamp(c.committed_at), c.tag, c.commit_id)
        )
    if strategy == CommitSelectionStrategy.SEMVER:
        return _newest_semver(
            tagged,
            version=lambda c: c.tag or "",
            constraint=subscription.semver_constraint,
            secondary=lambda c: c.commit_id,
        )
    assert_never(strategy)


def _supports_platform(candidate: ImageCandidate, platform: str) -> bool:
    if not candidate.platforms:
        return True
    return any(p == platform or p.startswith(f"{platform}/") for p in candidate.platforms)


def select_image(
    subscription: ImageSubscription, candidates: Sequence[ImageCandidate]
) -> ImageCandidate | None:
    """Select the newest image of interest from an image repository."""
    platform = subscription.platform_or_default
    candidates = [c for c in candidates if _supports_platform(c, platform)]
    strategy = subscription.image_selection_strategy
    if strategy == ImageSelectionStrategy.DIGEST:
        # The constraint names the mutable tag whose current digest is tracked.
        pinned = [c for c in candidates if c.tag == subscription.semver_constraint]
        return _newest(pinned, key=lambda c: c.digest or "")

    tagged = filter_tags(
        candidates, lambda c: c.tag, subscription.allow_tags, subscription.ignore_tags
    )
    if strategy == ImageSelectionStrategy.LEXICAL:
        return _newest(tagged, key=lambda c: (c.tag, c.digest or ""))
    if strategy == ImageSelectionStrategy.NEWEST_BUILD:
        return _newest(
            tagged, key=lambda c: (_timestamp(c.created_at), c.tag, c.digest or "")
        )
    if strategy == ImageSelectionStrategy.SEMVER:
        return _newest_semver(
            tagged,
            version=lambda c: c.tag,
            constraint=subscription.semver_constraint,
            secondary=lambda c: c.digest or "",
        )
    assert_never(strategy)


def select_chart(
    subscription: ChartSubscription, candidates: Sequence[ChartCandidate]
) -> ChartCandidate | None:
    """Select the newest chart version satisfying the subscription constraint."""
    return _newest_semver(
        candidates,
        version=lambda c: c.version,
        constraint=subscription.semver_constraint,
    )


def select(
    subscription: Subscription, candidates: Sequence[Candidate]
) -> Candidate | None:
    """Select the newest candidate for a subscription, or None if none qualify."""
    chosen: Candidate | None
    if isinstance(subscription, GitSubscription):
        chosen = select_commit(
            subscription, [c for c in candidates if isinstance(c, GitCandidate)]
        )
    elif isinstance(subscription, ImageSubscription):
        chosen = select_image(
            subscription, [c for c in candidates if isinstance(c, ImageCandidate)]
        )
    elif isinstance(subscription, ChartSubscription):
        chosen = select_chart(
            subscription, [c for c in candidates if isinstance(c, ChartCandidate)]
        )
    else:
        assert_never(subscription)
    _LOGGER.debug(
        "Selected %s from %d candidates for %s",
        chosen,
        len(candidates),
        subscription.repo_url,
    )
    return chosen
