"""Git repository source client.

Repositories are kept as bare clones in the git cache. Each listing fetches all
branches and tags, then reports either the recent commits of one branch or
every tag, depending on the commit selection strategy.
"""

import asyncio
from datetime import datetime, timezone
import logging
import threading

import git

from kargo_core.exceptions import TransientSourceError
from kargo_core.manifest import CommitSelectionStrategy, GitSubscription
from kargo_core.selection import GitCandidate

from .cache import GitCache, get_git_cache
from .client import SourceClient

_LOGGER = logging.getLogger(__name__)

__all__ = ["GitSourceClient"]

DEFAULT_MAX_BRANCH_COMMITS = 20


class GitSourceClient(SourceClient[GitSubscription, GitCandidate]):
    """Lists commits and tags of a Git repository."""

    def __init__(
        self,
        cache: GitCache | None = None,
        max_branch_commits: int = DEFAULT_MAX_BRANCH_COMMITS,
    ) -> None:
        """Initialize the GitSourceClient."""
        self._cache = cache or get_git_cache()
        self._max_branch_commits = max_branch_commits
        self._locks: dict[str, threading.Lock] = {}

    async def list_candidates(self, subscription: GitSubscription) -> list[GitCandidate]:
        """List the commits or tags of the subscribed repository."""
        try:
            return await asyncio.to_thread(self._list_candidates, subscription)
        except (git.exc.GitError, ValueError, TypeError) as err:
            raise TransientSourceError(
                f"Failed to list commits of {subscription.repo_url}: {err}"
            ) from err

    def _list_candidates(self, subscription: GitSubscription) -> list[GitCandidate]:
        lock = self._locks.setdefault(subscription.repo_url, threading.Lock())
        with lock:
            repo = self._sync(subscription)
            if (
                subscription.commit_selection_strategy
                == CommitSelectionStrategy.NEWEST_FROM_BRANCH
            ):
                return self._branch_commits(repo, subscription.branch)
            return self._tags(repo)

    def _sync(self, subscription: GitSubscription) -> git.Repo:
        """Clone the repository, or fetch into an existing clone."""
        url = subscription.repo_url
        path = self._cache.get_repo_path(url)
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if subscription.insecure_skip_tls_verify:
            env["GIT_SSL_NO_VERIFY"] = "true"
        if (path / "HEAD").exists():
            _LOGGER.debug("Fetching repository %s into %s", url, path)
            repo = git.Repo(str(path))
            with repo.git.custom_environment(**env):
                repo.git.fetch(
                    "origin",
                    "+refs/heads/*:refs/heads/*",
                    "+refs/tags/*:refs/tags/*",
                    "--prune",
                    "--force",
                )
            return repo
        _LOGGER.info("Cloning repository %s to %s", url, path)
        return git.Repo.clone_from(url, str(path), bare=True, env=env)

    def _branch_commits(self, repo: git.Repo, branch: str | None) -> list[GitCandidate]:
        if not branch:
            branch = repo.head.reference.name
        return [
            GitCandidate(
                commit_id=commit.hexsha,
                committed_at=commit.committed_datetime,
                branch=branch,
                message=str(commit.summary),
            )
            for commit in repo.iter_commits(
                f"refs/heads/{branch}", max_count=self._max_branch_commits
            )
        ]

    def _tags(self, repo: git.Repo) -> list[GitCandidate]:
        candidates: list[GitCandidate] = []
        for tag in repo.tags:
            try:
                commit = tag.commit
            except ValueError:
                _LOGGER.debug("Skipping tag %s, it does not point at a commit", tag.name)
                continue
            # Annotated tags are dated by the tag object, lightweight tags by the commit.
            if (tag_object := tag.tag) is not None:
                created = datetime.fromtimestamp(tag_object.tagged_date, tz=timezone.utc)
            else:
                created = commit.committed_datetime
            candidates.append(
                GitCandidate(
                    commit_id=commit.hexsha,
                    committed_at=created,
                    tag=tag.name,
                    message=str(commit.summary),
                )
            )
        return candidates
