"""Cache management for git repositories.

Repositories are cloned once per process into a dedicated cache directory and
fetched on every later listing.
"""

import hashlib
from pathlib import Path
import tempfile
from urllib.parse import urlparse

from slugify import slugify

from kargo_core.exceptions import TransientSourceError

__all__ = ["GitCache", "get_git_cache"]


class GitCache:
    """Cache manager for bare git repositories."""

    def __init__(self, cache_dir: Path | None = None) -> None:
        """Initialize the cache manager."""
        self._cache_dir = cache_dir or Path(tempfile.gettempdir()) / "kargo-core-cache"
        self._cache_dir.mkdir(parents=True, exist_ok=True)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def _slugify_url(self, url: str) -> str:
        """Return a readable directory name for the repository at the url."""
        path = urlparse(url).path.rstrip("/")
        if path.endswith(".git"):
            path = path[:-4]
        slug = slugify(path.split("/")[-1], max_length=50, lowercase=True, separator="-")
        return slug or "repo"

    def get_repo_path(self, url: str) -> Path:
        """Get the local path for a repository, e.g. `<cache>/my-repo/ab12cd34ef56ab78`."""
        hash_str = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        path = self._cache_dir / self._slugify_url(url) / hash_str
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise TransientSourceError(
                f"Failed to create cache directory for {url}: {err}"
            ) from err
        return path


_git_cache: GitCache | None = None


def get_git_cache() -> GitCache:
    """Get the process wide GitCache instance."""
    global _git_cache
    if _git_cache is None:
        _git_cache = GitCache()
    return _git_cache
