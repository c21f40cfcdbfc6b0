"""Resource loader for applying manifests from the filesystem.

The loader reads YAML documents from files or directories and parses the
resource kinds kargo-core knows about. Documents of other kinds are skipped,
while malformed documents of a supported kind are reported as errors.
"""

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from pathlib import Path

import aiofiles
import yaml

from kargo_core.exceptions import InputException, KargoException
from kargo_core.manifest import SUPPORTED_KINDS, BaseManifest, parse_raw_obj

__all__ = ["ResourceLoader", "LoadOptions"]

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


@dataclass
class LoadOptions:
    """Options for loading resources.

    Attributes:
        path: Filesystem path to load resources from. Can be a file or directory.
        recursive: If True and path is a directory, load resources from all
                  subdirectories as well.
    """

    path: Path
    recursive: bool = True

    def __post_init__(self) -> None:
        """Resolve the path after initialization."""
        self.path = Path(self.path).expanduser().resolve()


class ResourceLoader:
    """Loads resources from the filesystem, in file and document order."""

    def __init__(self) -> None:
        """Initialize the resource loader."""
        self._processed_files: set[Path] = set()

    async def load(self, options: LoadOptions) -> AsyncGenerator[BaseManifest, None]:
        """Load resources from the given options."""
        _LOGGER.info("Loading resources from %s", options.path)
        if not options.path.exists():
            raise KargoException(f"Path does not exist: {options.path}")
        if options.path.is_file():
            async for resource in self._load_file(options.path):
                yield resource
        elif options.path.is_dir():
            async for resource in self._load_directory(options.path, options):
                yield resource
        else:
            raise KargoException(f"Path is not a file or directory: {options.path}")

    async def _load_directory(
        self, path: Path, options: LoadOptions
    ) -> AsyncGenerator[BaseManifest, None]:
        _LOGGER.debug("Loading directory: %s", path)
        for entry in sorted(path.iterdir()):
            if entry.is_file() and entry.suffix.lower() in MANIFEST_SUFFIXES:
                async for resource in self._load_file(entry):
                    yield resource
            elif options.recursive and entry.is_dir():
                async for resource in self._load_directory(entry, options):
                    yield resource

    async def _load_file(self, path: Path) -> AsyncGenerator[BaseManifest, None]:
        if path in self._processed_files:
            _LOGGER.debug("Skipping already processed file: %s", path)
            return
        self._processed_files.add(path)
        _LOGGER.debug("Processing file: %s", path)

        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise KargoException(f"Failed to read file {path}: {e}") from e

        try:
            docs = list(yaml.safe_load_all(content))
        except yaml.YAMLError as e:
            raise InputException(f"Invalid YAML in file {path}: {e}") from e

        for doc in docs:
            if not doc:
                continue
            if not isinstance(doc, dict):
                raise InputException(f"Document in {path} is not an object: {doc}")
            if doc.get("kind") not in SUPPORTED_KINDS:
                _LOGGER.info("Skipping %s document in %s", doc.get("kind"), path)
                continue
            yield parse_raw_obj(doc)
