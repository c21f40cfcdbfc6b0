"""Store module for the declarative object store used by controllers."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from kargo_core.exceptions import AlreadyExistsError
from kargo_core.manifest import BaseManifest, NamedResource

T = TypeVar("T", bound=BaseManifest)

IndexFunc = Callable[[BaseManifest], list[str]]
"""Extracts the index keys of an object, e.g. the Applications a Stage references."""


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    OBJECT_UPDATED = "object_updated"
    OBJECT_DELETED = "object_deleted"
    STATUS_UPDATED = "status_updated"


class CreateResult(str, Enum):
    """Outcome of an idempotent create."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class Store(ABC):
    """Abstract base class for the declarative object store.

    Objects are keyed by NamedResource. Mutations are coroutines since a real
    implementation talks to a remote API server; callers bound them with their
    own timeouts and cancellation.
    """

    @abstractmethod
    async def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve an object by resource identity and type, None if absent."""

    @abstractmethod
    async def create_object(self, obj: BaseManifest) -> None:
        """Create a new object.

        Raises:
            AlreadyExistsError: If an object with the same identity exists.
        """

    async def create_if_absent(self, obj: BaseManifest) -> CreateResult:
        """Create an object, reporting an existing object as a result not an error."""
        try:
            await self.create_object(obj)
        except AlreadyExistsError:
            return CreateResult.ALREADY_EXISTS
        return CreateResult.CREATED

    @abstractmethod
    async def update_object(self, obj: BaseManifest) -> None:
        """Replace an existing object.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def patch_annotations(
        self, resource_id: NamedResource, annotations: dict[str, str]
    ) -> None:
        """Merge the annotations into an existing object, leaving other fields as is.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def update_status(self, resource_id: NamedResource, status: Any) -> None:
        """Replace the status of an existing object in a single write.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def delete_object(self, resource_id: NamedResource) -> None:
        """Delete an object, if it exists."""

    @abstractmethod
    async def list_objects(
        self,
        kind: str,
        namespace: str | None = None,
        field_selector: tuple[str, str] | None = None,
    ) -> list[BaseManifest]:
        """List objects of a kind, optionally restricted by namespace or index.

        The field selector is a pair of a registered index name and a key.
        """

    @abstractmethod
    def add_index(self, kind: str, index_name: str, func: IndexFunc) -> None:
        """Register a field index over objects of a kind.

        The index is built from the objects already in the store and kept up to
        date as objects of the kind are created, updated and deleted.
        """

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Any], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a store event.

        When flush is set, the callback is invoked for objects already present.
        Returns a callable that can be called to remove the listener.
        """
