"""Module for in memory object store."""

import asyncio
from collections import defaultdict
from collections.abc import Callable
import dataclasses
import logging
from typing import Any, DefaultDict, TypeVar
import uuid

from kargo_core.exceptions import AlreadyExistsError, ObjectNotFoundError
from kargo_core.manifest import BaseManifest, NamedResource

from .store import IndexFunc, Store, StoreEvent

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseManifest)


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are stored as copies so callers never share mutable state with the
    store. Supports field indexes and event listeners.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, BaseManifest] = {}
        self._lock = asyncio.Lock()
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )
        self._index_funcs: dict[tuple[str, str], IndexFunc] = {}
        self._indexes: DefaultDict[
            tuple[str, str], DefaultDict[str, set[NamedResource]]
        ] = defaultdict(lambda: defaultdict(set))

    def _copy(self, obj: T) -> T:
        return obj.__class__.from_dict(obj.to_dict())

    async def get_object(self, resource_id: NamedResource, cls: type[T]) -> T | None:
        """Retrieve an object by resource identity and type."""
        obj = self._objects.get(resource_id)
        if obj is None:
            return None
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return self._copy(obj)

    async def create_object(self, obj: BaseManifest) -> None:
        """Create a new object, assigning a uid when it has none."""
        resource_id = obj.resource_id
        async with self._lock:
            if resource_id in self._objects:
                raise AlreadyExistsError(f"{resource_id} already exists")
            stored = self._copy(obj)
            if hasattr(stored, "uid") and not stored.uid:
                stored.uid = str(uuid.uuid4())
            self._put(resource_id, stored)
        _LOGGER.debug("Created object %s", resource_id)
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, self._copy(stored))

    async def update_object(self, obj: BaseManifest) -> None:
        """Replace an existing object."""
        resource_id = obj.resource_id
        async with self._lock:
            if resource_id not in self._objects:
                raise ObjectNotFoundError(f"{resource_id} not found")
            stored = self._copy(obj)
            self._put(resource_id, stored)
        _LOGGER.debug("Updated object %s", resource_id)
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, self._copy(stored))

    async def patch_annotations(
        self, resource_id: NamedResource, annotations: dict[str, str]
    ) -> None:
        """Merge annotations into an existing object."""
        async with self._lock:
            if (existing := self._objects.get(resource_id)) is None:
                raise ObjectNotFoundError(f"{resource_id} not found")
            if not hasattr(existing, "annotations"):
                raise ValueError(f"Object {resource_id} does not support annotations")
            stored = self._copy(existing)
            stored.annotations = {**stored.annotations, **annotations}
            self._put(resource_id, stored)
        _LOGGER.debug("Patched annotations of %s: %s", resource_id, annotations)
        self._fire_event(StoreEvent.OBJECT_UPDATED, resource_id, self._copy(stored))

    async def update_status(self, resource_id: NamedResource, status: Any) -> None:
        """Replace the status of an existing object."""
        async with self._lock:
            if (existing := self._objects.get(resource_id)) is None:
                raise ObjectNotFoundError(f"{resource_id} not found")
            if not hasattr(existing, "status"):
                raise ValueError(f"Object {resource_id} does not support status")
            stored = dataclasses.replace(existing, status=status)
            self._objects[resource_id] = self._copy(stored)
        _LOGGER.debug("Updated status of %s: %s", resource_id, status)
        self._fire_event(StoreEvent.STATUS_UPDATED, resource_id, status)

    async def delete_object(self, resource_id: NamedResource) -> None:
        """Delete an object, if it exists."""
        async with self._lock:
            if (existing := self._objects.pop(resource_id, None)) is None:
                return
            self._unindex(resource_id)
        _LOGGER.debug("Deleted object %s", resource_id)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, existing)

    async def list_objects(
        self,
        kind: str,
        namespace: str | None = None,
        field_selector: tuple[str, str] | None = None,
    ) -> list[BaseManifest]:
        """List objects of a kind, optionally restricted by namespace or index."""
        if field_selector is not None:
            index_name, key = field_selector
            if (kind, index_name) not in self._index_funcs:
                raise ValueError(f"No index {index_name} registered for kind {kind}")
            resource_ids = sorted(self._indexes[(kind, index_name)].get(key, set()))
        else:
            resource_ids = sorted(rid for rid in self._objects if rid.kind == kind)
        return [
            self._copy(self._objects[rid])
            for rid in resource_ids
            if namespace is None or rid.namespace == namespace
        ]

    def add_index(self, kind: str, index_name: str, func: IndexFunc) -> None:
        """Register a field index over objects of a kind."""
        if (kind, index_name) in self._index_funcs:
            raise ValueError(f"Index {index_name} already registered for kind {kind}")
        self._index_funcs[(kind, index_name)] = func
        for resource_id, obj in self._objects.items():
            if resource_id.kind == kind:
                for key in func(obj):
                    self._indexes[(kind, index_name)][key].add(resource_id)

    def _put(self, resource_id: NamedResource, obj: BaseManifest) -> None:
        self._unindex(resource_id)
        self._objects[resource_id] = obj
        for (kind, index_name), func in self._index_funcs.items():
            if kind == resource_id.kind:
                for key in func(obj):
                    self._indexes[(kind, index_name)][key].add(resource_id)

    def _unindex(self, resource_id: NamedResource) -> None:
        for (kind, index_name) in self._index_funcs:
            if kind != resource_id.kind:
                continue
            index = self._indexes[(kind, index_name)]
            for key in list(index):
                index[key].discard(resource_id)
                if not index[key]:
                    del index[key]

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[[NamedResource, Any], None],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a store event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)

        if flush and event == StoreEvent.OBJECT_ADDED:
            _LOGGER.debug("Flushing objects for event type %s", event)
            for resource_id, obj in list(self._objects.items()):
                callback(resource_id, self._copy(obj))

        return remove

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):  # Iterate over a copy for safe removal
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
