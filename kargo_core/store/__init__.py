"""
The store module provides the declarative object store that controllers and
admission webhooks read from and write to.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Supports field indexes, e.g. Stages keyed by the Applications they reference.
- Notifies listeners when objects are added, updated, deleted or their status changes.

This abstract interface allows for various implementations (in-memory, API server backed, etc.).
"""

from .store import Store, StoreEvent, CreateResult, IndexFunc
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "CreateResult",
    "IndexFunc",
    "InMemoryStore",
]
