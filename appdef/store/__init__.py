"""
The store module provides the object store the reconciliation engine reads
desired state from and writes child objects and status to.

- Uses NamedResource as the key for all objects.
- Stores objects as unstructured documents with API server semantics
  (resource versions, generations, field ownership, finalizers, owner
  references).
- Provides query, write and watch APIs for the controller.

This abstract interface allows for various implementations (in-memory, a real
cluster client, etc.).
"""

from .store import Store, StoreEvent, StoreCallback
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "StoreCallback",
    "InMemoryStore",
]
