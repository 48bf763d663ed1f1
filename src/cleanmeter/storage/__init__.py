# Storage package

from .base import EntitlementStore, StoreBackend, get_store
from .memory import InMemoryEntitlementStore
from .postgres import PostgresEntitlementStore

__all__ = [
    "EntitlementStore",
    "InMemoryEntitlementStore",
    "PostgresEntitlementStore",
    "StoreBackend",
    "get_store",
]
