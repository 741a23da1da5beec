"""Persistence collaborators: Store Protocol plus memory and PostgreSQL backends."""

from greenlight.store.memory import MemoryStore
from greenlight.store.protocol import Store, TokenValidator

__all__ = [
    "MemoryStore",
    "Store",
    "TokenValidator",
]
