"""In-memory store backend."""

from .store import MemoryAdminStore, MemoryStore, TTLEntry

__all__ = ["MemoryAdminStore", "MemoryStore", "TTLEntry"]
