# packages/backend/storage/adapters/__init__.py
"""Storage adapter implementations."""

from storage.adapters.local import LocalAdapter
from storage.adapters.memory import MemoryAdapter

__all__ = ["LocalAdapter", "MemoryAdapter"]
