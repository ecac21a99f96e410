# packages/backend/storage/__init__.py
"""Storage adapter package."""

from storage.base import StorageAdapter, FileInfo
from storage.exceptions import (
    ErrorKind,
    ManifestError,
    RuntimeUnavailableError,
    StorageConflictError,
    StorageError,
    StorageIOError,
    StorageNotFoundError,
    StoragePermissionError,
)

__all__ = [
    "StorageAdapter",
    "FileInfo",
    "ErrorKind",
    "ManifestError",
    "RuntimeUnavailableError",
    "StorageConflictError",
    "StorageError",
    "StorageIOError",
    "StorageNotFoundError",
    "StoragePermissionError",
]
