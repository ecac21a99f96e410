# packages/backend/storage/exceptions.py
"""Storage and runtime exceptions."""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories reported in result objects."""

    NOT_FOUND = "not_found"
    UNREACHABLE = "unreachable"
    MALFORMED = "malformed"
    CONFLICT = "conflict"
    IO_FAILURE = "io_failure"


class StorageError(Exception):
    """Base storage error."""

    kind: ErrorKind = ErrorKind.IO_FAILURE


class StorageNotFoundError(StorageError):
    """File or directory not found."""

    kind = ErrorKind.NOT_FOUND


class StorageConflictError(StorageError):
    """Target already exists or is in a state that forbids the change."""

    kind = ErrorKind.CONFLICT


class StorageIOError(StorageError):
    """A copy, rename, link or delete call failed."""

    kind = ErrorKind.IO_FAILURE


class StoragePermissionError(StorageError):
    """Permission denied."""

    kind = ErrorKind.IO_FAILURE


class ManifestError(StorageError):
    """Manifest document could not be parsed or validated."""

    kind = ErrorKind.MALFORMED


class RuntimeUnavailableError(StorageError):
    """Runtime API did not respond."""

    kind = ErrorKind.UNREACHABLE
