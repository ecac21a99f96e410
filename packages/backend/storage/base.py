# packages/backend/storage/base.py
"""Base storage adapter interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Callable

from storage.exceptions import StorageError, StorageNotFoundError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


@dataclass
class FileInfo:
    """Information about a file, directory or link."""

    name: str
    path: str
    size: int
    is_directory: bool
    modified_at: datetime
    is_symlink: bool = False
    link_target: str | None = None


class StorageAdapter(ABC):
    """Abstract base class for storage adapters.

    Every filesystem side effect of detection, import and link redirection
    goes through this interface. Paths are absolute. Queries follow links
    unless they are about the link itself (is_symlink, read_link,
    delete_file, rename, symlink).
    """

    @abstractmethod
    async def test_connection(self, path: Path) -> bool:
        """Verify a directory exists and is writable."""
        ...

    @abstractmethod
    async def exists(self, path: Path) -> bool:
        """Check if file or directory exists."""
        ...

    @abstractmethod
    async def is_directory(self, path: Path) -> bool:
        """Check if path is a directory."""
        ...

    @abstractmethod
    async def is_symlink(self, path: Path) -> bool:
        """Check if path itself is a symbolic link."""
        ...

    @abstractmethod
    async def read_link(self, path: Path) -> str:
        """Return the raw target of a symbolic link."""
        ...

    @abstractmethod
    async def resolve(self, path: Path) -> Path:
        """Return the path with every symbolic link resolved."""
        ...

    @abstractmethod
    async def list_files(self, path: Path) -> list[FileInfo]:
        """List files and directories at path."""
        ...

    @abstractmethod
    async def get_file_info(self, path: Path) -> FileInfo:
        """Get metadata for a single file."""
        ...

    @abstractmethod
    async def read_file(self, path: Path) -> bytes:
        """Read file contents."""
        ...

    @abstractmethod
    async def write_file(self, path: Path, data: bytes) -> None:
        """Write data to file, creating directories as needed."""
        ...

    @abstractmethod
    async def write_stream(self, path: Path, chunks: AsyncIterator[bytes]) -> None:
        """Write chunks to a new file. Raises StorageConflictError if it exists."""
        ...

    @abstractmethod
    async def delete_file(self, path: Path) -> None:
        """Delete a file or a symbolic link."""
        ...

    @abstractmethod
    async def ensure_directory(self, path: Path) -> None:
        """Create directory and parents if they don't exist."""
        ...

    @abstractmethod
    async def symlink(self, target: Path, link_path: Path) -> None:
        """Create link_path pointing at target."""
        ...

    @abstractmethod
    async def rename(self, source: Path, destination: Path) -> None:
        """Rename without replacing. Raises StorageConflictError if destination exists."""
        ...

    async def read_text(self, path: Path) -> str:
        """Read a UTF-8 text file."""
        data = await self.read_file(path)
        return data.decode("utf-8")

    async def lexists(self, path: Path) -> bool:
        """Check if path exists, counting broken links."""
        return await self.is_symlink(path) or await self.exists(path)

    async def stream_file(self, path: Path, chunk_size: int = 8192) -> AsyncIterator[bytes]:
        """Stream file contents in chunks. Default reads entire file."""
        data = await self.read_file(path)
        for i in range(0, len(data), chunk_size):
            yield data[i:i + chunk_size]

    async def copy_file(
        self,
        source: Path,
        destination: Path,
        chunk_size: int = 1024 * 1024,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """Stream source into a new destination file.

        on_progress receives the running byte count after every chunk.
        Returns the number of bytes copied. A partially written
        destination is left for the caller to clean up.
        """
        copied = 0

        async def _chunks() -> AsyncIterator[bytes]:
            nonlocal copied
            async for chunk in self.stream_file(source, chunk_size):
                copied += len(chunk)
                if on_progress is not None:
                    on_progress(copied)
                yield chunk

        await self.write_stream(destination, _chunks())
        return copied

    async def walk_files(
        self,
        root: Path,
        skip_directory: Callable[[str], bool] | None = None,
    ) -> AsyncIterator[FileInfo]:
        """Yield every non-directory entry below root.

        Linked directories are not descended into. Directories that cannot
        be listed are skipped.
        """
        try:
            entries = await self.list_files(root)
        except (StorageError, OSError) as e:
            logger.debug("Skipping unreadable directory %s: %s", root, e)
            return

        for entry in entries:
            if entry.is_directory:
                if entry.is_symlink:
                    continue
                if skip_directory is not None and skip_directory(entry.name):
                    continue
                async for child in self.walk_files(Path(entry.path), skip_directory):
                    yield child
            else:
                yield entry

    async def discard(self, path: Path) -> None:
        """Remove a partially written file. Failures are logged, not raised."""
        try:
            await self.delete_file(path)
            logger.info("Removed partial file %s", path)
        except StorageNotFoundError:
            pass
        except StorageError:
            logger.exception("Could not remove partial file %s", path)
