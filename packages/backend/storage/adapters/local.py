# packages/backend/storage/adapters/local.py
"""Local filesystem storage adapter."""

import asyncio
import os
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os

from storage.base import StorageAdapter, FileInfo
from storage.exceptions import (
    StorageConflictError,
    StorageError,
    StorageIOError,
    StorageNotFoundError,
    StoragePermissionError,
)


def _translate(error: OSError, path: Path) -> StorageError:
    """Map an OSError onto the storage exception hierarchy."""
    if isinstance(error, FileNotFoundError):
        return StorageNotFoundError(f"Not found: {path}")
    if isinstance(error, FileExistsError):
        return StorageConflictError(f"Already exists: {path}")
    if isinstance(error, PermissionError):
        return StoragePermissionError(f"Permission denied: {path}")
    return StorageIOError(f"{error.strerror or error} ({path})")


class LocalAdapter(StorageAdapter):
    """Storage adapter for the local filesystem."""

    def __init__(self, config: dict | None = None):
        """Initialize. Config is accepted for factory symmetry and unused."""
        self.config = config or {}

    def _resolve_path(self, path: Path | str) -> Path:
        """Expand the path, refusing relative paths."""
        resolved = Path(path).expanduser()
        if not resolved.is_absolute():
            raise StoragePermissionError(f"Relative paths are not allowed: {path}")
        return resolved

    async def _run(self, func, *args):
        """Run a blocking call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def test_connection(self, path: Path) -> bool:
        """Verify path exists and is writable."""
        dir_path = self._resolve_path(path)
        if not dir_path.is_dir():
            raise StorageNotFoundError(f"Path is not a directory: {dir_path}")
        test_file = dir_path / ".write_test"
        try:
            test_file.touch()
            test_file.unlink()
        except PermissionError:
            raise StoragePermissionError(f"Cannot write to: {dir_path}")
        return True

    async def exists(self, path: Path) -> bool:
        """Check if path exists."""
        return await aiofiles.os.path.exists(self._resolve_path(path))

    async def is_directory(self, path: Path) -> bool:
        """Check if path is a directory."""
        return await aiofiles.os.path.isdir(self._resolve_path(path))

    async def is_symlink(self, path: Path) -> bool:
        """Check if path is a symbolic link."""
        return await aiofiles.os.path.islink(self._resolve_path(path))

    async def read_link(self, path: Path) -> str:
        """Return the raw link target."""
        link_path = self._resolve_path(path)
        try:
            return str(await aiofiles.os.readlink(link_path))
        except OSError as e:
            raise _translate(e, link_path) from e

    async def resolve(self, path: Path) -> Path:
        """Resolve links without requiring the path to exist."""
        return Path(await self._run(os.path.realpath, self._resolve_path(path)))

    def _describe(self, item: Path) -> FileInfo:
        """Build FileInfo from lstat, following links for size and type."""
        lstat = item.lstat()
        is_link = item.is_symlink()
        link_target = None
        stat = lstat
        if is_link:
            link_target = os.readlink(item)
            try:
                stat = item.stat()
            except OSError:
                stat = None  # broken link
        is_dir = stat is not None and item.is_dir()
        return FileInfo(
            name=item.name,
            path=str(item),
            size=stat.st_size if stat is not None and not is_dir else 0,
            is_directory=is_dir,
            modified_at=datetime.fromtimestamp((stat or lstat).st_mtime),
            is_symlink=is_link,
            link_target=link_target,
        )

    def _list_sync(self, dir_path: Path) -> list[FileInfo]:
        files = []
        for item in dir_path.iterdir():
            try:
                files.append(self._describe(item))
            except OSError:
                continue  # vanished or unreadable entry
        return files

    async def list_files(self, path: Path) -> list[FileInfo]:
        """List entries in a directory."""
        dir_path = self._resolve_path(path)
        if not dir_path.exists():
            raise StorageNotFoundError(f"Directory not found: {dir_path}")
        if not dir_path.is_dir():
            raise StorageNotFoundError(f"Not a directory: {dir_path}")
        try:
            return await self._run(self._list_sync, dir_path)
        except OSError as e:
            raise _translate(e, dir_path) from e

    async def get_file_info(self, path: Path) -> FileInfo:
        """Get file metadata."""
        file_path = self._resolve_path(path)
        if not file_path.exists():
            raise StorageNotFoundError(f"File not found: {file_path}")
        try:
            return await self._run(self._describe, file_path)
        except OSError as e:
            raise _translate(e, file_path) from e

    async def read_file(self, path: Path) -> bytes:
        """Read file contents."""
        file_path = self._resolve_path(path)
        if not file_path.is_file():
            raise StorageNotFoundError(f"File not found: {file_path}")
        async with aiofiles.open(file_path, "rb") as f:
            return await f.read()

    async def stream_file(self, path: Path, chunk_size: int = 8192) -> AsyncIterator[bytes]:
        """Stream file contents without loading the whole file."""
        file_path = self._resolve_path(path)
        if not file_path.is_file():
            raise StorageNotFoundError(f"File not found: {file_path}")
        try:
            async with aiofiles.open(file_path, "rb") as f:
                while True:
                    chunk = await f.read(chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            raise _translate(e, file_path) from e

    async def write_file(self, path: Path, data: bytes) -> None:
        """Write data to file, creating directories as needed."""
        file_path = self._resolve_path(path)
        await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
        async with aiofiles.open(file_path, "wb") as f:
            await f.write(data)

    async def write_stream(self, path: Path, chunks: AsyncIterator[bytes]) -> None:
        """Write chunks to a file that must not exist yet."""
        file_path = self._resolve_path(path)
        try:
            await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
            async with aiofiles.open(file_path, "xb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
        except OSError as e:
            raise _translate(e, file_path) from e

    async def delete_file(self, path: Path) -> None:
        """Delete a file or link."""
        file_path = self._resolve_path(path)
        if not file_path.is_symlink() and not file_path.exists():
            raise StorageNotFoundError(f"File not found: {file_path}")
        try:
            await aiofiles.os.remove(file_path)
        except OSError as e:
            raise _translate(e, file_path) from e

    async def ensure_directory(self, path: Path) -> None:
        """Create directory and parents."""
        dir_path = self._resolve_path(path)
        try:
            await aiofiles.os.makedirs(dir_path, exist_ok=True)
        except OSError as e:
            raise _translate(e, dir_path) from e

    async def symlink(self, target: Path, link_path: Path) -> None:
        """Create a symbolic link."""
        target_path = self._resolve_path(target)
        link = self._resolve_path(link_path)
        try:
            await aiofiles.os.symlink(
                target_path, link, target_is_directory=target_path.is_dir()
            )
        except OSError as e:
            raise _translate(e, link) from e

    async def rename(self, source: Path, destination: Path) -> None:
        """Rename without replacing an existing destination."""
        src = self._resolve_path(source)
        dst = self._resolve_path(destination)
        if dst.is_symlink() or dst.exists():
            raise StorageConflictError(f"Already exists: {dst}")
        try:
            await aiofiles.os.rename(src, dst)
        except OSError as e:
            raise _translate(e, src) from e
