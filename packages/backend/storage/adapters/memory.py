# packages/backend/storage/adapters/memory.py
"""In-memory storage adapter.

Models a POSIX tree of directories, files and symbolic links so detection,
import and link redirection can run without touching a real filesystem.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import AsyncIterator

from storage.base import StorageAdapter, FileInfo
from storage.exceptions import (
    StorageConflictError,
    StorageIOError,
    StorageNotFoundError,
)

_MAX_LINK_HOPS = 40


@dataclass
class _Dir:
    modified_at: datetime = field(default_factory=datetime.now)


@dataclass
class _File:
    data: bytearray = field(default_factory=bytearray)
    modified_at: datetime = field(default_factory=datetime.now)


@dataclass
class _Link:
    target: str
    modified_at: datetime = field(default_factory=datetime.now)


class MemoryAdapter(StorageAdapter):
    """Storage adapter backed by a dict of nodes."""

    def __init__(self, config: dict | None = None):
        self.config = config or {}
        self._nodes: dict[PurePosixPath, _Dir | _File | _Link] = {
            PurePosixPath("/"): _Dir(),
        }

    def _walk(self, path: Path | str, follow_last: bool = True) -> PurePosixPath:
        """Normalize a path, substituting link targets along the way."""
        parts = list(PurePosixPath(str(path)).parts)
        if not parts or parts[0] != "/":
            raise StorageIOError(f"Relative paths are not allowed: {path}")
        current = PurePosixPath("/")
        remaining = parts[1:]
        hops = 0
        while remaining:
            name = remaining.pop(0)
            if name == ".":
                continue
            if name == "..":
                current = current.parent
                continue
            candidate = current / name
            node = self._nodes.get(candidate)
            if isinstance(node, _Link) and (remaining or follow_last):
                hops += 1
                if hops > _MAX_LINK_HOPS:
                    raise StorageIOError(f"Too many levels of symbolic links: {path}")
                target = PurePosixPath(node.target)
                if not target.is_absolute():
                    target = current / target
                remaining = list(target.parts[1:]) + remaining
                current = PurePosixPath("/")
                continue
            current = candidate
        return current

    def _get(self, path: Path | str, follow_last: bool = True):
        return self._nodes.get(self._walk(path, follow_last))

    def _require_parent_dir(self, key: PurePosixPath) -> None:
        if not isinstance(self._nodes.get(key.parent), _Dir):
            raise StorageNotFoundError(f"Directory not found: {key.parent}")

    def _info(self, key: PurePosixPath) -> FileInfo:
        node = self._nodes[key]
        link_target = None
        if isinstance(node, _Link):
            link_target = node.target
            target = self._get(key)
        else:
            target = node
        return FileInfo(
            name=key.name,
            path=str(key),
            size=len(target.data) if isinstance(target, _File) else 0,
            is_directory=isinstance(target, _Dir),
            modified_at=(target or node).modified_at,
            is_symlink=isinstance(node, _Link),
            link_target=link_target,
        )

    async def test_connection(self, path: Path) -> bool:
        if not isinstance(self._get(path), _Dir):
            raise StorageNotFoundError(f"Path is not a directory: {path}")
        return True

    async def exists(self, path: Path) -> bool:
        return self._get(path) is not None

    async def is_directory(self, path: Path) -> bool:
        return isinstance(self._get(path), _Dir)

    async def is_symlink(self, path: Path) -> bool:
        return isinstance(self._get(path, follow_last=False), _Link)

    async def read_link(self, path: Path) -> str:
        node = self._get(path, follow_last=False)
        if node is None:
            raise StorageNotFoundError(f"Not found: {path}")
        if not isinstance(node, _Link):
            raise StorageIOError(f"Not a symbolic link: {path}")
        return node.target

    async def resolve(self, path: Path) -> Path:
        return Path(str(self._walk(path)))

    async def list_files(self, path: Path) -> list[FileInfo]:
        key = self._walk(path)
        node = self._nodes.get(key)
        if node is None:
            raise StorageNotFoundError(f"Directory not found: {path}")
        if not isinstance(node, _Dir):
            raise StorageNotFoundError(f"Not a directory: {path}")
        files = []
        for child in sorted(self._nodes):
            if child.parent != key or child == key:
                continue
            info = self._info(child)
            # Report entries under the path as given, like os.scandir
            info.path = str(PurePosixPath(str(path)) / child.name)
            files.append(info)
        return files

    async def get_file_info(self, path: Path) -> FileInfo:
        key = self._walk(path, follow_last=False)
        if key not in self._nodes or self._get(key) is None:
            raise StorageNotFoundError(f"File not found: {path}")
        return self._info(key)

    async def read_file(self, path: Path) -> bytes:
        node = self._get(path)
        if not isinstance(node, _File):
            raise StorageNotFoundError(f"File not found: {path}")
        return bytes(node.data)

    async def write_file(self, path: Path, data: bytes) -> None:
        key = self._walk(path)
        await self.ensure_directory(Path(str(key.parent)))
        if isinstance(self._nodes.get(key), _Dir):
            raise StorageIOError(f"Is a directory: {path}")
        self._nodes[key] = _File(bytearray(data))

    async def write_stream(self, path: Path, chunks: AsyncIterator[bytes]) -> None:
        key = self._walk(path, follow_last=False)
        if key in self._nodes:
            raise StorageConflictError(f"Already exists: {path}")
        await self.ensure_directory(Path(str(key.parent)))
        node = _File()
        self._nodes[key] = node
        async for chunk in chunks:
            node.data.extend(chunk)

    async def delete_file(self, path: Path) -> None:
        key = self._walk(path, follow_last=False)
        node = self._nodes.get(key)
        if node is None:
            raise StorageNotFoundError(f"File not found: {path}")
        if isinstance(node, _Dir):
            raise StorageIOError(f"Is a directory: {path}")
        del self._nodes[key]

    async def ensure_directory(self, path: Path) -> None:
        key = self._walk(path)
        current = PurePosixPath("/")
        for name in key.parts[1:]:
            current = current / name
            node = self._nodes.get(current)
            if node is None:
                self._nodes[current] = _Dir()
            elif not isinstance(node, _Dir):
                raise StorageIOError(f"Not a directory: {current}")

    async def symlink(self, target: Path, link_path: Path) -> None:
        key = self._walk(link_path, follow_last=False)
        if key in self._nodes:
            raise StorageConflictError(f"Already exists: {link_path}")
        self._require_parent_dir(key)
        self._nodes[key] = _Link(str(target))

    async def rename(self, source: Path, destination: Path) -> None:
        src = self._walk(source, follow_last=False)
        dst = self._walk(destination, follow_last=False)
        if src not in self._nodes:
            raise StorageNotFoundError(f"Not found: {source}")
        if dst in self._nodes:
            raise StorageConflictError(f"Already exists: {destination}")
        self._require_parent_dir(dst)
        moved = {
            key: node
            for key, node in self._nodes.items()
            if key == src or src in key.parents
        }
        for key in moved:
            del self._nodes[key]
        for key, node in moved.items():
            self._nodes[dst / key.relative_to(src)] = node
