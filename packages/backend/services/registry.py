"""Central registry of models under central management.

The registry owns the central store directory and one database row per
model file in it. A record's filename is unique within the store; the
registry never overwrites or renames to resolve a collision.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings
from core.interfaces.runtime import RUNTIMES, RuntimeId
from core.model_formats import (
    detect_format,
    extract_parameters,
    extract_quantization,
    is_weight_file,
)
from persistence.models import StoredModel
from services.path_manager import PathManager, path_manager as default_path_manager
from storage.base import StorageAdapter
from storage.exceptions import StorageConflictError, StorageNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class StoredModelRecord:
    """A model file in the central store."""

    id: str
    filename: str
    path: str
    size: int
    format: str
    acquired_at: datetime
    source: str = "manual"
    quantization: str | None = None
    parameters: str | None = None
    source_url: str | None = None
    hf_repo: str | None = None
    hf_file: str | None = None
    linked_runtimes: list[str] = field(default_factory=list)
    runtime_aliases: dict[str, str] = field(default_factory=dict)

    def is_linked(self, runtime: str | None = None) -> bool:
        """Whether the record is installed into a runtime (or any runtime)."""
        if runtime is None:
            return bool(self.linked_runtimes)
        return runtime in self.linked_runtimes


@dataclass
class StorageStats:
    """Summary of the central store."""

    total_models: int
    total_size: int
    storage_path: str
    storage_exists: bool
    linked: dict[str, int] = field(default_factory=dict)


def _to_record(model: StoredModel) -> StoredModelRecord:
    return StoredModelRecord(
        id=model.id,
        filename=model.filename,
        path=model.path,
        size=model.size,
        format=model.format,
        acquired_at=model.acquired_at,
        source=model.source,
        quantization=model.quantization,
        parameters=model.parameters,
        source_url=model.source_url,
        hf_repo=model.hf_repo,
        hf_file=model.hf_file,
        linked_runtimes=list(model.linked_runtimes or []),
        runtime_aliases=dict(model.runtime_aliases or {}),
    )


class CentralRegistry:
    """Canonical record store for centrally managed model files."""

    def __init__(
        self,
        settings: Settings,
        adapter: StorageAdapter,
        session_factory: async_sessionmaker[AsyncSession],
        pm: PathManager | None = None,
    ):
        """Initialize the registry.

        Args:
            settings: Application settings (for the store location).
            adapter: Storage adapter for the store directory.
            session_factory: Factory for database sessions.
            pm: PathManager instance. Uses default if not provided.
        """
        self._settings = settings
        self._adapter = adapter
        self._session_factory = session_factory
        self._pm = pm or default_path_manager

    @property
    def store_root(self) -> Path:
        """The central store directory."""
        return Path(self._settings.STORAGE_PATH).expanduser()

    async def ensure_store(self) -> Path:
        """Create the store directory if needed and return it."""
        await self._adapter.ensure_directory(self.store_root)
        return self.store_root

    def destination_path(self, filename: str) -> Path:
        """Where a file with this name lives in the store."""
        return self.store_root / self._pm.safe_filename(filename)

    async def register(
        self,
        filename: str,
        size: int,
        path: Path | str | None = None,
        source: str = "manual",
        format: str | None = None,
        quantization: str | None = None,
        parameters: str | None = None,
        source_url: str | None = None,
        hf_repo: str | None = None,
        hf_file: str | None = None,
    ) -> StoredModelRecord:
        """Persist a new record for a file already in the store.

        Format, quantization and parameter count are inferred from the
        filename when not given.

        Raises:
            StorageConflictError: If the filename or path is already registered.
        """
        filename = self._pm.safe_filename(filename)
        path = str(path) if path is not None else str(self.destination_path(filename))

        async with self._session_factory() as session:
            existing = await session.scalar(
                select(StoredModel).where(
                    or_(
                        func.lower(StoredModel.filename) == filename.lower(),
                        StoredModel.path == path,
                    )
                )
            )
            if existing is not None:
                raise StorageConflictError(
                    f"A model named {existing.filename} is already registered ({existing.id})"
                )

            model = StoredModel(
                id=self._pm.generate_model_id(filename),
                filename=filename,
                path=path,
                size=size,
                format=format or detect_format(filename),
                quantization=quantization or extract_quantization(filename),
                parameters=parameters or extract_parameters(filename),
                source=source,
                source_url=source_url,
                hf_repo=hf_repo,
                hf_file=hf_file,
                linked_runtimes=[],
                runtime_aliases={},
                acquired_at=datetime.now(),
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise StorageConflictError(f"A model named {filename} is already registered") from e

            logger.info("Registered %s as %s (%s)", filename, model.id, source)
            return _to_record(model)

    async def get(self, record_id: str) -> StoredModelRecord | None:
        async with self._session_factory() as session:
            model = await session.get(StoredModel, record_id)
            return _to_record(model) if model else None

    async def get_by_filename(self, filename: str) -> StoredModelRecord | None:
        """Case-insensitive lookup by store filename."""
        async with self._session_factory() as session:
            model = await session.scalar(
                select(StoredModel).where(func.lower(StoredModel.filename) == filename.lower())
            )
            return _to_record(model) if model else None

    async def list_all(self) -> list[StoredModelRecord]:
        """All records, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredModel).order_by(StoredModel.acquired_at.desc())
            )
            return [_to_record(m) for m in result.scalars().all()]

    async def set_runtime_link(
        self,
        record_id: str,
        runtime: RuntimeId,
        linked: bool,
        alias: str | None = None,
    ) -> StoredModelRecord:
        """Add a runtime to (or remove it from) a record's link set.

        The alias is stored with the link and dropped with it.

        Raises:
            StorageNotFoundError: If the record does not exist.
        """
        async with self._session_factory() as session:
            model = await session.get(StoredModel, record_id)
            if model is None:
                raise StorageNotFoundError(f"Model not found: {record_id}")

            runtimes = [r for r in (model.linked_runtimes or []) if r != runtime]
            aliases = {k: v for k, v in (model.runtime_aliases or {}).items() if k != runtime}
            if linked:
                runtimes.append(runtime)
                if alias:
                    aliases[runtime] = alias

            # Reassign so the JSON columns are flagged dirty
            model.linked_runtimes = runtimes
            model.runtime_aliases = aliases
            await session.commit()
            return _to_record(model)

    async def delete(self, record_id: str, delete_file: bool = False) -> StoredModelRecord:
        """Delete a record, optionally with its file.

        The caller must detach the record from every runtime first.

        Raises:
            StorageNotFoundError: If the record does not exist.
            StorageConflictError: If the record is still linked into a runtime.
        """
        async with self._session_factory() as session:
            model = await session.get(StoredModel, record_id)
            if model is None:
                raise StorageNotFoundError(f"Model not found: {record_id}")
            record = _to_record(model)
            if record.linked_runtimes:
                raise StorageConflictError(
                    f"Model {record.filename} is still installed in: "
                    f"{', '.join(record.linked_runtimes)}"
                )

            if delete_file:
                try:
                    await self._adapter.delete_file(Path(record.path))
                except StorageNotFoundError:
                    logger.warning("File already gone: %s", record.path)

            await session.delete(model)
            await session.commit()

        logger.info("Deleted model %s (file %s)", record.id, "removed" if delete_file else "kept")
        return record

    async def stats(self) -> StorageStats:
        records = await self.list_all()
        return StorageStats(
            total_models=len(records),
            total_size=sum(r.size for r in records),
            storage_path=str(self.store_root),
            storage_exists=await self._adapter.is_directory(self.store_root),
            linked={rt: sum(1 for r in records if r.is_linked(rt)) for rt in RUNTIMES},
        )

    async def scan_for_new_models(self) -> list[StoredModelRecord]:
        """Register weight files in the store root that have no record yet."""
        root = await self.ensure_store()
        records = await self.list_all()
        known_names = {r.filename.lower() for r in records}
        known_paths = {r.path for r in records}

        added = []
        for entry in await self._adapter.list_files(root):
            if entry.is_directory or entry.name.startswith("."):
                continue
            if not is_weight_file(entry.name):
                continue
            if entry.name.lower() in known_names or entry.path in known_paths:
                continue
            added.append(await self.register(
                filename=entry.name,
                path=entry.path,
                size=entry.size,
                source="manual",
            ))

        if added:
            logger.info("Registered %d untracked model(s) in %s", len(added), root)
        return added

    async def verify_models(self) -> list[StoredModelRecord]:
        """Drop records whose file no longer exists. Returns the dropped records."""
        removed = []
        async with self._session_factory() as session:
            result = await session.execute(select(StoredModel))
            for model in result.scalars().all():
                if await self._adapter.exists(Path(model.path)):
                    continue
                logger.warning("Model file missing, removing record %s: %s", model.id, model.path)
                removed.append(_to_record(model))
                await session.delete(model)
            await session.commit()
        return removed
