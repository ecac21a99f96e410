"""Moves model files between runtime storage and the central store.

Promote: copy a discovered model's weight file into the store, register it,
and only then (on confirmed request) delete the runtime's copy.

Install: make a store file available to a runtime. Ollama creates its own
model from the file through its API; LM Studio gets a link (or a copy)
inside its models tree.

Every operation returns a result object; storage failures never propagate
to the caller. Cancellation does propagate, after cleanup.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from adapters.runtimes.ollama import build_modelfile
from core.config import Settings
from core.events import MODEL_DELETED, MODEL_IMPORTED, MODEL_INSTALLED, MODEL_UNINSTALLED, emit
from core.interfaces.runtime import IModelCreator, RuntimeId
from services.detector import DiscoveredModel, ModelDetector
from services.path_manager import PathManager, path_manager as default_path_manager
from services.path_resolver import PathResolver
from services.registry import CentralRegistry, StoredModelRecord
from storage.base import ProgressCallback, StorageAdapter
from storage.exceptions import (
    ErrorKind,
    RuntimeUnavailableError,
    StorageConflictError,
    StorageError,
    StorageIOError,
    StorageNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class PromoteResult:
    """Outcome of copying a discovered model into the store."""

    success: bool
    model_id: str | None = None
    filename: str | None = None
    size: int = 0
    storage_path: str | None = None
    originals_deleted: bool = False
    space_freed: int = 0
    warning: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass
class InstallResult:
    """Outcome of installing a store file into a runtime, or removing it."""

    success: bool
    model_id: str
    runtime: RuntimeId
    installed_name: str | None = None
    method: str | None = None  # api, symlink, copy
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass
class RemoveResult:
    """Outcome of detaching a record from every runtime and deleting it."""

    success: bool
    model_id: str
    uninstalled: list[str] = field(default_factory=list)
    file_deleted: bool = False
    error: str | None = None
    error_kind: ErrorKind | None = None


class ModelImporter:
    """Promotes discovered models and installs store files into runtimes."""

    def __init__(
        self,
        settings: Settings,
        adapter: StorageAdapter,
        registry: CentralRegistry,
        resolver: PathResolver,
        detector: ModelDetector,
        ollama: IModelCreator,
        pm: PathManager | None = None,
    ):
        self._settings = settings
        self._adapter = adapter
        self._registry = registry
        self._resolver = resolver
        self._detector = detector
        self._ollama = ollama
        self._pm = pm or default_path_manager

    async def _copy_new(
        self,
        source: Path,
        destination: Path,
        on_progress: ProgressCallback | None = None,
    ) -> int:
        """Copy into a new file, removing it again if anything goes wrong."""
        expected = (await self._adapter.get_file_info(source)).size
        try:
            copied = await self._adapter.copy_file(
                source,
                destination,
                chunk_size=self._settings.COPY_CHUNK_SIZE,
                on_progress=on_progress,
            )
        except StorageConflictError:
            # Not ours to clean up
            raise
        except (Exception, asyncio.CancelledError):
            await self._adapter.discard(destination)
            raise

        if copied != expected:
            await self._adapter.discard(destination)
            raise StorageIOError(f"Copy incomplete: {copied} of {expected} bytes")
        return copied

    # ── Promote ────────────────────────────────────────────────────────

    def _weight_source(self, model: DiscoveredModel) -> Path:
        if model.runtime == "ollama":
            if not model.weight_blob:
                raise StorageNotFoundError(f"No weight layer for {model.name}")
            if model.weight_blob in model.missing_blobs:
                raise StorageNotFoundError(f"Weight blob missing for {model.name}: {model.weight_blob}")
            return Path(model.weight_blob)
        return Path(model.path)

    async def promote(
        self,
        model: DiscoveredModel,
        delete_original: bool = False,
        confirm_delete: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> PromoteResult:
        """Copy a discovered model into the central store and register it.

        Args:
            model: A model from a detection pass.
            delete_original: Delete the runtime's copy after a successful import.
            confirm_delete: Explicit user confirmation for delete_original.
            on_progress: Receives the running byte count during the copy.

        Returns:
            PromoteResult. The store never holds a registered partial file.
        """
        if delete_original and not confirm_delete:
            return PromoteResult(
                success=False,
                error="Deleting the original requires explicit confirmation",
                error_kind=ErrorKind.CONFLICT,
            )

        try:
            record = await self._promote(model, on_progress)
        except StorageError as e:
            logger.warning("Import of %s failed: %s", model.name, e)
            return PromoteResult(success=False, error=str(e), error_kind=e.kind)
        except ValueError as e:
            return PromoteResult(success=False, error=str(e), error_kind=ErrorKind.MALFORMED)

        result = PromoteResult(
            success=True,
            model_id=record.id,
            filename=record.filename,
            size=record.size,
            storage_path=record.path,
        )

        if delete_original:
            try:
                result.space_freed = await self._delete_originals(model)
                result.originals_deleted = True
            except StorageError as e:
                logger.exception("Imported %s but could not delete the original", model.name)
                result.warning = f"Imported, but the original could not be deleted: {e}"

        await emit(MODEL_IMPORTED, model_id=record.id, runtime=model.runtime, filename=record.filename)
        return result

    async def _promote(
        self,
        model: DiscoveredModel,
        on_progress: ProgressCallback | None,
    ) -> StoredModelRecord:
        source = self._weight_source(model)
        filename = self._pm.store_filename(model.runtime, model.name, model.path)

        existing = await self._registry.get_by_filename(filename)
        if existing is not None:
            raise StorageConflictError(f"{filename} is already in the central store ({existing.id})")

        await self._registry.ensure_store()
        destination = self._registry.destination_path(filename)
        if await self._adapter.lexists(destination):
            raise StorageConflictError(f"A file named {filename} already exists in the central store")

        logger.info("Importing %s from %s to %s", model.name, source, destination)
        size = await self._copy_new(source, destination, on_progress)

        try:
            return await self._registry.register(
                filename=filename,
                path=destination,
                size=size,
                source=model.runtime,
                format=model.format,
                quantization=model.quantization,
                parameters=model.parameters,
            )
        except (Exception, asyncio.CancelledError):
            await self._adapter.discard(destination)
            raise

    async def _delete_originals(self, model: DiscoveredModel) -> int:
        """Delete the runtime's copy of a model. Returns bytes freed."""
        if model.runtime == "lmstudio":
            path = Path(model.path)
            info = await self._adapter.get_file_info(path)
            await self._adapter.delete_file(path)
            logger.info("Deleted original %s", path)
            return 0 if info.is_symlink else info.size

        # Blobs are shared between tags; keep the ones other manifests use
        root = Path(model.weight_blob).parent.parent
        references = await self._detector.blob_references(root)
        still_used = set()
        for manifest_path, blobs in references.items():
            if manifest_path != model.path:
                still_used |= blobs

        await self._adapter.delete_file(Path(model.path))
        freed = 0
        for blob in model.blob_files:
            if blob in still_used or blob in model.missing_blobs:
                continue
            info = await self._adapter.get_file_info(Path(blob))
            await self._adapter.delete_file(Path(blob))
            freed += info.size
        logger.info("Deleted Ollama model %s (%d bytes freed)", model.name, freed)
        return freed

    # ── Install / uninstall ────────────────────────────────────────────

    async def install(
        self,
        record_id: str,
        runtime: RuntimeId,
        model_name: str | None = None,
        system_prompt: str | None = None,
        parameters: dict[str, str | int | float] | None = None,
        use_symlink: bool = True,
    ) -> InstallResult:
        """Make a store file available to a runtime.

        On success the runtime joins the record's link set.
        """
        record = await self._registry.get(record_id)
        if record is None:
            return InstallResult(
                success=False,
                model_id=record_id,
                runtime=runtime,
                error=f"Model not found: {record_id}",
                error_kind=ErrorKind.NOT_FOUND,
            )

        try:
            if runtime == "ollama":
                result = await self._install_ollama(record, model_name, system_prompt, parameters)
            elif runtime == "lmstudio":
                result = await self._install_lmstudio(record, use_symlink)
            else:
                raise ValueError(f"Unknown runtime: {runtime}")
        except StorageError as e:
            logger.warning("Install of %s into %s failed: %s", record.filename, runtime, e)
            return InstallResult(
                success=False,
                model_id=record.id,
                runtime=runtime,
                error=str(e),
                error_kind=e.kind,
            )

        await emit(
            MODEL_INSTALLED,
            model_id=record.id,
            runtime=runtime,
            installed_name=result.installed_name,
        )
        return result

    async def _install_ollama(
        self,
        record: StoredModelRecord,
        model_name: str | None,
        system_prompt: str | None,
        parameters: dict[str, str | int | float] | None,
    ) -> InstallResult:
        path = Path(record.path)
        if not await self._adapter.exists(path):
            raise StorageNotFoundError(f"Model file not found: {path}")
        if not self._ollama.is_local():
            raise StorageConflictError(
                "Ollama is not running on this machine and cannot read the central store"
            )
        if not await self._ollama.is_available():
            raise RuntimeUnavailableError("Ollama is not running. Start Ollama and try again.")

        name = (model_name or "").strip() or self._pm.runtime_model_name(record.filename)
        await self._ollama.create_model(name, build_modelfile(str(path), system_prompt, parameters))
        await self._registry.set_runtime_link(record.id, "ollama", True, alias=name)

        logger.info("Installed %s into Ollama as %s", record.filename, name)
        return InstallResult(
            success=True,
            model_id=record.id,
            runtime="ollama",
            installed_name=name,
            method="api",
        )

    async def _lmstudio_target(self, record: StoredModelRecord) -> Path:
        alias = record.runtime_aliases.get("lmstudio")
        if alias:
            return Path(alias)
        root = await self._resolver.default_root("lmstudio")
        return root / self._settings.LMSTUDIO_LINK_DIR / record.filename

    async def _install_lmstudio(self, record: StoredModelRecord, use_symlink: bool) -> InstallResult:
        source = Path(record.path)
        if not await self._adapter.exists(source):
            raise StorageNotFoundError(f"Model file not found: {source}")

        root = await self._resolver.default_root("lmstudio")
        target = root / self._settings.LMSTUDIO_LINK_DIR / record.filename

        method = "symlink" if use_symlink else "copy"
        if await self._adapter.is_symlink(target):
            if await self._adapter.resolve(target) == await self._adapter.resolve(source):
                method = None
            else:
                logger.info("Replacing stale link %s", target)
                await self._adapter.delete_file(target)
        elif await self._adapter.exists(target):
            raise StorageConflictError(f"A file already exists at {target}")

        if method is not None:
            await self._adapter.ensure_directory(target.parent)
            if use_symlink:
                await self._adapter.symlink(source, target)
            else:
                await self._copy_new(source, target)
        else:
            method = "symlink"

        await self._registry.set_runtime_link(record.id, "lmstudio", True, alias=str(target))

        logger.info("Installed %s into LM Studio at %s (%s)", record.filename, target, method)
        return InstallResult(
            success=True,
            model_id=record.id,
            runtime="lmstudio",
            installed_name=f"{self._settings.LMSTUDIO_LINK_DIR}/{record.filename}",
            method=method,
        )

    async def uninstall(self, record_id: str, runtime: RuntimeId) -> InstallResult:
        """Remove a store file from a runtime.

        The link set changes only when the runtime side was removed.
        """
        record = await self._registry.get(record_id)
        if record is None:
            return InstallResult(
                success=False,
                model_id=record_id,
                runtime=runtime,
                error=f"Model not found: {record_id}",
                error_kind=ErrorKind.NOT_FOUND,
            )

        try:
            if runtime == "ollama":
                name = await self._uninstall_ollama(record)
            elif runtime == "lmstudio":
                name = await self._uninstall_lmstudio(record)
            else:
                raise ValueError(f"Unknown runtime: {runtime}")
            await self._registry.set_runtime_link(record.id, runtime, False)
        except StorageError as e:
            logger.warning("Uninstall of %s from %s failed: %s", record.filename, runtime, e)
            return InstallResult(
                success=False,
                model_id=record.id,
                runtime=runtime,
                error=str(e),
                error_kind=e.kind,
            )

        await emit(MODEL_UNINSTALLED, model_id=record.id, runtime=runtime, installed_name=name)
        return InstallResult(success=True, model_id=record.id, runtime=runtime, installed_name=name)

    async def _uninstall_ollama(self, record: StoredModelRecord) -> str:
        name = record.runtime_aliases.get("ollama") or self._pm.runtime_model_name(record.filename)
        if not await self._ollama.is_available():
            raise RuntimeUnavailableError("Ollama is not running. Start Ollama and try again.")
        try:
            await self._ollama.delete_model(name)
        except StorageNotFoundError:
            logger.info("Ollama model %s was already deleted", name)
        logger.info("Uninstalled %s from Ollama", name)
        return name

    async def _uninstall_lmstudio(self, record: StoredModelRecord) -> str:
        target = await self._lmstudio_target(record)
        if await self._adapter.lexists(target):
            await self._adapter.delete_file(target)
            logger.info("Removed %s", target)
        else:
            logger.info("LM Studio install %s was already removed", target)
        return str(target)

    async def remove(self, record_id: str, delete_file: bool = False) -> RemoveResult:
        """Uninstall a record from every runtime, then delete it."""
        record = await self._registry.get(record_id)
        if record is None:
            return RemoveResult(
                success=False,
                model_id=record_id,
                error=f"Model not found: {record_id}",
                error_kind=ErrorKind.NOT_FOUND,
            )

        uninstalled = []
        for runtime in list(record.linked_runtimes):
            result = await self.uninstall(record.id, runtime)
            if not result.success:
                return RemoveResult(
                    success=False,
                    model_id=record.id,
                    uninstalled=uninstalled,
                    error=f"Could not uninstall from {runtime}: {result.error}",
                    error_kind=result.error_kind,
                )
            uninstalled.append(runtime)

        try:
            await self._registry.delete(record.id, delete_file=delete_file)
        except StorageError as e:
            logger.warning("Delete of %s failed: %s", record.id, e)
            return RemoveResult(
                success=False,
                model_id=record.id,
                uninstalled=uninstalled,
                error=str(e),
                error_kind=e.kind,
            )

        await emit(MODEL_DELETED, model_id=record.id, file_deleted=delete_file)
        return RemoveResult(
            success=True,
            model_id=record.id,
            uninstalled=uninstalled,
            file_deleted=delete_file,
        )
