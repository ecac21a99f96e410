"""Redirects a runtime's models directory to the central store.

A configured runtime's models directory is a symbolic link to the store,
with the original directory kept beside it as <path>.backup. There is no
persisted state: every call re-derives the state from the filesystem, and
every step of configure/restore can be retried from whatever state an
interrupted run left behind.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from core.config import Settings
from core.events import STORAGE_CONFIGURED, STORAGE_RESTORED, emit
from core.interfaces.runtime import RuntimeId
from services.path_manager import PathManager, path_manager as default_path_manager
from services.path_resolver import PathResolver
from services.registry import CentralRegistry
from storage.base import StorageAdapter
from storage.exceptions import ErrorKind, StorageConflictError, StorageError

logger = logging.getLogger(__name__)


class LinkState(str, Enum):
    """Redirection state of a runtime's models directory."""

    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    NEEDS_REPAIR = "needs_repair"


@dataclass
class RuntimeLinkStatus:
    """Filesystem facts about a runtime's models directory."""

    runtime: RuntimeId
    state: LinkState
    runtime_path: str
    central_path: str
    is_link: bool = False
    points_to_central: bool = False
    current_path: str | None = None
    backup_exists: bool = False
    backup_path: str | None = None
    instructions: list[str] = field(default_factory=list)

    @property
    def configured(self) -> bool:
        return self.state == LinkState.CONFIGURED


@dataclass
class ConfigureResult:
    """Outcome of configure or restore, with the status afterwards."""

    success: bool
    runtime: RuntimeId
    status: RuntimeLinkStatus
    message: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


def _instructions(runtime: RuntimeId, central: Path) -> list[str]:
    """Manual alternatives to link redirection."""
    if runtime == "ollama":
        return [
            "Option 1: Set environment variable (recommended)",
            f"  export OLLAMA_MODELS={central}",
            "  Add this to ~/.bashrc, ~/.zshrc, or the system environment",
            "",
            "Option 2: Create symlink (automatic)",
            "  Moves your existing models aside and links the folder to central storage",
            "",
            "Note: Restart Ollama after configuration changes",
        ]
    return [
        "LM Studio can load models from any folder.",
        "Option 1: Set the models folder in LM Studio",
        "  Open LM Studio → My Models → Models Directory",
        f"  Set to: {central}",
        "",
        "Option 2: Create symlink (automatic)",
        "  Moves your existing models aside and links the folder to central storage",
    ]


class StorageConfigurator:
    """Links runtime models directories to the central store and back."""

    def __init__(
        self,
        settings: Settings,
        adapter: StorageAdapter,
        registry: CentralRegistry,
        resolver: PathResolver,
        pm: PathManager | None = None,
    ):
        self._settings = settings
        self._adapter = adapter
        self._registry = registry
        self._resolver = resolver
        self._pm = pm or default_path_manager

    async def runtime_path(self, runtime: RuntimeId) -> Path:
        """The runtime's models directory.

        First candidate present on disk as a directory, a link (even broken)
        or a backup; else the first candidate.
        """
        candidates = self._resolver.candidate_roots(runtime)
        for path in candidates:
            if await self._adapter.lexists(path):
                return path
            if await self._adapter.lexists(self._pm.backup_path(path)):
                return path
        return candidates[0]

    async def _points_to_central(self, path: Path) -> bool:
        central = await self._adapter.resolve(self._registry.store_root)
        return await self._adapter.resolve(path) == central

    async def status(self, runtime: RuntimeId) -> RuntimeLinkStatus:
        """Derive the redirection state from the filesystem."""
        path = await self.runtime_path(runtime)
        central = self._registry.store_root
        backup = self._pm.backup_path(path)

        is_link = await self._adapter.is_symlink(path)
        current_path = None
        points_to_central = False
        if is_link:
            current_path = await self._adapter.read_link(path)
            points_to_central = await self._points_to_central(path)
        elif await self._adapter.exists(path):
            current_path = str(path)
        backup_exists = await self._adapter.lexists(backup)

        if is_link and points_to_central:
            state = LinkState.CONFIGURED
        elif not is_link and not backup_exists:
            state = LinkState.UNCONFIGURED
        else:
            state = LinkState.NEEDS_REPAIR

        return RuntimeLinkStatus(
            runtime=runtime,
            state=state,
            runtime_path=str(path),
            central_path=str(central),
            is_link=is_link,
            points_to_central=points_to_central,
            current_path=current_path,
            backup_exists=backup_exists,
            backup_path=str(backup) if backup_exists else None,
            instructions=_instructions(runtime, central),
        )

    async def configure(self, runtime: RuntimeId, create_backup: bool = True) -> ConfigureResult:
        """Redirect a runtime's models directory to the central store.

        Args:
            runtime: Runtime to redirect.
            create_backup: Keep the existing directory as <path>.backup.
                Without it an existing directory is never touched and the
                call is refused.

        Returns:
            ConfigureResult with the status after the call.
        """
        try:
            message = await self._configure(runtime, create_backup)
        except StorageError as e:
            logger.warning("Configuring %s storage failed: %s", runtime, e)
            return ConfigureResult(
                success=False,
                runtime=runtime,
                status=await self.status(runtime),
                error=str(e),
                error_kind=e.kind,
            )

        status = await self.status(runtime)
        await emit(STORAGE_CONFIGURED, runtime=runtime, path=status.runtime_path)
        return ConfigureResult(success=True, runtime=runtime, status=status, message=message)

    async def _configure(self, runtime: RuntimeId, create_backup: bool) -> str:
        central = await self._registry.ensure_store()
        path = await self.runtime_path(runtime)
        backup = self._pm.backup_path(path)

        if await self._adapter.is_symlink(path):
            if await self._points_to_central(path):
                return "Already configured to use central storage"
            logger.info("Removing link %s -> %s", path, await self._adapter.read_link(path))
            await self._adapter.delete_file(path)
        elif await self._adapter.exists(path):
            if not create_backup:
                raise StorageConflictError(
                    "Cannot replace the existing models directory without a backup. "
                    "Set create_backup=true."
                )
            if await self._adapter.lexists(backup):
                raise StorageConflictError(
                    f"Backup already exists at {backup}. Remove it first or skip backup."
                )
            logger.info("Moving %s to %s", path, backup)
            await self._adapter.rename(path, backup)

        await self._adapter.ensure_directory(path.parent)
        await self._adapter.symlink(central, path)
        logger.info("Linked %s -> %s", path, central)

        message = f"Created symlink: {path} -> {central}"
        if await self._adapter.lexists(backup):
            message += f"\nBackup saved to: {backup}"
        return message

    async def restore(self, runtime: RuntimeId) -> ConfigureResult:
        """Undo configure: drop the link and move the backup back."""
        try:
            message = await self._restore(runtime)
        except StorageError as e:
            logger.warning("Restoring %s storage failed: %s", runtime, e)
            return ConfigureResult(
                success=False,
                runtime=runtime,
                status=await self.status(runtime),
                error=str(e),
                error_kind=e.kind,
            )

        status = await self.status(runtime)
        await emit(STORAGE_RESTORED, runtime=runtime, path=status.runtime_path)
        return ConfigureResult(success=True, runtime=runtime, status=status, message=message)

    async def _restore(self, runtime: RuntimeId) -> str:
        path = await self.runtime_path(runtime)
        backup = self._pm.backup_path(path)

        if await self._adapter.is_symlink(path):
            await self._adapter.delete_file(path)
            logger.info("Removed link %s", path)

        if not await self._adapter.lexists(backup):
            return "Symlink removed. No backup to restore."

        if await self._adapter.exists(path):
            raise StorageConflictError(
                f"Cannot restore {backup}: {path} already exists and is not a link"
            )
        await self._adapter.rename(backup, path)
        logger.info("Restored %s from %s", path, backup)
        return "Restored original models directory from backup"
