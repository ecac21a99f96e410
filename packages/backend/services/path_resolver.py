"""Per-OS storage locations of the local runtimes.

Neither runtime has one canonical models directory: it moves with the
operating system and the installation method (user install, system
service, package manager). We probe a list of candidates in order.
"""

import logging
import sys
from pathlib import Path

from core.config import Settings
from core.interfaces.runtime import RuntimeId
from storage.base import StorageAdapter

logger = logging.getLogger(__name__)


def _ollama_candidates(platform: str, home: Path) -> list[Path]:
    paths = [home / ".ollama" / "models"]
    if platform == "win32":
        paths.append(home / "AppData" / "Local" / "Ollama" / "models")
    elif platform != "darwin":
        paths.extend([
            Path("/usr/share/ollama/.ollama/models"),
            Path("/var/lib/ollama/models"),
        ])
    return paths


def _lmstudio_candidates(platform: str, home: Path) -> list[Path]:
    paths = [home / ".lmstudio" / "models"]
    if platform == "darwin":
        paths.append(home / "Library" / "Application Support" / "LM Studio" / "models")
    elif platform == "win32":
        paths.extend([
            home / ".cache" / "lm-studio" / "models",
            home / "AppData" / "Local" / "LM Studio" / "models",
        ])
    else:
        paths.extend([
            home / ".cache" / "lm-studio" / "models",
            home / ".local" / "share" / "lm-studio" / "models",
            home / "LM Studio" / "models",
        ])
    return paths


class PathResolver:
    """Enumerates candidate storage roots for each runtime.

    Performs existence checks only; never creates directories.
    """

    def __init__(
        self,
        settings: Settings,
        adapter: StorageAdapter,
        platform: str | None = None,
        home: Path | None = None,
    ):
        """Initialize the resolver.

        Args:
            settings: Application settings (for configured overrides).
            adapter: Storage adapter used for existence checks.
            platform: sys.platform value; defaults to the running platform.
            home: Home directory; defaults to the current user's.
        """
        self._settings = settings
        self._adapter = adapter
        self._platform = platform or sys.platform
        self._home = home or Path.home()

    def candidate_roots(self, runtime: RuntimeId) -> list[Path]:
        """Return candidate roots for a runtime, most preferred first."""
        if runtime == "ollama":
            override = self._settings.OLLAMA_MODELS_PATH
            paths = _ollama_candidates(self._platform, self._home)
        elif runtime == "lmstudio":
            override = self._settings.LMSTUDIO_MODELS_PATH
            paths = _lmstudio_candidates(self._platform, self._home)
        else:
            raise ValueError(f"Unknown runtime: {runtime}")

        if override is not None:
            override = Path(override).expanduser()
            paths = [override] + [p for p in paths if p != override]
        return paths

    async def default_root(self, runtime: RuntimeId) -> Path:
        """First candidate that exists, else the first candidate."""
        candidates = self.candidate_roots(runtime)
        for path in candidates:
            if await self._adapter.is_directory(path):
                return path
        logger.debug("No %s directory found, defaulting to %s", runtime, candidates[0])
        return candidates[0]
