"""Path and name normalization for model files.

Turns runtime model names into central-store filenames, store filenames
into registry ids and runtime model names, and derives backup paths.
"""

import re
import uuid
from pathlib import Path

from core.model_formats import WEIGHT_FILE_EXTENSION


class PathManager:
    """Normalizes names for the central store and the runtimes."""

    # Characters not allowed in filenames (Windows + macOS + Linux restrictions)
    INVALID_CHARS_PATTERN = re.compile(r'[/\\:*?"<>|]')

    # Max filename length (most filesystems support 255 bytes)
    MAX_NAME_LENGTH = 200

    BACKUP_SUFFIX = ".backup"

    def sanitize_name(self, name: str) -> str:
        """Sanitize a name for use as a filename.

        Args:
            name: Raw name, e.g. an Ollama tag like "qwen2.5:7b".

        Returns:
            A name safe for filesystem use.
        """
        sanitized = self.INVALID_CHARS_PATTERN.sub("-", name or "")
        sanitized = re.sub(r"\s+", " ", sanitized).strip()

        if sanitized in ("", ".", ".."):
            return "untitled"

        if len(sanitized) > self.MAX_NAME_LENGTH:
            sanitized = sanitized[: self.MAX_NAME_LENGTH].rstrip()

        return sanitized

    def store_filename(self, runtime: str, name: str, path: Path | str | None = None) -> str:
        """Filename a discovered model gets in the central store.

        Ollama models are named after their tag; LM Studio files keep their
        original filename.
        """
        if runtime == "lmstudio" and path is not None:
            return self.safe_filename(Path(path).name)
        if name.lower().endswith(WEIGHT_FILE_EXTENSION):
            return self.safe_filename(name)
        return f"{self.sanitize_name(name)}{WEIGHT_FILE_EXTENSION}"

    def safe_filename(self, filename: str) -> str:
        """Reduce a filename to a single safe path component.

        Raises:
            ValueError: If nothing usable remains.
        """
        normalized = filename.replace("\\", "/")
        name = Path(normalized).name
        if not name or name in (".", ".."):
            raise ValueError(f"Invalid filename: {filename!r}")
        return name

    def runtime_model_name(self, filename: str) -> str:
        """Model name to create in Ollama for a store file."""
        name = filename
        if name.lower().endswith(WEIGHT_FILE_EXTENSION):
            name = name[: -len(WEIGHT_FILE_EXTENSION)]
        name = re.sub(r"[^a-zA-Z0-9\-_.]", "-", name)
        name = re.sub(r"-+", "-", name).strip("-")
        return name.lower() or "model"

    def generate_model_id(self, filename: str) -> str:
        """Generate a registry id: a slug of the filename plus a random suffix."""
        stem = filename
        if stem.lower().endswith(WEIGHT_FILE_EXTENSION):
            stem = stem[: -len(WEIGHT_FILE_EXTENSION)]
        slug = re.sub(r"[^a-z0-9-]", "-", stem.lower())
        slug = re.sub(r"-+", "-", slug).strip("-") or "model"
        return f"{slug[:120]}-{uuid.uuid4().hex[:8]}"

    def backup_path(self, path: Path) -> Path:
        """Sibling path that holds a runtime directory while it is redirected."""
        return path.with_name(f"{path.name}{self.BACKUP_SUFFIX}")


# Default instance
path_manager = PathManager()
