"""Detection of models already present in runtime storage.

Ollama stores models as manifests pointing at content-addressed blobs:

    <root>/
      manifests/<registry>/<namespace>/<model>/<tag>   (JSON manifest)
      blobs/sha256-<hex>                               (binary content)

LM Studio stores plain GGUF files in an arbitrary tree, usually
<root>/<publisher>/<model>/<file>.gguf.

Both scans return the same DetectionResult shape. Unreadable or malformed
entries are skipped; only a missing root or manifests directory is
reported on the result.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.config import Settings
from core.interfaces.runtime import RuntimeId
from core.model_formats import (
    WEIGHT_FILE_EXTENSION,
    ModelFormat,
    detect_format,
    extract_parameters,
    extract_quantization,
    is_weight_file,
)
from services.path_resolver import PathResolver
from storage.base import FileInfo, StorageAdapter
from storage.exceptions import ManifestError, StorageError

logger = logging.getLogger(__name__)

WEIGHT_LAYER_MEDIA_TYPE = "application/vnd.ollama.image.model"
DEFAULT_TAG = "latest"


class ManifestDescriptor(BaseModel):
    """A content descriptor: what a blob holds, its digest and size."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    media_type: str | None = Field(default=None, alias="mediaType")
    digest: str
    size: int = Field(ge=0)


class Manifest(BaseModel):
    """An Ollama manifest document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schema_version: int | None = Field(default=None, alias="schemaVersion")
    media_type: str | None = Field(default=None, alias="mediaType")
    config: ManifestDescriptor | None = None
    layers: list[ManifestDescriptor] = Field(default_factory=list)

    @property
    def total_size(self) -> int:
        """Sum of all layer sizes plus the config size."""
        config_size = self.config.size if self.config else 0
        return sum(layer.size for layer in self.layers) + config_size

    @property
    def weight_layer(self) -> ManifestDescriptor | None:
        """The layer holding the model weights, if any."""
        for layer in self.layers:
            if layer.media_type == WEIGHT_LAYER_MEDIA_TYPE:
                return layer
        return None

    def digests(self) -> list[str]:
        """Every referenced digest: layers in order, then the config."""
        digests = [layer.digest for layer in self.layers]
        if self.config:
            digests.append(self.config.digest)
        return digests


def parse_manifest(text: str) -> Manifest:
    """Parse and validate a manifest document.

    Raises:
        ManifestError: If the document is not JSON or fails validation.
    """
    try:
        return Manifest.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ManifestError(f"Invalid manifest: {e}") from e


def digest_to_blob_name(digest: str) -> str:
    """Map a digest "algorithm:hex" to its blob filename "algorithm-hex"."""
    algorithm, sep, value = digest.partition(":")
    if not sep or not algorithm or not value:
        raise ManifestError(f"Invalid digest: {digest!r}")
    return f"{algorithm}-{value}"


def blob_path(root: Path, digest: str) -> Path:
    """Path of the blob holding a digest under an Ollama root."""
    return root / "blobs" / digest_to_blob_name(digest)


def flat_display_name(root: Path, path: Path) -> str:
    """publisher/model from the last two path segments, else the bare name."""
    stem = path.name
    if stem.lower().endswith(WEIGHT_FILE_EXTENSION):
        stem = stem[: -len(WEIGHT_FILE_EXTENSION)]
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = (path.name,)
    if len(parts) >= 2:
        return f"{parts[-2]}/{stem}"
    return stem


@dataclass
class DiscoveredModel:
    """A model found in a runtime's own storage. Never persisted."""

    runtime: RuntimeId
    name: str
    display_name: str
    path: str
    size: int
    format: ModelFormat
    modified_at: datetime
    quantization: str | None = None
    parameters: str | None = None
    is_symlink: bool = False
    # Ollama only
    manifest: Manifest | None = None
    blob_files: list[str] = field(default_factory=list)
    weight_blob: str | None = None
    missing_blobs: list[str] = field(default_factory=list)

    @property
    def is_intact(self) -> bool:
        """All referenced blobs are present."""
        return not self.missing_blobs


@dataclass
class DetectionResult:
    """Outcome of scanning one runtime's storage."""

    runtime: RuntimeId
    path: str
    exists: bool = False
    models: list[DiscoveredModel] = field(default_factory=list)
    total_size: int = 0
    error: str | None = None
    checked_paths: list[str] = field(default_factory=list)

    def add(self, model: DiscoveredModel) -> None:
        self.models.append(model)
        self.total_size += model.size


@dataclass
class CombinedDetection:
    """Both runtimes scanned together."""

    ollama: DetectionResult
    lmstudio: DetectionResult

    @property
    def combined_size(self) -> int:
        return self.ollama.total_size + self.lmstudio.total_size

    @property
    def total_models(self) -> int:
        return len(self.ollama.models) + len(self.lmstudio.models)


class ModelDetector:
    """Scans runtime storage into a normalized inventory."""

    def __init__(self, settings: Settings, adapter: StorageAdapter, resolver: PathResolver):
        self._settings = settings
        self._adapter = adapter
        self._resolver = resolver

    async def _pick_root(self, runtime: RuntimeId, root: Path | None) -> tuple[Path, list[str]]:
        if root is not None:
            return Path(root), [str(root)]
        candidates = self._resolver.candidate_roots(runtime)
        return await self._resolver.default_root(runtime), [str(p) for p in candidates]

    async def _list_dirs(self, path: Path) -> list[FileInfo]:
        """Subdirectories of path; empty when unreadable."""
        try:
            entries = await self._adapter.list_files(path)
        except StorageError as e:
            logger.debug("Skipping unreadable directory %s: %s", path, e)
            return []
        return [e for e in entries if e.is_directory]

    async def detect(self, runtime: RuntimeId, root: Path | None = None) -> DetectionResult:
        """Scan one runtime."""
        if runtime == "ollama":
            return await self.detect_ollama(root)
        if runtime == "lmstudio":
            return await self.detect_lmstudio(root)
        raise ValueError(f"Unknown runtime: {runtime}")

    async def detect_all(self) -> CombinedDetection:
        """Scan both runtimes concurrently.

        The scans touch disjoint trees and share no state.
        """
        ollama, lmstudio = await asyncio.gather(
            self.detect_ollama(),
            self.detect_lmstudio(),
        )
        return CombinedDetection(ollama=ollama, lmstudio=lmstudio)

    # ── Ollama ─────────────────────────────────────────────────────────

    async def detect_ollama(self, root: Path | None = None) -> DetectionResult:
        """Scan an Ollama models directory."""
        root, checked = await self._pick_root("ollama", root)
        result = DetectionResult(runtime="ollama", path=str(root), checked_paths=checked)

        if not await self._adapter.is_directory(root):
            result.error = f"Ollama models directory not found. Checked: {', '.join(checked)}"
            return result

        manifests_root = root / "manifests"
        if not await self._adapter.is_directory(manifests_root):
            result.error = "No manifests directory found"
            return result

        result.exists = True

        try:
            async for model_name, tag in self._manifest_files(manifests_root):
                model = await self._read_manifest_entry(root, model_name, tag)
                if model is not None:
                    result.add(model)
        except StorageError as e:
            logger.exception("Ollama scan failed")
            result.error = str(e)

        logger.info(
            "Detected %d Ollama models in %s (%d bytes)",
            len(result.models), root, result.total_size,
        )
        return result

    async def _manifest_files(self, manifests_root: Path) -> AsyncIterator[tuple[str, FileInfo]]:
        """Yield (model name, tag file) for every manifest leaf."""
        for registry in await self._list_dirs(manifests_root):
            for namespace in await self._list_dirs(Path(registry.path)):
                for model_dir in await self._list_dirs(Path(namespace.path)):
                    try:
                        tags = await self._adapter.list_files(Path(model_dir.path))
                    except StorageError as e:
                        logger.debug("Skipping unreadable model directory %s: %s", model_dir.path, e)
                        continue
                    for tag in tags:
                        if not tag.is_directory:
                            yield model_dir.name, tag

    async def blob_references(self, root: Path) -> dict[str, set[str]]:
        """Map each readable manifest under an Ollama root to the blob paths it uses.

        Unlike detect_ollama this includes manifests without a model layer,
        since those still hold references to shared blobs.
        """
        references: dict[str, set[str]] = {}
        async for _, tag in self._manifest_files(root / "manifests"):
            try:
                manifest = parse_manifest(await self._adapter.read_text(Path(tag.path)))
                references[tag.path] = {str(blob_path(root, d)) for d in manifest.digests()}
            except (StorageError, UnicodeDecodeError) as e:
                logger.warning("Skipping manifest %s: %s", tag.path, e)
        return references

    async def _read_manifest_entry(
        self, root: Path, model_name: str, tag: FileInfo
    ) -> DiscoveredModel | None:
        manifest_path = Path(tag.path)
        try:
            manifest = parse_manifest(await self._adapter.read_text(manifest_path))
        except (StorageError, UnicodeDecodeError) as e:
            logger.warning("Skipping manifest %s: %s", manifest_path, e)
            return None

        weight_layer = manifest.weight_layer
        if weight_layer is None:
            logger.debug("Skipping %s: no model layer", manifest_path)
            return None

        try:
            blob_files = [str(blob_path(root, d)) for d in manifest.digests()]
            weight_blob = str(blob_path(root, weight_layer.digest))
        except ManifestError as e:
            logger.warning("Skipping manifest %s: %s", manifest_path, e)
            return None

        missing = [b for b in blob_files if not await self._adapter.exists(Path(b))]
        if missing:
            logger.warning(
                "Ollama model %s:%s is missing %d blob(s)", model_name, tag.name, len(missing)
            )

        display_name = model_name if tag.name == DEFAULT_TAG else f"{model_name}:{tag.name}"

        return DiscoveredModel(
            runtime="ollama",
            name=display_name,
            display_name=display_name,
            path=str(manifest_path),
            size=manifest.total_size,
            format="gguf",  # Ollama runs GGUF internally
            modified_at=tag.modified_at,
            quantization=extract_quantization(model_name) or extract_quantization(tag.name),
            parameters=extract_parameters(model_name) or extract_parameters(tag.name),
            manifest=manifest,
            blob_files=blob_files,
            weight_blob=weight_blob,
            missing_blobs=missing,
        )

    # ── LM Studio ──────────────────────────────────────────────────────

    def _skip_flat_directory(self, name: str) -> bool:
        # blobs: an Ollama store sharing the tree; link dir: our own installs
        return name.startswith(".") or name in ("blobs", self._settings.LMSTUDIO_LINK_DIR)

    async def detect_lmstudio(self, root: Path | None = None) -> DetectionResult:
        """Scan an LM Studio models directory."""
        root, checked = await self._pick_root("lmstudio", root)
        result = DetectionResult(runtime="lmstudio", path=str(root), checked_paths=checked)

        if not await self._adapter.is_directory(root):
            result.error = f"LM Studio models directory not found. Checked: {', '.join(checked)}"
            return result

        result.exists = True
        store_root = await self._adapter.resolve(Path(self._settings.STORAGE_PATH).expanduser())

        try:
            async for entry in self._adapter.walk_files(root, self._skip_flat_directory):
                if not is_weight_file(entry.name):
                    continue
                # The root itself may be a link into the store after configure
                target = await self._adapter.resolve(Path(entry.path))
                if target == store_root or store_root in target.parents:
                    continue  # already centrally managed
                if entry.is_symlink and not await self._adapter.exists(Path(entry.path)):
                    logger.debug("Skipping broken link %s", entry.path)
                    continue

                result.add(DiscoveredModel(
                    runtime="lmstudio",
                    name=entry.name,
                    display_name=flat_display_name(root, Path(entry.path)),
                    path=entry.path,
                    size=entry.size,
                    format=detect_format(entry.name),
                    modified_at=entry.modified_at,
                    quantization=extract_quantization(entry.name),
                    parameters=extract_parameters(entry.name),
                    is_symlink=entry.is_symlink,
                ))
        except StorageError as e:
            logger.exception("LM Studio scan failed")
            result.error = str(e)

        logger.info(
            "Detected %d LM Studio models in %s (%d bytes)",
            len(result.models), root, result.total_size,
        )
        return result
