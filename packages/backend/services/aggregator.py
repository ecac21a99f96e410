"""Unified, read-only view across runtimes, the registry and detection.

One call produces one immutable snapshot: which runtimes are reachable and
what they have loaded, which files are in the central store, which formats
each runtime can load, and how many models each runtime holds that have
not been imported yet.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Mapping

from core.config import Settings
from core.interfaces.runtime import IRuntimeClient, RuntimeModelInfo, RuntimeStatus
from core.model_formats import (
    FORMAT_COMPATIBILITY,
    ModelCompatibility,
    extract_parameters,
    extract_quantization,
)
from services.detector import DetectionResult, DiscoveredModel, ModelDetector
from services.path_manager import PathManager, path_manager as default_path_manager
from services.registry import CentralRegistry, StoredModelRecord

logger = logging.getLogger(__name__)

_KNOWN_FAMILIES = ("Llama", "Mistral", "Qwen", "Phi", "Gemma")


def normalize_model_id(model_id: str) -> str:
    """Key for matching the same model across runtimes."""
    normalized = model_id.lower()
    normalized = re.sub(r":latest$", "", normalized)
    normalized = re.sub(r"\.gguf$", "", normalized)
    return normalized.rsplit("/", 1)[-1]


def clean_display_name(name: str) -> str:
    """Human-friendly model name."""
    display = re.sub(r":latest$", "", name)
    display = display.rsplit("/", 1)[-1]
    display = re.sub(r"-GGUF$", "", display, flags=re.IGNORECASE)
    display = re.sub(r"\.gguf$", "", display, flags=re.IGNORECASE)
    display = re.sub(r"--+", "-", display)
    for family in _KNOWN_FAMILIES:
        if display.lower().startswith(family.lower()):
            display = family + display[len(family):]
            break
    return display


@dataclass(frozen=True)
class UnifiedModel:
    """A model loaded in at least one runtime."""

    id: str
    name: str
    display_name: str
    format: str
    runtimes: tuple[str, ...]
    compatibility: ModelCompatibility
    size: int | None = None
    modified: str | None = None
    quantization: str | None = None
    parameters: str | None = None


@dataclass(frozen=True)
class RuntimeInventory:
    """Detection counts for one runtime."""

    runtime: str
    storage_path: str
    storage_exists: bool
    discovered: int
    not_imported: int
    total_size: int
    error: str | None = None


@dataclass(frozen=True)
class RegistrySnapshot:
    """Everything the presentation layer needs about models, at one instant."""

    runtimes: tuple[RuntimeStatus, ...]
    models: tuple[UnifiedModel, ...]
    stored: tuple[StoredModelRecord, ...]
    inventory: tuple[RuntimeInventory, ...]
    compatibility: Mapping[str, ModelCompatibility]
    central_path: str
    generated_at: datetime


def is_imported(
    model: DiscoveredModel,
    records: list[StoredModelRecord],
    pm: PathManager | None = None,
) -> bool:
    """Whether a discovered model already has a record.

    Matches on the record path, or on the filename the model would be
    imported under (case-insensitive).
    """
    pm = pm or default_path_manager
    try:
        filename = pm.store_filename(model.runtime, model.name, model.path).lower()
    except ValueError:
        filename = None
    for record in records:
        if record.path == model.path or record.filename.lower() == filename:
            return True
    return False


def _merge_runtime_models(statuses: list[RuntimeStatus]) -> list[UnifiedModel]:
    merged: dict[str, dict] = {}
    for status in statuses:
        if not status.connected:
            continue
        for info in status.models:
            key = normalize_model_id(info.id)
            entry = merged.get(key)
            if entry is None:
                merged[key] = _unified_fields(info)
            elif status.runtime not in entry["runtimes"]:
                entry["runtimes"].append(status.runtime)

    models = [
        UnifiedModel(**{**fields, "runtimes": tuple(fields["runtimes"])})
        for fields in merged.values()
    ]
    return sorted(models, key=lambda m: m.display_name.lower())


def _unified_fields(info: RuntimeModelInfo) -> dict:
    name = info.name or info.id
    # Everything these runtimes serve is GGUF
    return {
        "id": info.id,
        "name": name,
        "display_name": clean_display_name(name),
        "format": "gguf",
        "runtimes": [info.runtime],
        "compatibility": FORMAT_COMPATIBILITY["gguf"],
        "size": info.size,
        "modified": info.modified,
        "quantization": extract_quantization(name),
        "parameters": extract_parameters(name),
    }


class UnifiedAggregator:
    """Composes runtime probes, registry records and detection."""

    def __init__(
        self,
        settings: Settings,
        registry: CentralRegistry,
        detector: ModelDetector,
        clients: list[IRuntimeClient],
        pm: PathManager | None = None,
    ):
        self._settings = settings
        self._registry = registry
        self._detector = detector
        self._clients = clients
        self._pm = pm or default_path_manager

    def _inventory(self, result: DetectionResult, records: list[StoredModelRecord]) -> RuntimeInventory:
        not_imported = sum(1 for m in result.models if not is_imported(m, records, self._pm))
        return RuntimeInventory(
            runtime=result.runtime,
            storage_path=result.path,
            storage_exists=result.exists,
            discovered=len(result.models),
            not_imported=not_imported,
            total_size=result.total_size,
            error=result.error,
        )

    async def snapshot(self) -> RegistrySnapshot:
        """Build a snapshot. Performs no writes."""
        statuses, records, detection = await asyncio.gather(
            asyncio.gather(*(client.get_status() for client in self._clients)),
            self._registry.list_all(),
            self._detector.detect_all(),
        )

        inventory = tuple(
            self._inventory(result, records)
            for result in (detection.ollama, detection.lmstudio)
        )
        logger.debug(
            "Snapshot: %d runtime models, %d stored, %d not imported",
            sum(len(s.models) for s in statuses),
            len(records),
            sum(i.not_imported for i in inventory),
        )

        return RegistrySnapshot(
            runtimes=tuple(statuses),
            models=tuple(_merge_runtime_models(list(statuses))),
            stored=tuple(records),
            inventory=inventory,
            compatibility=MappingProxyType(dict(FORMAT_COMPATIBILITY)),
            central_path=str(self._registry.store_root),
            generated_at=datetime.now(),
        )
