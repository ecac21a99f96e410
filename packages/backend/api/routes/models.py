"""Model storage, detection and runtime sync endpoints."""

import asyncio
import contextlib
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from core.factory import ServiceFactory, get_factory
from core.interfaces.runtime import RUNTIMES, RuntimeId
from services.configurator import LinkState
from services.detector import DiscoveredModel
from storage.exceptions import ErrorKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/models", tags=["models"])

Factory = Annotated[ServiceFactory, Depends(get_factory)]


class _Response(BaseModel):
    """Response built from a service dataclass."""

    model_config = ConfigDict(from_attributes=True)


# ── Response models ────────────────────────────────────────────────────


class StoredModelResponse(_Response):
    """A model in the central store."""

    id: str
    filename: str
    path: str
    size: int
    format: str
    quantization: str | None = None
    parameters: str | None = None
    acquired_at: datetime
    source: str
    source_url: str | None = None
    hf_repo: str | None = None
    hf_file: str | None = None
    linked_runtimes: list[str]
    runtime_aliases: dict[str, str]


class StorageStatsResponse(_Response):
    total_models: int
    total_size: int
    storage_path: str
    storage_exists: bool
    linked: dict[str, int]


class StorageResponse(BaseModel):
    """Central store contents."""

    models: list[StoredModelResponse]
    stats: StorageStatsResponse


class StorageMaintenanceResponse(BaseModel):
    """Records added by a scan or removed by a verify."""

    models: list[StoredModelResponse]
    count: int


class DiscoveredModelResponse(_Response):
    """A model found in a runtime's own storage."""

    runtime: str
    name: str
    display_name: str
    path: str
    size: int
    format: str
    quantization: str | None = None
    parameters: str | None = None
    modified_at: datetime
    is_symlink: bool = False
    blob_files: list[str] = Field(default_factory=list)
    weight_blob: str | None = None
    missing_blobs: list[str] = Field(default_factory=list)
    is_intact: bool = True


class DetectionResponse(_Response):
    runtime: str
    path: str
    exists: bool
    models: list[DiscoveredModelResponse]
    total_size: int
    error: str | None = None
    checked_paths: list[str]


class CombinedDetectionResponse(_Response):
    ollama: DetectionResponse
    lmstudio: DetectionResponse
    combined_size: int
    total_models: int


class RuntimeLinkStatusResponse(_Response):
    """Whether a runtime's models directory is redirected to the store."""

    runtime: str
    state: LinkState
    configured: bool
    runtime_path: str
    central_path: str
    is_link: bool
    points_to_central: bool
    current_path: str | None = None
    backup_exists: bool
    backup_path: str | None = None
    instructions: list[str]


class ProvidersStatusResponse(BaseModel):
    ollama: RuntimeLinkStatusResponse
    lmstudio: RuntimeLinkStatusResponse
    central_path: str


class ConfigureResponse(_Response):
    success: bool
    runtime: str
    status: RuntimeLinkStatusResponse
    message: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


class PromoteResponse(_Response):
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


class InstallResponse(_Response):
    success: bool
    model_id: str
    runtime: str
    installed_name: str | None = None
    method: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


class DownloadResponse(_Response):
    success: bool
    hf_repo: str
    hf_file: str | None = None
    model_id: str | None = None
    filename: str | None = None
    size: int = 0
    storage_path: str | None = None
    source_url: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


class RemoveResponse(_Response):
    success: bool
    model_id: str
    uninstalled: list[str]
    file_deleted: bool
    error: str | None = None
    error_kind: ErrorKind | None = None


class CompatibilityResponse(_Response):
    ollama: bool
    lmstudio: bool
    notes: str | None = None


class RuntimeModelResponse(_Response):
    id: str
    name: str
    runtime: str
    size: int | None = None
    modified: str | None = None


class RuntimeStatusResponse(_Response):
    runtime: str
    connected: bool
    models: list[RuntimeModelResponse]
    error: str | None = None


class UnifiedModelResponse(_Response):
    id: str
    name: str
    display_name: str
    format: str
    runtimes: list[str]
    compatibility: CompatibilityResponse
    size: int | None = None
    modified: str | None = None
    quantization: str | None = None
    parameters: str | None = None


class RuntimeInventoryResponse(_Response):
    runtime: str
    storage_path: str
    storage_exists: bool
    discovered: int
    not_imported: int
    total_size: int
    error: str | None = None


class SnapshotResponse(_Response):
    """Unified view across runtimes and the central store."""

    runtimes: list[RuntimeStatusResponse]
    models: list[UnifiedModelResponse]
    stored: list[StoredModelResponse]
    inventory: list[RuntimeInventoryResponse]
    compatibility: dict[str, CompatibilityResponse]
    central_path: str
    generated_at: datetime


# ── Request models ─────────────────────────────────────────────────────


class ImportExistingRequest(BaseModel):
    """Promote a model found in runtime storage into the central store."""

    runtime: RuntimeId
    source_path: str | None = None  # manifest path (ollama) or file path (lmstudio)
    model_name: str | None = None
    delete_original: bool = False
    confirm_delete: bool = False


class InstallRequest(BaseModel):
    """Install a store model into a runtime."""

    runtime: RuntimeId
    model_name: str | None = None
    system_prompt: str | None = None
    parameters: dict[str, str | int | float] | None = None
    use_symlink: bool = True


class DownloadRequest(BaseModel):
    """Download a GGUF file from a Hugging Face repository into the store."""

    hf_repo: str = Field(min_length=1, description="Repository id, e.g. TheBloke/Mistral-7B-GGUF")
    hf_file: str | None = None  # picked from the repository listing when omitted
    revision: str = "main"


class ConfigureRequest(BaseModel):
    """Redirect (or restore) a runtime's models directory."""

    runtime: RuntimeId
    action: Literal["configure", "restore", "status"]
    create_backup: bool = True


# ── Unified snapshot ───────────────────────────────────────────────────


@router.get("", response_model=SnapshotResponse)
async def get_models(factory: Factory) -> SnapshotResponse:
    """Runtime reachability, loaded models, store contents and import counts."""
    snapshot = await factory.aggregator.snapshot()
    return SnapshotResponse.model_validate(snapshot)


# ── Detection ──────────────────────────────────────────────────────────


@router.get("/detect", response_model=CombinedDetectionResponse | DetectionResponse)
async def detect_models(
    factory: Factory,
    runtime: RuntimeId | None = Query(None, description="Scan one runtime only"),
    path: str | None = Query(None, description="Scan this directory instead of the default"),
):
    """Scan runtime storage for existing models."""
    if runtime is not None:
        result = await factory.detector.detect(runtime, Path(path) if path else None)
        return DetectionResponse.model_validate(result)
    if path is not None:
        raise HTTPException(status_code=400, detail="A custom path needs a runtime")
    return CombinedDetectionResponse.model_validate(await factory.detector.detect_all())


# ── Central store ──────────────────────────────────────────────────────


@router.get("/storage", response_model=StorageResponse)
async def list_storage(factory: Factory) -> StorageResponse:
    """List models in the central store."""
    records = await factory.registry.list_all()
    stats = await factory.registry.stats()
    return StorageResponse(
        models=[StoredModelResponse.model_validate(r) for r in records],
        stats=StorageStatsResponse.model_validate(stats),
    )


@router.post("/storage/scan", response_model=StorageMaintenanceResponse)
async def scan_storage(factory: Factory) -> StorageMaintenanceResponse:
    """Register model files dropped into the store by hand."""
    added = await factory.registry.scan_for_new_models()
    return StorageMaintenanceResponse(
        models=[StoredModelResponse.model_validate(r) for r in added],
        count=len(added),
    )


@router.post("/storage/verify", response_model=StorageMaintenanceResponse)
async def verify_storage(factory: Factory) -> StorageMaintenanceResponse:
    """Drop records whose file has disappeared."""
    removed = await factory.registry.verify_models()
    return StorageMaintenanceResponse(
        models=[StoredModelResponse.model_validate(r) for r in removed],
        count=len(removed),
    )


@router.get("/storage/{model_id}", response_model=StoredModelResponse)
async def get_stored_model(model_id: str, factory: Factory) -> StoredModelResponse:
    """Get one model from the central store."""
    record = await factory.registry.get(model_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Model not found")
    return StoredModelResponse.model_validate(record)


@router.delete("/storage/{model_id}", response_model=RemoveResponse)
async def delete_stored_model(
    model_id: str,
    factory: Factory,
    delete_file: bool = Query(False, description="Also delete the file from the store"),
) -> RemoveResponse:
    """Uninstall a model from every runtime, then remove it from the store."""
    if await factory.registry.get(model_id) is None:
        raise HTTPException(status_code=404, detail="Model not found")
    result = await factory.importer.remove(model_id, delete_file=delete_file)
    return RemoveResponse.model_validate(result)


@router.post("/storage/{model_id}/install", response_model=InstallResponse)
async def install_model(model_id: str, body: InstallRequest, factory: Factory) -> InstallResponse:
    """Install a store model into a runtime."""
    if await factory.registry.get(model_id) is None:
        raise HTTPException(status_code=404, detail="Model not found")
    result = await factory.importer.install(
        model_id,
        body.runtime,
        model_name=body.model_name,
        system_prompt=body.system_prompt,
        parameters=body.parameters,
        use_symlink=body.use_symlink,
    )
    return InstallResponse.model_validate(result)


@router.delete("/storage/{model_id}/install/{runtime}", response_model=InstallResponse)
async def uninstall_model(model_id: str, runtime: RuntimeId, factory: Factory) -> InstallResponse:
    """Remove a store model from a runtime."""
    if await factory.registry.get(model_id) is None:
        raise HTTPException(status_code=404, detail="Model not found")
    result = await factory.importer.uninstall(model_id, runtime)
    return InstallResponse.model_validate(result)


# ── Import from runtime storage ────────────────────────────────────────


async def _find_discovered(factory: ServiceFactory, body: ImportExistingRequest) -> DiscoveredModel:
    """Re-detect and pick the requested model."""
    if not body.source_path and not body.model_name:
        raise HTTPException(status_code=400, detail="source_path or model_name is required")

    detection = await factory.detector.detect(body.runtime)
    for model in detection.models:
        if body.source_path and model.path == body.source_path:
            return model
        if not body.source_path and model.name == body.model_name:
            return model
    raise HTTPException(status_code=404, detail="Model not found in runtime storage")


def _copy_size(model: DiscoveredModel) -> int:
    if model.manifest is not None and model.manifest.weight_layer is not None:
        return model.manifest.weight_layer.size
    return model.size


@router.post("/import-existing", response_model=PromoteResponse)
async def import_existing(body: ImportExistingRequest, factory: Factory) -> PromoteResponse:
    """Copy a runtime's model into the central store."""
    model = await _find_discovered(factory, body)
    result = await factory.importer.promote(
        model,
        delete_original=body.delete_original,
        confirm_delete=body.confirm_delete,
    )
    return PromoteResponse.model_validate(result)


@router.post("/import-existing/stream")
async def import_existing_stream(body: ImportExistingRequest, factory: Factory) -> StreamingResponse:
    """Same as import-existing, reporting copy progress as server-sent events."""
    model = await _find_discovered(factory, body)
    total = _copy_size(model)

    async def _stream_progress():
        queue: asyncio.Queue[int] = asyncio.Queue()
        yield f"data: {json.dumps({'status': 'starting', 'name': model.name, 'total_bytes': total})}\n\n"

        task = asyncio.create_task(
            factory.importer.promote(
                model,
                delete_original=body.delete_original,
                confirm_delete=body.confirm_delete,
                on_progress=queue.put_nowait,
            )
        )
        try:
            while not task.done():
                try:
                    copied = await asyncio.wait_for(queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                while not queue.empty():
                    copied = queue.get_nowait()
                yield f"data: {json.dumps({'status': 'progress', 'copied_bytes': copied, 'total_bytes': total})}\n\n"

            result = PromoteResponse.model_validate(task.result())
            status = "complete" if result.success else "error"
            yield f"data: {json.dumps({'status': status, **result.model_dump(mode='json')})}\n\n"
        finally:
            # Client went away: cancel the copy so the partial file is removed
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    return StreamingResponse(_stream_progress(), media_type="text/event-stream")


# ── Download from Hugging Face ─────────────────────────────────────────


@router.post("/download", response_model=DownloadResponse)
async def download_model(body: DownloadRequest, factory: Factory) -> DownloadResponse:
    """Download a repository file into the central store and register it."""
    result = await factory.downloader.download(body.hf_repo, body.hf_file, revision=body.revision)
    return DownloadResponse.model_validate(result)


@router.post("/download/stream")
async def download_model_stream(body: DownloadRequest, factory: Factory) -> StreamingResponse:
    """Same as download, reporting byte-level progress as server-sent events."""

    async def _stream_progress():
        queue: asyncio.Queue[int] = asyncio.Queue()
        transfer = {"hf_file": body.hf_file, "total_bytes": 0}

        def _started(hf_file: str, total: int) -> None:
            transfer.update(hf_file=hf_file, total_bytes=total)

        yield f"data: {json.dumps({'status': 'starting', 'hf_repo': body.hf_repo, **transfer})}\n\n"

        task = asyncio.create_task(
            factory.downloader.download(
                body.hf_repo,
                body.hf_file,
                revision=body.revision,
                on_progress=queue.put_nowait,
                on_start=_started,
            )
        )
        try:
            while not task.done():
                try:
                    received = await asyncio.wait_for(queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                while not queue.empty():
                    received = queue.get_nowait()
                yield f"data: {json.dumps({'status': 'progress', 'downloaded_bytes': received, 'total_bytes': transfer['total_bytes']})}\n\n"

            result = DownloadResponse.model_validate(task.result())
            status = "complete" if result.success else "error"
            yield f"data: {json.dumps({'status': status, **result.model_dump(mode='json')})}\n\n"
        finally:
            # Client went away: cancel the transfer so the partial file is removed
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    return StreamingResponse(_stream_progress(), media_type="text/event-stream")


# ── Runtime storage redirection ────────────────────────────────────────


@router.get(
    "/configure-provider",
    response_model=ProvidersStatusResponse | RuntimeLinkStatusResponse,
)
async def get_configure_status(
    factory: Factory,
    runtime: RuntimeId | None = Query(None, description="Status for one runtime only"),
):
    """Whether each runtime's models directory is linked to the store."""
    if runtime is not None:
        return RuntimeLinkStatusResponse.model_validate(await factory.configurator.status(runtime))

    statuses = await asyncio.gather(*(factory.configurator.status(rt) for rt in RUNTIMES))
    by_runtime = {s.runtime: RuntimeLinkStatusResponse.model_validate(s) for s in statuses}
    return ProvidersStatusResponse(
        ollama=by_runtime["ollama"],
        lmstudio=by_runtime["lmstudio"],
        central_path=str(factory.registry.store_root),
    )


@router.post("/configure-provider", response_model=ConfigureResponse)
async def configure_provider(body: ConfigureRequest, factory: Factory) -> ConfigureResponse:
    """Link a runtime's models directory to the store, or undo it."""
    configurator = factory.configurator
    if body.action == "configure":
        result = await configurator.configure(body.runtime, create_backup=body.create_backup)
        return ConfigureResponse.model_validate(result)
    if body.action == "restore":
        return ConfigureResponse.model_validate(await configurator.restore(body.runtime))

    status = await configurator.status(body.runtime)
    return ConfigureResponse(
        success=True,
        runtime=body.runtime,
        status=RuntimeLinkStatusResponse.model_validate(status),
    )
