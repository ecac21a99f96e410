"""Downloads GGUF files from Hugging Face straight into the central store.

The file is streamed into its final store path and registered only after
the last byte is written. A failed or cancelled transfer removes the
partial file, so the store never holds a registered partial download.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable

import httpx
from huggingface_hub import hf_hub_url
from huggingface_hub.utils import build_hf_headers

from core.config import Settings
from core.events import MODEL_DOWNLOADED, emit
from core.model_formats import is_weight_file
from services.path_manager import PathManager, path_manager as default_path_manager
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

PREFERRED_QUANTIZATION = "Q4_K_M"

# Receives (hf_file, total_bytes); total is 0 when the server sends no length
StartCallback = Callable[[str, int], None]


@dataclass
class DownloadResult:
    """Outcome of downloading a repository file into the store."""

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


def pick_weight_file(paths: list[str]) -> str | None:
    """Choose the file to fetch when the caller names only a repository.

    Prefers the Q4_K_M quantization, then the first weight file listed.
    """
    candidates = [p for p in paths if is_weight_file(p)]
    if not candidates:
        return None
    for path in candidates:
        if PREFERRED_QUANTIZATION in path.upper():
            return path
    return candidates[0]


def _raise_for_status(response: httpx.Response, what: str) -> None:
    if response.status_code in (401, 403, 404):
        # Hugging Face answers 401 for both missing and gated repos
        raise StorageNotFoundError(f"Not found on Hugging Face (or gated): {what}")
    if response.status_code != 200:
        raise StorageIOError(f"Hugging Face returned HTTP {response.status_code} for {what}")


class ModelDownloader:
    """Fetches repository files from a Hugging Face endpoint."""

    def __init__(
        self,
        settings: Settings,
        adapter: StorageAdapter,
        registry: CentralRegistry,
        transport: httpx.AsyncBaseTransport | None = None,
        pm: PathManager | None = None,
    ):
        """Initialize the downloader.

        Args:
            settings: Application settings (endpoint, token, chunk size)
            adapter: Storage adapter the store lives on
            registry: Central registry that records finished downloads
            transport: Optional httpx transport (tests use MockTransport)
            pm: Path manager for store filenames
        """
        self._settings = settings
        self._adapter = adapter
        self._registry = registry
        self._transport = transport
        self._pm = pm or default_path_manager
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._settings.DOWNLOAD_TIMEOUT,
                follow_redirects=True,
                headers=build_hf_headers(
                    token=self._settings.HF_TOKEN or False,
                    library_name="model-depot",
                ),
                transport=self._transport,
            )
        return self._client

    @property
    def endpoint(self) -> str:
        return self._settings.HF_ENDPOINT.rstrip("/")

    def file_url(self, hf_repo: str, hf_file: str, revision: str = "main") -> str:
        """Build the resolve URL for one repository file."""
        return hf_hub_url(repo_id=hf_repo, filename=hf_file, revision=revision, endpoint=self.endpoint)

    async def list_weight_files(self, hf_repo: str, revision: str = "main") -> list[str]:
        """List the weight files at the top of a repository."""
        client = await self._get_client()
        url = f"{self.endpoint}/api/models/{hf_repo}/tree/{revision}"
        try:
            response = await client.get(url)
        except httpx.TransportError as e:
            raise RuntimeUnavailableError(f"Cannot reach {self.endpoint}: {e}") from e
        _raise_for_status(response, hf_repo)

        try:
            entries = response.json()
        except ValueError as e:
            raise StorageIOError(f"Unreadable file listing for {hf_repo}") from e
        return [
            entry["path"]
            for entry in entries
            if entry.get("type") == "file" and is_weight_file(entry.get("path", ""))
        ]

    async def download(
        self,
        hf_repo: str,
        hf_file: str | None = None,
        revision: str = "main",
        on_progress: ProgressCallback | None = None,
        on_start: StartCallback | None = None,
    ) -> DownloadResult:
        """Download a repository file into the central store and register it.

        Args:
            hf_repo: Repository id, e.g. "TheBloke/Mistral-7B-GGUF".
            hf_file: File inside the repository. Picked from the listing when omitted.
            revision: Branch, tag or commit.
            on_progress: Receives the running byte count during the transfer.
            on_start: Receives (hf_file, total_bytes) once the transfer starts.

        Returns:
            DownloadResult. Failures are reported, never raised; cancellation
            propagates after the partial file is removed.
        """
        result = DownloadResult(success=False, hf_repo=hf_repo, hf_file=hf_file)
        try:
            if hf_file is None:
                hf_file = pick_weight_file(await self.list_weight_files(hf_repo, revision))
                if hf_file is None:
                    raise StorageNotFoundError(f"No GGUF files found in {hf_repo}")
                result.hf_file = hf_file
            result.source_url = self.file_url(hf_repo, hf_file, revision)
            record = await self._download(hf_repo, hf_file, result.source_url, on_progress, on_start)
        except StorageError as e:
            logger.warning("Download of %s/%s failed: %s", hf_repo, hf_file, e)
            result.error = str(e)
            result.error_kind = e.kind
            return result
        except ValueError as e:
            result.error = str(e)
            result.error_kind = ErrorKind.MALFORMED
            return result

        result.success = True
        result.model_id = record.id
        result.filename = record.filename
        result.size = record.size
        result.storage_path = record.path
        await emit(MODEL_DOWNLOADED, model_id=record.id, hf_repo=hf_repo, filename=record.filename)
        return result

    async def _download(
        self,
        hf_repo: str,
        hf_file: str,
        url: str,
        on_progress: ProgressCallback | None,
        on_start: StartCallback | None,
    ) -> StoredModelRecord:
        if not is_weight_file(hf_file):
            raise ValueError(f"Only GGUF files can be stored: {hf_file}")
        filename = self._pm.safe_filename(PurePosixPath(hf_file).name)

        existing = await self._registry.get_by_filename(filename)
        if existing is not None:
            raise StorageConflictError(f"{filename} is already in the central store ({existing.id})")

        await self._registry.ensure_store()
        destination = self._registry.destination_path(filename)
        if await self._adapter.lexists(destination):
            raise StorageConflictError(f"A file named {filename} already exists in the central store")

        def started(total: int) -> None:
            if on_start is not None:
                on_start(hf_file, total)

        logger.info("Downloading %s to %s", url, destination)
        size = await self._fetch_new(url, destination, on_progress, started)

        try:
            return await self._registry.register(
                filename=filename,
                path=destination,
                size=size,
                source="huggingface",
                source_url=url,
                hf_repo=hf_repo,
                hf_file=hf_file,
            )
        except (Exception, asyncio.CancelledError):
            await self._adapter.discard(destination)
            raise

    async def _fetch_new(
        self,
        url: str,
        destination: Path,
        on_progress: ProgressCallback | None,
        on_start: Callable[[int], None] | None,
    ) -> int:
        """Stream a URL into a new file, removing it again if anything goes wrong."""
        client = await self._get_client()
        received = 0
        try:
            async with client.stream("GET", url) as response:
                _raise_for_status(response, url)
                length = response.headers.get("content-length")
                expected = int(length) if length and length.isdigit() else None
                if on_start is not None:
                    on_start(expected or 0)

                async def _chunks():
                    nonlocal received
                    async for chunk in response.aiter_bytes(self._settings.COPY_CHUNK_SIZE):
                        received += len(chunk)
                        if on_progress is not None:
                            on_progress(received)
                        yield chunk

                try:
                    await self._adapter.write_stream(destination, _chunks())
                except StorageConflictError:
                    # Not ours to clean up
                    raise
                except (Exception, asyncio.CancelledError):
                    await self._adapter.discard(destination)
                    raise
        except httpx.TransportError as e:
            raise RuntimeUnavailableError(f"Download from {self.endpoint} interrupted: {e}") from e

        if expected is not None and received != expected:
            await self._adapter.discard(destination)
            raise StorageIOError(f"Download incomplete: {received} of {expected} bytes")
        return received

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
