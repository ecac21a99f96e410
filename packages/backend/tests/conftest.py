"""Pytest configuration and fixtures."""

import asyncio
import hashlib
import json
import os
import shutil
import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Keep the global settings away from the real home directory
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="model-depot-tests-"))
os.environ["MODEL_DEPOT_STORAGE_PATH"] = str(_SESSION_DIR / "store")

from adapters.runtimes import LMStudioClient, OllamaClient
from api.main import app
from core.config import Settings
from core.factory import ServiceFactory, get_factory
from storage.adapters.memory import MemoryAdapter

HOME = Path("/home/user")
OLLAMA_ROOT = HOME / ".ollama" / "models"
LMSTUDIO_ROOT = HOME / ".lmstudio" / "models"
STORE_ROOT = Path("/depot")

MODEL_MEDIA_TYPE = "application/vnd.ollama.image.model"
CONFIG_MEDIA_TYPE = "application/vnd.docker.container.image.v1+json"


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_SESSION_DIR, ignore_errors=True)


class FakeOllama:
    """In-process stand-in for the Ollama HTTP API."""

    def __init__(self):
        self.available = True
        self.models: dict[str, str] = {}
        self.created: list[dict] = []
        self.deleted: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            raise httpx.ConnectError("Connection refused", request=request)

        if request.url.path == "/api/tags":
            return httpx.Response(
                200,
                json={"models": [{"name": name, "size": 1024} for name in self.models]},
            )

        if request.url.path == "/api/create":
            body = json.loads(request.content)
            self.created.append(body)
            self.models[body["name"]] = body["modelfile"]
            return httpx.Response(200, json={"status": "success"})

        if request.url.path == "/api/delete":
            name = json.loads(request.content)["name"]
            if name not in self.models:
                return httpx.Response(404, json={"error": f"model '{name}' not found"})
            del self.models[name]
            self.deleted.append(name)
            return httpx.Response(200)

        return httpx.Response(404)


class _BrokenStream(httpx.AsyncByteStream):
    """Sends the first half of a body, then drops the connection."""

    def __init__(self, data: bytes):
        self._data = data

    async def __aiter__(self):
        yield self._data[: len(self._data) // 2]
        raise httpx.ReadError("Connection reset by peer")


class _StallingStream(httpx.AsyncByteStream):
    """Sends one chunk, then never finishes."""

    async def __aiter__(self):
        yield b"w" * 100
        await asyncio.Event().wait()


class FakeHub:
    """In-process stand-in for the Hugging Face tree and resolve endpoints."""

    def __init__(self):
        self.available = True
        self.repos: dict[str, dict[str, bytes]] = {}
        self.truncate = False
        self.drop_connection = False
        self.stall = False
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            raise httpx.ConnectError("Connection refused", request=request)
        self.requests.append(request)
        path = request.url.path

        if path.startswith("/api/models/"):
            repo, _, _revision = path[len("/api/models/"):].rpartition("/tree/")
            if repo not in self.repos:
                return httpx.Response(401, json={"error": "Repository not found"})
            entries = [{"type": "directory", "path": "docs"}]
            entries += [
                {"type": "file", "path": name, "size": len(data)}
                for name, data in self.repos[repo].items()
            ]
            return httpx.Response(200, json=entries)

        repo, sep, rest = path.lstrip("/").partition("/resolve/")
        if not sep or repo not in self.repos:
            return httpx.Response(401, json={"error": "Repository not found"})
        _revision, _, filename = rest.partition("/")
        data = self.repos[repo].get(filename)
        if data is None:
            return httpx.Response(404, json={"error": "Entry not found"})
        if self.stall:
            return httpx.Response(200, headers={"content-length": str(len(data))}, stream=_StallingStream())
        if self.drop_connection:
            return httpx.Response(
                200, headers={"content-length": str(len(data))}, stream=_BrokenStream(data)
            )
        if self.truncate:
            return httpx.Response(200, headers={"content-length": str(len(data) + 10)}, content=data)
        return httpx.Response(200, content=data)


class FakeLMStudio:
    """In-process stand-in for the LM Studio OpenAI-compatible API."""

    def __init__(self):
        self.available = True
        self.models = ["lmstudio-community/Meta-Llama-3-8B-Instruct-GGUF"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.available:
            raise httpx.ConnectError("Connection refused", request=request)
        if request.url.path == "/v1/models":
            return httpx.Response(
                200,
                json={"object": "list", "data": [{"id": m, "object": "model"} for m in self.models]},
            )
        return httpx.Response(404)


@pytest.fixture
def temp_storage() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    path = Path(tempfile.mkdtemp())
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def settings(temp_storage: Path) -> Settings:
    """Settings pointing at the in-memory tree and a throwaway database."""
    return Settings(
        STORAGE_PATH=STORE_ROOT,
        DATABASE_URL=f"sqlite+aiosqlite:///{temp_storage / 'registry.db'}",
        OLLAMA_MODELS_PATH=OLLAMA_ROOT,
        LMSTUDIO_MODELS_PATH=LMSTUDIO_ROOT,
        COPY_CHUNK_SIZE=4096,
        _env_file=None,
    )


@pytest.fixture
def memory_adapter() -> MemoryAdapter:
    return MemoryAdapter()


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def fake_lmstudio() -> FakeLMStudio:
    return FakeLMStudio()


@pytest.fixture
def fake_hub() -> FakeHub:
    return FakeHub()


@pytest.fixture
def ollama_client(fake_ollama: FakeOllama) -> OllamaClient:
    return OllamaClient(transport=httpx.MockTransport(fake_ollama.handler))


@pytest.fixture
def lmstudio_client(fake_lmstudio: FakeLMStudio) -> LMStudioClient:
    return LMStudioClient(transport=httpx.MockTransport(fake_lmstudio.handler))


@pytest_asyncio.fixture
async def factory(
    settings: Settings,
    memory_adapter: MemoryAdapter,
    ollama_client: OllamaClient,
    lmstudio_client: LMStudioClient,
    fake_hub: FakeHub,
) -> AsyncGenerator[ServiceFactory, None]:
    """Service graph over the in-memory adapter with fake runtimes."""
    factory = ServiceFactory(
        settings,
        adapter=memory_adapter,
        ollama=ollama_client,
        lmstudio=lmstudio_client,
        hub_transport=httpx.MockTransport(fake_hub.handler),
        platform="linux",
        home=HOME,
    )
    await factory.startup()
    yield factory
    await factory.shutdown()


@pytest_asyncio.fixture
async def client(factory: ServiceFactory) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with the factory override."""
    app.dependency_overrides[get_factory] = lambda: factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def _digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


@pytest.fixture
def add_ollama_model(memory_adapter: MemoryAdapter):
    """Write a manifest and its blobs into the fake Ollama tree.

    Returns the manifest document.
    """

    async def _add(
        model: str,
        tag: str = "latest",
        weights: bytes = b"GGUF" + b"\x00" * 1020,
        config: bytes = b'{"model_format":"gguf"}',
        extra_layers: list[tuple[str, bytes]] | None = None,
        root: Path = OLLAMA_ROOT,
        write_blobs: bool = True,
    ) -> dict:
        layers = [(MODEL_MEDIA_TYPE, weights)] + list(extra_layers or [])
        manifest = {
            "schemaVersion": 2,
            "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
            "config": {"mediaType": CONFIG_MEDIA_TYPE, "digest": _digest(config), "size": len(config)},
            "layers": [
                {"mediaType": media_type, "digest": _digest(data), "size": len(data)}
                for media_type, data in layers
            ],
        }
        manifest_path = root / "manifests" / "registry.ollama.ai" / "library" / model / tag
        await memory_adapter.write_file(manifest_path, json.dumps(manifest).encode())
        if write_blobs:
            for data in [config] + [data for _, data in layers]:
                blob = root / "blobs" / _digest(data).replace(":", "-", 1)
                await memory_adapter.write_file(blob, data)
        return manifest

    return _add
