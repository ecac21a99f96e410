"""Ollama runtime client.

Talks to the Ollama local API:
- GET /api/tags - reachability probe and local model list
- POST /api/create - create a model from a Modelfile
- DELETE /api/delete - delete a model by name
"""

import logging
from urllib.parse import urlparse

import httpx

from core.interfaces.runtime import IModelCreator, RuntimeModelInfo
from storage.exceptions import (
    RuntimeUnavailableError,
    StorageIOError,
    StorageNotFoundError,
)

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


def build_modelfile(
    model_path: str,
    system_prompt: str | None = None,
    parameters: dict[str, str | int | float] | None = None,
) -> str:
    """Build a Modelfile that creates a model from a local GGUF file."""
    lines = ["# Modelfile created by Model Depot", f"FROM {model_path}"]

    if system_prompt:
        lines.extend(["", 'SYSTEM """', system_prompt, '"""'])

    if parameters:
        lines.append("")
        for key, value in parameters.items():
            lines.append(f"PARAMETER {key} {value}")

    return "\n".join(lines) + "\n"


def _error_message(response: httpx.Response) -> str:
    """Pull the error string out of an Ollama error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.text or f"HTTP {response.status_code}"


class OllamaClient(IModelCreator):
    """HTTP client for a local Ollama server."""

    runtime = "ollama"
    name = "Ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        timeout: float = 5.0,
        create_timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Ollama server address
            timeout: Timeout for probes and listing
            create_timeout: Timeout for model creation, which hashes the file
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._create_timeout = create_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def is_local(self) -> bool:
        """Check whether the server address points at this machine."""
        host = urlparse(self.base_url).hostname
        if host is None:
            return True
        return host.lower() in _LOCAL_HOSTS

    async def is_available(self) -> bool:
        client = await self._get_client()
        try:
            response = await client.get("/api/tags")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def list_models(self) -> list[RuntimeModelInfo]:
        client = await self._get_client()
        try:
            response = await client.get("/api/tags")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not list Ollama models: %s", e)
            return []

        return [
            RuntimeModelInfo(
                id=m["name"],
                name=m["name"],
                runtime=self.runtime,
                size=m.get("size"),
                modified=m.get("modified_at"),
            )
            for m in data.get("models") or []
            if m.get("name")
        ]

    async def create_model(self, name: str, modelfile: str) -> None:
        client = await self._get_client()
        logger.info("Creating Ollama model %s", name)
        try:
            response = await client.post(
                "/api/create",
                json={"name": name, "modelfile": modelfile, "stream": False},
                timeout=self._create_timeout,
            )
        except httpx.TransportError as e:
            raise RuntimeUnavailableError(f"Cannot connect to Ollama at {self.base_url}: {e}") from e

        if response.status_code != 200:
            message = _error_message(response)
            if "neither 'from' or 'files'" in message:
                message = (
                    "Ollama could not read the model path. The file must be "
                    "accessible from the machine Ollama runs on."
                )
            raise StorageIOError(f"Ollama create failed: {message}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get("error"):
            raise StorageIOError(f"Ollama create failed: {data['error']}")

    async def delete_model(self, name: str) -> None:
        client = await self._get_client()
        logger.info("Deleting Ollama model %s", name)
        try:
            response = await client.request("DELETE", "/api/delete", json={"name": name})
        except httpx.TransportError as e:
            raise RuntimeUnavailableError(f"Cannot connect to Ollama at {self.base_url}: {e}") from e

        if response.status_code == 404:
            raise StorageNotFoundError(f"Ollama model not found: {name}")
        if response.status_code != 200:
            raise StorageIOError(f"Ollama delete failed: {_error_message(response)}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
