"""Local model runtime interface definitions.

A runtime is a separately installed program that loads and serves models
from its own storage directory. Clients wrap whatever control surface the
runtime exposes over HTTP.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal

RuntimeId = Literal["ollama", "lmstudio"]

# Manifest-based runtime first, flat-file runtime second
RUNTIMES: tuple[RuntimeId, ...] = ("ollama", "lmstudio")


@dataclass
class RuntimeModelInfo:
    """A model the runtime currently reports as available."""

    id: str
    name: str
    runtime: RuntimeId
    size: int | None = None
    modified: str | None = None


@dataclass
class RuntimeStatus:
    """Reachability and model list of a runtime."""

    runtime: RuntimeId
    connected: bool
    models: list[RuntimeModelInfo] = field(default_factory=list)
    error: str | None = None


class IRuntimeClient(ABC):
    """Interface for talking to a local model runtime."""

    runtime: RuntimeId
    name: str

    @abstractmethod
    async def is_available(self) -> bool:
        """Probe the runtime. Never raises."""
        ...

    @abstractmethod
    async def list_models(self) -> list[RuntimeModelInfo]:
        """List models known to the runtime. Empty when unreachable."""
        ...

    async def get_status(self) -> RuntimeStatus:
        """Probe and list in one call."""
        if not await self.is_available():
            return RuntimeStatus(
                runtime=self.runtime,
                connected=False,
                error=f"Cannot connect to {self.name}",
            )
        return RuntimeStatus(
            runtime=self.runtime,
            connected=True,
            models=await self.list_models(),
        )

    async def close(self) -> None:
        """Release network resources."""
        return None


class IModelCreator(IRuntimeClient):
    """A runtime that can create and delete models through its API."""

    @abstractmethod
    def is_local(self) -> bool:
        """Whether the runtime runs on this machine and can read local paths."""
        ...

    @abstractmethod
    async def create_model(self, name: str, modelfile: str) -> None:
        """Create a model from a Modelfile.

        Raises:
            RuntimeUnavailableError: If the runtime does not respond.
            StorageError: If the runtime rejects the request.
        """
        ...

    @abstractmethod
    async def delete_model(self, name: str) -> None:
        """Delete a model by name."""
        ...
