"""Storage adapter factory."""

from storage.base import StorageAdapter
from storage.adapters.local import LocalAdapter
from storage.adapters.memory import MemoryAdapter


# Registry of adapter classes by backend name
ADAPTER_REGISTRY: dict[str, type[StorageAdapter]] = {
    "local": LocalAdapter,
    "memory": MemoryAdapter,
}


def get_adapter(backend: str, config: dict | None = None) -> StorageAdapter:
    """Get a storage adapter for a backend name.

    Args:
        backend: Backend name (e.g. "local").
        config: Optional adapter configuration.

    Returns:
        Configured StorageAdapter instance.

    Raises:
        ValueError: If the backend is not supported.
    """
    adapter_class = ADAPTER_REGISTRY.get(backend)

    if adapter_class is None:
        raise ValueError(f"Unknown storage backend: {backend}")

    return adapter_class(config or {})


def register_adapter(backend: str, adapter_class: type[StorageAdapter]) -> None:
    """Register an adapter class for a backend name."""
    ADAPTER_REGISTRY[backend] = adapter_class
