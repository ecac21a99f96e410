"""Core configuration, interfaces, and service factory.

- Settings: Application configuration
- Interfaces: Contracts for runtime clients
- Factory: Wires the storage adapter, registry and services from settings
"""

from .config import Settings, settings
from .factory import ServiceFactory, get_factory, reset_factory

__all__ = [
    # Configuration
    "Settings",
    "settings",
    # Factory
    "ServiceFactory",
    "get_factory",
    "reset_factory",
]
