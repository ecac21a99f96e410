"""Core interfaces for the adapter pattern.

These interfaces define contracts that allow swapping runtime clients,
for example an in-process fake in tests.
"""

from .runtime import (
    RUNTIMES,
    IModelCreator,
    IRuntimeClient,
    RuntimeId,
    RuntimeModelInfo,
    RuntimeStatus,
)

__all__ = [
    "RUNTIMES",
    "RuntimeId",
    # Runtime clients
    "IRuntimeClient",
    "IModelCreator",
    "RuntimeModelInfo",
    "RuntimeStatus",
]
