"""Lightweight async event bus for model lifecycle notifications.

Services emit events after a mutation has succeeded (model imported,
installed into a runtime, storage redirected, etc.). Consumers such as a
UI push channel subscribe at startup.

Usage:
    from core.events import on, emit, clear, MODEL_IMPORTED

    async def my_handler(**kwargs):
        print(kwargs)

    on(MODEL_IMPORTED, my_handler)
    await emit(MODEL_IMPORTED, model_id="abc", runtime="ollama")
"""

import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Coroutine[Any, Any, None]]

MODEL_IMPORTED = "model.imported"
MODEL_DOWNLOADED = "model.downloaded"
MODEL_INSTALLED = "model.installed"
MODEL_UNINSTALLED = "model.uninstalled"
MODEL_DELETED = "model.deleted"
STORAGE_CONFIGURED = "storage.configured"
STORAGE_RESTORED = "storage.restored"

_handlers: dict[str, list[EventHandler]] = {}


def on(event_name: str, handler: EventHandler) -> None:
    """Subscribe to an event."""
    _handlers.setdefault(event_name, []).append(handler)


def off(event_name: str, handler: EventHandler) -> None:
    """Unsubscribe a handler. Unknown handlers are ignored."""
    handlers = _handlers.get(event_name, [])
    if handler in handlers:
        handlers.remove(handler)


async def emit(event_name: str, **kwargs) -> None:
    """Emit an event to all subscribers. Failures are logged, not raised."""
    for handler in list(_handlers.get(event_name, [])):
        try:
            await handler(**kwargs)
        except Exception:
            logger.exception("Event handler failed for '%s'", event_name)


def clear() -> None:
    """Clear all handlers. Used in tests."""
    _handlers.clear()
