"""Database persistence layer."""

from .database import create_engine, create_session_factory, init_db
from .models import Base, StoredModel

__all__ = [
    "create_engine",
    "create_session_factory",
    "init_db",
    "Base",
    "StoredModel",
]
