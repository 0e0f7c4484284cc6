"""Storage backends for the session store (durable SQL, in-process fallback)."""

from app.backends.memory import MemoryBackend
from app.backends.sql import SqlBackend

__all__ = ["MemoryBackend", "SqlBackend"]
