"""Error taxonomy raised by the session store."""

from __future__ import annotations


class SessionStoreError(Exception):
    """Base class for every error the store raises on purpose."""


class SessionNotFound(SessionStoreError):
    def __init__(self, code: str):
        super().__init__(f"Session not found: {code}")
        self.code = code


class Forbidden(SessionStoreError):
    """The caller is not the session authority (or not the item holder)."""


class InvalidArgument(SessionStoreError, ValueError):
    """Malformed input, rejected before any mutation."""


class EntityNotFound(InvalidArgument):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class CodeGenerationExhausted(SessionStoreError):
    def __init__(self, attempts: int):
        super().__init__(f"No free join code after {attempts} attempts")
        self.attempts = attempts


class BackendUnavailable(SessionStoreError):
    """The durable backend could not be reached or timed out."""
