"""Join codes and internal identifiers."""

from __future__ import annotations

import secrets
import uuid

# No 0/O or 1/I, so codes survive being read aloud or retyped.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def new_id() -> str:
    return uuid.uuid4().hex


def new_join_code(length: int = 6) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()
