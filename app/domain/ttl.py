"""Session lifetime policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TtlPolicy:
    """Computes expiry timestamps against an injectable clock."""

    ttl: timedelta = timedelta(hours=6)
    clock: Callable[[], datetime] = field(default=utcnow)

    def now(self) -> datetime:
        return self.clock()

    def expires_at(self, now: datetime | None = None) -> datetime:
        return (now or self.now()) + self.ttl

    def is_expired(self, expires_at: datetime, now: datetime | None = None) -> bool:
        return expires_at <= (now or self.now())
