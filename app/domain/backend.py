"""Interface both storage backends implement.

The store opens one transaction per operation. A write transaction holds the
session exclusively (row lock on the durable backend, a per-session lock on
the fallback), so custody changes against one session are linearizable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncContextManager, Protocol

from app.models.records import (
    ItemRecord,
    LocationRecord,
    MessageRecord,
    PlayerRecord,
    RollRecord,
    SessionRecord,
)


class SessionTransaction(Protocol):
    """Reads and writes scoped to a single session."""

    session: SessionRecord | None

    async def update_session(self, **changes: Any) -> SessionRecord: ...

    async def next_seq(self) -> int:
        """Advance and return the session's creation-order counter."""
        ...

    async def get_player(self, player_id: str) -> PlayerRecord | None: ...

    async def find_player(self, external_id: str) -> PlayerRecord | None: ...

    async def list_players(self) -> list[PlayerRecord]: ...

    async def upsert_player(
        self, record: PlayerRecord, changes: dict[str, Any]
    ) -> tuple[PlayerRecord, bool]:
        """Insert ``record`` or apply ``changes`` to the row with the same
        (session, external id). Returns the row and whether it was created."""
        ...

    async def update_player(self, player_id: str, **changes: Any) -> PlayerRecord: ...

    async def move_players(self, location_id: str | None) -> None: ...

    async def add_location(self, record: LocationRecord) -> LocationRecord: ...

    async def get_location(self, location_id: str) -> LocationRecord | None: ...

    async def list_locations(self) -> list[LocationRecord]: ...

    async def add_item(self, record: ItemRecord) -> ItemRecord: ...

    async def get_item(self, item_id: str) -> ItemRecord | None: ...

    async def update_item(self, item_id: str, **changes: Any) -> ItemRecord: ...

    async def delete_item(self, item_id: str) -> None: ...

    async def list_items(self, owner_id: str | None = None) -> list[ItemRecord]: ...

    async def floor_items(self, location_id: str) -> list[ItemRecord]:
        """Items resting at ``location_id``, oldest (lowest seq) first."""
        ...

    async def add_message(self, record: MessageRecord) -> MessageRecord: ...

    async def recent_messages(self, limit: int) -> list[MessageRecord]: ...

    async def add_roll(self, record: RollRecord) -> RollRecord: ...

    async def recent_rolls(self, limit: int) -> list[RollRecord]: ...


class SessionBackend(Protocol):
    """A place sessions live in."""

    name: str

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> bool: ...

    async def insert_session(self, record: SessionRecord) -> bool:
        """Persist a new session. False when the code is already taken."""
        ...

    def transaction(
        self, code: str, *, write: bool = True
    ) -> AsyncContextManager[SessionTransaction]: ...

    async def expired_codes(self, now: datetime) -> list[str]: ...

    async def delete_session(self, code: str) -> bool:
        """Delete a session and everything it owns."""
        ...
