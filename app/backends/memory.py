"""In-process fallback backend.

Sessions live in a dict keyed by join code. Nothing survives a restart and
nothing is shared between processes, so deployments that depend on it need
sticky routing per session.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, AsyncIterator

from app.models.records import (
    ItemRecord,
    LocationRecord,
    MessageRecord,
    PlayerRecord,
    RollRecord,
    SessionData,
    SessionRecord,
)


def _fork(data: SessionData) -> SessionData:
    # Records are flat, so copying each one isolates the fork. History rows
    # are never modified after insert and can be shared.
    return SessionData(
        session=replace(data.session),
        players={k: replace(v) for k, v in data.players.items()},
        locations={k: replace(v) for k, v in data.locations.items()},
        items={k: replace(v) for k, v in data.items.items()},
        messages=list(data.messages),
        rolls=list(data.rolls),
    )


class MemoryTransaction:
    """Operates on one session's data.

    Write transactions receive a private copy that replaces the committed
    data only when the operation finishes without raising.
    """

    def __init__(self, data: SessionData | None, history_retention: int):
        self._data = data
        self._retention = history_retention
        self.session: SessionRecord | None = data.session if data is not None else None

    async def update_session(self, **changes: Any) -> SessionRecord:
        for key, value in changes.items():
            setattr(self._data.session, key, value)
        return self._data.session

    async def next_seq(self) -> int:
        self._data.session.seq += 1
        return self._data.session.seq

    # --- players ---

    async def get_player(self, player_id: str) -> PlayerRecord | None:
        return self._data.players.get(player_id)

    async def find_player(self, external_id: str) -> PlayerRecord | None:
        for player in self._data.players.values():
            if player.external_id == external_id:
                return player
        return None

    async def list_players(self) -> list[PlayerRecord]:
        return list(self._data.players.values())

    async def upsert_player(
        self, record: PlayerRecord, changes: dict[str, Any]
    ) -> tuple[PlayerRecord, bool]:
        existing = await self.find_player(record.external_id)
        if existing is None:
            self._data.players[record.id] = record
            return record, True
        for key, value in changes.items():
            setattr(existing, key, value)
        return existing, False

    async def update_player(self, player_id: str, **changes: Any) -> PlayerRecord:
        player = self._data.players[player_id]
        for key, value in changes.items():
            setattr(player, key, value)
        return player

    async def move_players(self, location_id: str | None) -> None:
        for player in self._data.players.values():
            player.location_id = location_id

    # --- locations ---

    async def add_location(self, record: LocationRecord) -> LocationRecord:
        self._data.locations[record.id] = record
        return record

    async def get_location(self, location_id: str) -> LocationRecord | None:
        return self._data.locations.get(location_id)

    async def list_locations(self) -> list[LocationRecord]:
        return list(self._data.locations.values())

    # --- items ---

    async def add_item(self, record: ItemRecord) -> ItemRecord:
        self._data.items[record.id] = record
        return record

    async def get_item(self, item_id: str) -> ItemRecord | None:
        return self._data.items.get(item_id)

    async def update_item(self, item_id: str, **changes: Any) -> ItemRecord:
        item = self._data.items[item_id]
        for key, value in changes.items():
            setattr(item, key, value)
        return item

    async def delete_item(self, item_id: str) -> None:
        self._data.items.pop(item_id, None)

    async def list_items(self, owner_id: str | None = None) -> list[ItemRecord]:
        items = self._data.items.values()
        if owner_id is not None:
            items = [i for i in items if i.owner_id == owner_id]
        return sorted(items, key=lambda i: i.seq)

    async def floor_items(self, location_id: str) -> list[ItemRecord]:
        return sorted(
            (
                i
                for i in self._data.items.values()
                if i.owner_id is None and i.location_id == location_id
            ),
            key=lambda i: i.seq,
        )

    # --- history ---

    async def add_message(self, record: MessageRecord) -> MessageRecord:
        self._data.messages.append(record)
        if len(self._data.messages) > self._retention:
            del self._data.messages[: -self._retention]
        return record

    async def recent_messages(self, limit: int) -> list[MessageRecord]:
        return self._data.messages[-limit:] if limit > 0 else []

    async def add_roll(self, record: RollRecord) -> RollRecord:
        self._data.rolls.append(record)
        if len(self._data.rolls) > self._retention:
            del self._data.rolls[: -self._retention]
        return record

    async def recent_rolls(self, limit: int) -> list[RollRecord]:
        return self._data.rolls[-limit:] if limit > 0 else []


class MemoryBackend:
    """Fallback backend keeping every session in process memory."""

    name = "memory"

    def __init__(self, history_retention: int = 500):
        self._sessions: dict[str, SessionData] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._history_retention = history_retention

    def __contains__(self, code: str) -> bool:
        return code in self._sessions

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        self._sessions.clear()
        self._locks.clear()

    async def ping(self) -> bool:
        return True

    async def insert_session(self, record: SessionRecord) -> bool:
        if record.code in self._sessions:
            return False
        self._sessions[record.code] = SessionData(session=record)
        return True

    @asynccontextmanager
    async def transaction(
        self, code: str, *, write: bool = True
    ) -> AsyncIterator[MemoryTransaction]:
        if not write or code not in self._sessions:
            yield MemoryTransaction(self._sessions.get(code), self._history_retention)
            return

        lock = self._locks.setdefault(code, asyncio.Lock())
        async with lock:
            committed = self._sessions.get(code)
            working = _fork(committed) if committed is not None else None
            yield MemoryTransaction(working, self._history_retention)
            # Not reached when the operation raised: the copy is discarded.
            # A session evicted meanwhile stays evicted.
            if working is not None and self._sessions.get(code) is committed:
                self._sessions[code] = working

    async def expired_codes(self, now: datetime) -> list[str]:
        return [
            code
            for code, data in self._sessions.items()
            if data.session.expires_at <= now
        ]

    async def delete_session(self, code: str) -> bool:
        self._locks.pop(code, None)
        return self._sessions.pop(code, None) is not None
