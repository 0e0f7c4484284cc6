"""Backend-neutral entity records.

Both storage backends hand these dataclasses to the session store, so the
store's rules never depend on which backend a session lives in.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class Custody(str, enum.Enum):
    HELD = "held"
    FLOOR = "floor"
    UNPLACED = "unplaced"


class Stat(str, enum.Enum):
    HP = "hp"
    CURRENCY = "currency"


@dataclass
class SessionRecord:
    id: str
    code: str
    created_at: datetime
    expires_at: datetime
    authority_id: str | None = None
    started: bool = False
    active_location_id: str | None = None
    seq: int = 0


@dataclass
class PlayerRecord:
    id: str
    session_id: str
    external_id: str
    name: str
    avatar: str | None = None
    hp: int = 10
    currency: int = 0
    is_authority: bool = False
    bio: str | None = None
    sheet: str | None = None
    location_id: str | None = None
    joined_at: datetime | None = None


@dataclass
class LocationRecord:
    id: str
    session_id: str
    name: str
    description: str | None = None
    image_url: str | None = None
    created_at: datetime | None = None


@dataclass
class ItemRecord:
    id: str
    session_id: str
    name: str
    qty: int
    seq: int
    owner_id: str | None = None
    location_id: str | None = None
    origin_id: str | None = None
    note: str | None = None
    kind: str = "misc"
    created_at: datetime | None = None

    @property
    def custody(self) -> Custody:
        if self.owner_id is not None:
            return Custody.HELD
        if self.location_id is not None:
            return Custody.FLOOR
        return Custody.UNPLACED


@dataclass
class MessageRecord:
    id: str
    session_id: str
    text: str
    seq: int
    player_id: str | None = None
    created_at: datetime | None = None


@dataclass
class RollRecord:
    id: str
    session_id: str
    die: int
    result: int
    seq: int
    player_id: str | None = None
    created_at: datetime | None = None


@dataclass
class SessionData:
    """Everything one session owns; the fallback backend's unit of storage."""

    session: SessionRecord
    players: dict[str, PlayerRecord] = field(default_factory=dict)
    locations: dict[str, LocationRecord] = field(default_factory=dict)
    items: dict[str, ItemRecord] = field(default_factory=dict)
    messages: list[MessageRecord] = field(default_factory=list)
    rolls: list[RollRecord] = field(default_factory=list)
