"""Pydantic views returned by the session store to its callers."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.models.records import (
    Custody,
    ItemRecord,
    LocationRecord,
    MessageRecord,
    PlayerRecord,
    RollRecord,
)


class PlayerView(BaseModel):
    id: str
    external_id: str
    name: str
    avatar: str | None = None
    hp: int
    currency: int
    is_authority: bool = False
    bio: str | None = None
    sheet: str | None = None
    location_id: str | None = None

    @classmethod
    def from_record(cls, p: PlayerRecord) -> PlayerView:
        return cls(
            id=p.id,
            external_id=p.external_id,
            name=p.name,
            avatar=p.avatar,
            hp=p.hp,
            currency=p.currency,
            is_authority=p.is_authority,
            bio=p.bio,
            sheet=p.sheet,
            location_id=p.location_id,
        )


class ItemView(BaseModel):
    id: str
    name: str
    qty: int
    kind: str = "misc"
    note: str | None = None
    custody: Custody
    owner_id: str | None = None
    location_id: str | None = None
    origin_id: str | None = None

    @classmethod
    def from_record(cls, i: ItemRecord) -> ItemView:
        return cls(
            id=i.id,
            name=i.name,
            qty=i.qty,
            kind=i.kind,
            note=i.note,
            custody=i.custody,
            owner_id=i.owner_id,
            location_id=i.location_id,
            origin_id=i.origin_id,
        )


class LocationView(BaseModel):
    id: str
    name: str
    description: str | None = None
    image_url: str | None = None

    @classmethod
    def from_record(cls, loc: LocationRecord) -> LocationView:
        return cls(
            id=loc.id,
            name=loc.name,
            description=loc.description,
            image_url=loc.image_url,
        )


class MessageView(BaseModel):
    id: str
    player_id: str | None = None
    text: str
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, m: MessageRecord) -> MessageView:
        return cls(id=m.id, player_id=m.player_id, text=m.text, created_at=m.created_at)


class RollView(BaseModel):
    id: str
    player_id: str | None = None
    die: int
    result: int
    created_at: datetime | None = None

    @classmethod
    def from_record(cls, r: RollRecord) -> RollView:
        return cls(
            id=r.id,
            player_id=r.player_id,
            die=r.die,
            result=r.result,
            created_at=r.created_at,
        )


class FloorView(BaseModel):
    """What the caller may know about the active location's floor.

    Regular participants only learn how many units lie there; the authority
    also gets the item list.
    """

    count: int = 0
    items: list[ItemView] | None = None


class SessionCreated(BaseModel):
    code: str
    expires_at: datetime
    backend: str


class Snapshot(BaseModel):
    code: str
    started: bool
    authority_claimed: bool
    is_authority: bool = False
    created_at: datetime
    expires_at: datetime
    you: PlayerView | None = None
    players: list[PlayerView] = Field(default_factory=list)
    inventory: list[ItemView] = Field(default_factory=list)
    location: LocationView | None = None
    locations: list[LocationView] = Field(default_factory=list)
    floor: FloorView = Field(default_factory=FloorView)
    messages: list[MessageView] = Field(default_factory=list)
    rolls: list[RollView] = Field(default_factory=list)
