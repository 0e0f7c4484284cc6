"""Request bodies accepted by the HTTP layer."""

from __future__ import annotations

from pydantic import BaseModel

from app.models.records import Stat


class CreateSessionRequest(BaseModel):
    authority_id: str | None = None


class JoinRequest(BaseModel):
    external_id: str
    name: str | None = None
    avatar: str | None = None
    as_authority: bool = False


class StartRequest(BaseModel):
    caller: str
    location_id: str | None = None


class LocationRequest(BaseModel):
    caller: str
    name: str
    description: str | None = None
    image_url: str | None = None


class ActiveLocationRequest(BaseModel):
    caller: str
    location_id: str


class StatRequest(BaseModel):
    caller: str
    stat: Stat
    delta: int


class ProfileRequest(BaseModel):
    bio: str | None = None
    sheet: str | None = None


class CreateItemRequest(BaseModel):
    caller: str
    name: str
    qty: int = 1
    owner_external_id: str | None = None
    location_id: str | None = None
    on_floor: bool = False
    note: str | None = None
    kind: str | None = None


class TransferRequest(BaseModel):
    to_external_id: str | None = None
    to_floor: bool = False
    qty: int | None = None
    caller: str | None = None


class LookRequest(BaseModel):
    external_id: str


class MessageRequest(BaseModel):
    external_id: str | None = None
    text: str


class RollRequest(BaseModel):
    external_id: str | None = None
    die: int = 20
    narrate: bool = True
