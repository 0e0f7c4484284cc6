"""Session API — thin HTTP adapter over the session store."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.domain.store import SessionStore
from app.models.schemas import (
    ActiveLocationRequest,
    CreateItemRequest,
    CreateSessionRequest,
    JoinRequest,
    LocationRequest,
    LookRequest,
    MessageRequest,
    ProfileRequest,
    RollRequest,
    StartRequest,
    StatRequest,
    TransferRequest,
)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


Store = Annotated[SessionStore, Depends(get_store)]


@router.post("")
async def create_session(body: CreateSessionRequest, store: Store) -> dict:
    created = await store.create_session(body.authority_id)
    return created.model_dump()


@router.get("/{code}")
async def get_state(code: str, store: Store, me: str | None = None) -> dict:
    snapshot = await store.get_state(code, me)
    return snapshot.model_dump()


@router.post("/{code}/join")
async def join_session(code: str, body: JoinRequest, store: Store) -> dict:
    player = await store.join_session(
        code, body.external_id, body.name, body.avatar, as_authority=body.as_authority
    )
    return player.model_dump()


@router.post("/{code}/start")
async def start_session(code: str, body: StartRequest, store: Store) -> dict:
    location = await store.start_session(code, body.caller, body.location_id)
    return {"started": True, "location": location.model_dump()}


@router.post("/{code}/locations")
async def add_location(code: str, body: LocationRequest, store: Store) -> dict:
    location = await store.add_location(
        code, body.caller, body.name, body.description, body.image_url
    )
    return location.model_dump()


@router.post("/{code}/locations/active")
async def set_active_location(code: str, body: ActiveLocationRequest, store: Store) -> dict:
    location = await store.set_active_location(code, body.caller, body.location_id)
    return location.model_dump()


@router.post("/{code}/players/{player_id}/stats")
async def adjust_stat(code: str, player_id: str, body: StatRequest, store: Store) -> dict:
    value = await store.adjust_stat(code, body.caller, player_id, body.stat, body.delta)
    return {"player_id": player_id, "stat": body.stat.value, "value": value}


@router.patch("/{code}/players/{external_id}")
async def update_profile(code: str, external_id: str, body: ProfileRequest, store: Store) -> dict:
    player = await store.update_profile(code, external_id, bio=body.bio, sheet=body.sheet)
    return player.model_dump()


@router.get("/{code}/items")
async def list_items(code: str, me: str, store: Store) -> dict:
    items = await store.list_items(code, me)
    return {"items": [i.model_dump() for i in items]}


@router.post("/{code}/items")
async def create_item(code: str, body: CreateItemRequest, store: Store) -> dict:
    item = await store.create_item(
        code,
        body.caller,
        body.name,
        body.qty,
        owner_external_id=body.owner_external_id,
        location_id=body.location_id,
        on_floor=body.on_floor,
        note=body.note,
        kind=body.kind,
    )
    return item.model_dump()


@router.post("/{code}/items/{item_id}/transfer")
async def transfer_item(code: str, item_id: str, body: TransferRequest, store: Store) -> dict:
    item = await store.transfer_item(
        code,
        item_id,
        to_external_id=body.to_external_id,
        to_floor=body.to_floor,
        qty=body.qty,
        caller_external_id=body.caller,
    )
    return item.model_dump()


@router.delete("/{code}/items/{item_id}")
async def delete_item(code: str, item_id: str, me: str, store: Store) -> dict:
    await store.delete_item(code, me, item_id)
    return {"ok": True}


@router.post("/{code}/look")
async def look_around(code: str, body: LookRequest, store: Store) -> dict:
    item = await store.look_around(code, body.external_id)
    return {"item": item.model_dump() if item else None}


@router.post("/{code}/messages")
async def post_message(code: str, body: MessageRequest, store: Store) -> dict:
    message = await store.post_message(code, body.external_id, body.text)
    return message.model_dump()


@router.post("/{code}/rolls")
async def roll_dice(code: str, body: RollRequest, store: Store) -> dict:
    roll = await store.roll_dice(code, body.external_id, body.die, narrate=body.narrate)
    return roll.model_dump()
