"""Session/custody store: the one API that request handlers and bots talk to.

Every operation takes a join code, resolves it to the backend the session
lives in and runs as one transaction there. A session is bound to a backend
when it is created (durable when reachable, otherwise the in-process
fallback) and keeps that binding for its whole lifetime.
"""

from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, AsyncIterator, Callable, Iterable

from app.domain.backend import SessionBackend, SessionTransaction
from app.domain.errors import (
    BackendUnavailable,
    CodeGenerationExhausted,
    EntityNotFound,
    Forbidden,
    InvalidArgument,
    SessionNotFound,
)
from app.domain.ids import new_id, new_join_code, normalize_code
from app.domain.ttl import TtlPolicy
from app.models.records import (
    ItemRecord,
    LocationRecord,
    MessageRecord,
    PlayerRecord,
    RollRecord,
    SessionRecord,
    Stat,
)
from app.models.views import (
    FloorView,
    ItemView,
    LocationView,
    MessageView,
    PlayerView,
    RollView,
    SessionCreated,
    Snapshot,
)

logger = logging.getLogger(__name__)

MAX_PLAYER_NAME = 40
MAX_ITEM_NAME = 64
MAX_LOCATION_NAME = 128
MAX_TEXT = 2000
MAX_ID = 32


def _require_text(value: Any, field: str, max_len: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{field} is required")
    return value.strip()[:max_len]


def _optional_text(value: Any, max_len: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidArgument(f"Expected text, got {type(value).__name__}")
    value = value.strip()
    if not value:
        return None
    return value[:max_len] if max_len else value


def _identifier(value: Any, field: str, *, required: bool = True) -> str | None:
    value = _optional_text(value)
    if value is None:
        if required:
            raise InvalidArgument(f"{field} is required")
        return None
    if len(value) > MAX_ID:
        raise InvalidArgument(f"{field} is too long")
    return value


def _integer(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{field} must be an integer")
    return value


def _positive(value: Any, field: str) -> int:
    value = _integer(value, field)
    if value <= 0:
        raise InvalidArgument(f"{field} must be positive")
    return value


def _stat(value: Any) -> Stat:
    try:
        return Stat(value)
    except ValueError:
        raise InvalidArgument(f"Unknown stat: {value!r}") from None


class SessionStore:
    """Session lifecycle, join, authority checks and item custody."""

    def __init__(
        self,
        *,
        durable: SessionBackend | None = None,
        fallback: SessionBackend | None = None,
        policy: TtlPolicy | None = None,
        code_length: int = 6,
        code_max_attempts: int = 10,
        history_limit: int = 50,
        default_hp: int = 10,
        default_currency: int = 0,
        allowed_dice: Iterable[int] = (4, 6, 8, 10, 12, 20, 100),
        default_location_name: str = "Starting Area",
        rng: random.Random | None = None,
        code_factory: Callable[[int], str] = new_join_code,
    ):
        if durable is None and fallback is None:
            raise ValueError("SessionStore needs a durable or a fallback backend")
        self._durable = durable
        self._fallback = fallback
        self.policy = policy or TtlPolicy()
        self._code_length = code_length
        self._code_max_attempts = code_max_attempts
        self._history_limit = history_limit
        self._default_hp = default_hp
        self._default_currency = default_currency
        self._allowed_dice = frozenset(allowed_dice)
        self._default_location_name = default_location_name
        self._rng = rng or random.Random()
        self._code_factory = code_factory
        self._bindings: dict[str, SessionBackend] = {}

    # --- lifecycle ---

    @property
    def backends(self) -> list[SessionBackend]:
        return [b for b in (self._durable, self._fallback) if b is not None]

    @property
    def durable(self) -> SessionBackend | None:
        return self._durable

    async def start(self) -> None:
        if self._fallback is not None:
            await self._fallback.start()
        if self._durable is None:
            return
        try:
            await self._durable.start()
        except BackendUnavailable as exc:
            if self._fallback is None:
                raise
            logger.warning(
                "Durable store unavailable at startup, new sessions will fall back: %s", exc
            )

    async def close(self) -> None:
        for backend in self.backends:
            await backend.close()
        self._bindings.clear()

    def backend_of(self, code: str) -> str | None:
        """Name of the backend a session is bound to in this process, if any."""
        backend = self._bindings.get(normalize_code(code))
        return backend.name if backend is not None else None

    def forget(self, code: str) -> None:
        self._bindings.pop(normalize_code(code), None)

    # --- resolution ---

    def _resolve(self, code: str) -> tuple[str, SessionBackend]:
        code = normalize_code(code)
        backend = self._bindings.get(code)
        if backend is not None:
            return code, backend
        if self._durable is None or len(code) != self._code_length:
            raise SessionNotFound(code)
        return code, self._durable

    @asynccontextmanager
    async def _open(self, code: str, *, write: bool = True) -> AsyncIterator[SessionTransaction]:
        code, backend = self._resolve(code)
        async with backend.transaction(code, write=write) as tx:
            session = tx.session
            if session is None:
                self._bindings.pop(code, None)
                raise SessionNotFound(code)
            if self.policy.is_expired(session.expires_at):
                raise SessionNotFound(code)
            self._bindings.setdefault(code, backend)
            yield tx
            if write:
                # Sliding expiry: successful mutations keep the session alive.
                await tx.update_session(expires_at=self.policy.expires_at())

    def _require_authority(self, tx: SessionTransaction, external_id: str | None, action: str) -> None:
        authority = tx.session.authority_id
        if authority is None or not external_id or external_id != authority:
            raise Forbidden(f"Only the game master can {action}")

    async def _require_player(self, tx: SessionTransaction, external_id: Any) -> PlayerRecord:
        external_id = _require_text(external_id, "external_id", 128)
        player = await tx.find_player(external_id)
        if player is None:
            raise EntityNotFound("player", external_id)
        return player

    def _active_location_id(self, tx: SessionTransaction) -> str:
        location_id = tx.session.active_location_id
        if location_id is None:
            raise InvalidArgument("Session has no active location")
        return location_id

    # --- sessions ---

    async def create_session(self, requested_authority_id: str | None = None) -> SessionCreated:
        authority = _optional_text(requested_authority_id, 128)
        for _ in range(self._code_max_attempts):
            code = normalize_code(self._code_factory(self._code_length))
            if code in self._bindings:
                continue
            now = self.policy.now()
            record = SessionRecord(
                id=new_id(),
                code=code,
                authority_id=authority,
                created_at=now,
                expires_at=self.policy.expires_at(now),
            )
            backend = await self._insert(record)
            if backend is None:
                continue
            self._bindings[code] = backend
            logger.info("Created session %s on %s backend", code, backend.name)
            return SessionCreated(code=code, expires_at=record.expires_at, backend=backend.name)
        raise CodeGenerationExhausted(self._code_max_attempts)

    async def _insert(self, record: SessionRecord) -> SessionBackend | None:
        if self._durable is not None:
            try:
                return self._durable if await self._durable.insert_session(record) else None
            except BackendUnavailable as exc:
                if self._fallback is None:
                    raise
                logger.warning(
                    "Durable store unavailable, session %s falls back to memory: %s",
                    record.code,
                    exc,
                )
        return self._fallback if await self._fallback.insert_session(record) else None

    async def join_session(
        self,
        code: str,
        external_id: str,
        display_name: str | None = None,
        avatar: str | None = None,
        *,
        as_authority: bool = False,
    ) -> PlayerView:
        external_id = _require_text(external_id, "external_id", 128)
        name = _optional_text(display_name, MAX_PLAYER_NAME)
        avatar = _optional_text(avatar, 32)
        async with self._open(code) as tx:
            session = tx.session
            claims = as_authority and session.authority_id is None
            is_authority = claims or session.authority_id == external_id
            record = PlayerRecord(
                id=new_id(),
                session_id=session.id,
                external_id=external_id,
                name=name or "Player",
                avatar=avatar,
                hp=self._default_hp,
                currency=self._default_currency,
                is_authority=is_authority,
                location_id=session.active_location_id if session.started else None,
                joined_at=self.policy.now(),
            )
            changes: dict[str, Any] = {"is_authority": is_authority}
            if name:
                changes["name"] = name
            if avatar:
                changes["avatar"] = avatar
            if claims:
                await tx.update_session(authority_id=external_id)
                logger.info("%s claimed authority of session %s", external_id, session.code)
            player, created = await tx.upsert_player(record, changes)
            if created:
                logger.debug("%s joined session %s", external_id, session.code)
            return PlayerView.from_record(player)

    async def get_state(self, code: str, caller_external_id: str | None = None) -> Snapshot:
        caller_id = _optional_text(caller_external_id, 128)
        async with self._open(code, write=False) as tx:
            session = tx.session
            is_authority = caller_id is not None and caller_id == session.authority_id
            caller = await tx.find_player(caller_id) if caller_id else None
            inventory = await tx.list_items(owner_id=caller.id) if caller else []

            location = None
            floor = FloorView()
            if session.active_location_id is not None:
                location = await tx.get_location(session.active_location_id)
            if location is not None:
                on_floor = await tx.floor_items(location.id)
                floor = FloorView(
                    count=sum(i.qty for i in on_floor),
                    items=[ItemView.from_record(i) for i in on_floor] if is_authority else None,
                )

            return Snapshot(
                code=session.code,
                started=session.started,
                authority_claimed=session.authority_id is not None,
                is_authority=is_authority,
                created_at=session.created_at,
                expires_at=session.expires_at,
                you=PlayerView.from_record(caller) if caller else None,
                players=[PlayerView.from_record(p) for p in await tx.list_players()],
                inventory=[ItemView.from_record(i) for i in inventory],
                location=LocationView.from_record(location) if location else None,
                locations=[LocationView.from_record(loc) for loc in await tx.list_locations()],
                floor=floor,
                messages=[
                    MessageView.from_record(m)
                    for m in await tx.recent_messages(self._history_limit)
                ],
                rolls=[RollView.from_record(r) for r in await tx.recent_rolls(self._history_limit)],
            )

    async def start_session(
        self, code: str, caller_external_id: str, location_id: str | None = None
    ) -> LocationView:
        """Move the session from lobby to started. One-way."""
        location_id = _identifier(location_id, "location_id", required=False)
        async with self._open(code) as tx:
            self._require_authority(tx, caller_external_id, "start the session")
            session = tx.session
            if session.started:
                raise InvalidArgument("Session already started")

            location = None
            if location_id is not None:
                location = await tx.get_location(location_id)
                if location is None:
                    raise EntityNotFound("location", location_id)
            elif session.active_location_id is not None:
                location = await tx.get_location(session.active_location_id)
            if location is None:
                existing = await tx.list_locations()
                location = existing[0] if existing else None
            if location is None:
                location = await tx.add_location(
                    LocationRecord(
                        id=new_id(),
                        session_id=session.id,
                        name=self._default_location_name,
                        created_at=self.policy.now(),
                    )
                )

            await tx.update_session(started=True, active_location_id=location.id)
            await tx.move_players(location.id)
            logger.info("Session %s started at %s", session.code, location.name)
            return LocationView.from_record(location)

    # --- players ---

    async def adjust_stat(
        self,
        code: str,
        caller_external_id: str,
        target_player_id: str,
        stat: Stat | str,
        delta: int,
    ) -> int:
        stat = _stat(stat)
        delta = _integer(delta, "delta")
        async with self._open(code) as tx:
            self._require_authority(tx, caller_external_id, "change player stats")
            target = await tx.get_player(target_player_id)
            if target is None:
                raise EntityNotFound("player", target_player_id)
            value = max(0, getattr(target, stat.value) + delta)
            await tx.update_player(target.id, **{stat.value: value})
            return value

    async def update_profile(
        self,
        code: str,
        external_id: str,
        *,
        bio: str | None = None,
        sheet: str | None = None,
    ) -> PlayerView:
        """Let a participant edit their own biography and character sheet.

        ``None`` leaves a field untouched; an empty string clears it.
        """
        changes: dict[str, Any] = {}
        if bio is not None:
            changes["bio"] = _optional_text(bio, MAX_TEXT)
        if sheet is not None:
            changes["sheet"] = _optional_text(sheet, MAX_TEXT)
        async with self._open(code) as tx:
            player = await self._require_player(tx, external_id)
            if changes:
                player = await tx.update_player(player.id, **changes)
            return PlayerView.from_record(player)

    # --- locations ---

    async def add_location(
        self,
        code: str,
        caller_external_id: str,
        name: str,
        description: str | None = None,
        image_url: str | None = None,
    ) -> LocationView:
        name = _require_text(name, "name", MAX_LOCATION_NAME)
        description = _optional_text(description, MAX_TEXT)
        image_url = _optional_text(image_url, 512)
        async with self._open(code) as tx:
            self._require_authority(tx, caller_external_id, "add locations")
            location = await tx.add_location(
                LocationRecord(
                    id=new_id(),
                    session_id=tx.session.id,
                    name=name,
                    description=description,
                    image_url=image_url,
                    created_at=self.policy.now(),
                )
            )
            return LocationView.from_record(location)

    async def set_active_location(
        self, code: str, caller_external_id: str, location_id: str
    ) -> LocationView:
        location_id = _identifier(location_id, "location_id")
        async with self._open(code) as tx:
            self._require_authority(tx, caller_external_id, "move the party")
            location = await tx.get_location(location_id)
            if location is None:
                raise EntityNotFound("location", location_id)
            await tx.update_session(active_location_id=location.id)
            if tx.session.started:
                await tx.move_players(location.id)
            return LocationView.from_record(location)

    # --- items ---

    async def create_item(
        self,
        code: str,
        caller_external_id: str,
        name: str,
        qty: int = 1,
        *,
        owner_external_id: str | None = None,
        location_id: str | None = None,
        on_floor: bool = False,
        note: str | None = None,
        kind: str | None = None,
    ) -> ItemView:
        """Create an item held by a player, on the floor, or unplaced.

        At most one of ``owner_external_id``, ``location_id`` and
        ``on_floor`` (the active location) may be given.
        """
        name = _require_text(name, "name", MAX_ITEM_NAME)
        qty = _positive(qty, "qty")
        note = _optional_text(note, MAX_TEXT)
        kind = _optional_text(kind, 32) or "misc"
        owner_external_id = _optional_text(owner_external_id, 128)
        location_id = _identifier(location_id, "location_id", required=False)
        if sum((owner_external_id is not None, location_id is not None, bool(on_floor))) > 1:
            raise InvalidArgument("Give at most one of owner, location or on_floor")

        async with self._open(code) as tx:
            self._require_authority(tx, caller_external_id, "create items")
            owner_id = placed_at = None
            if owner_external_id is not None:
                owner = await tx.find_player(owner_external_id)
                if owner is None:
                    raise EntityNotFound("player", owner_external_id)
                owner_id = owner.id
            elif location_id is not None:
                location = await tx.get_location(location_id)
                if location is None:
                    raise EntityNotFound("location", location_id)
                placed_at = location.id
            elif on_floor:
                placed_at = self._active_location_id(tx)

            item_id = new_id()
            item = await tx.add_item(
                ItemRecord(
                    id=item_id,
                    session_id=tx.session.id,
                    name=name,
                    qty=qty,
                    seq=await tx.next_seq(),
                    owner_id=owner_id,
                    location_id=placed_at,
                    origin_id=item_id,
                    note=note,
                    kind=kind,
                    created_at=self.policy.now(),
                )
            )
            return ItemView.from_record(item)

    async def transfer_item(
        self,
        code: str,
        item_id: str,
        *,
        to_external_id: str | None = None,
        to_floor: bool = False,
        qty: int | None = None,
        caller_external_id: str | None = None,
    ) -> ItemView:
        """Hand an item to a player or drop it at the active location.

        With ``qty`` smaller than the stack, that many units are split off
        into a new row and the rest stays where it was. When
        ``caller_external_id`` is given the caller must hold the item or be
        the game master.
        """
        to_external_id = _optional_text(to_external_id, 128)
        if (to_external_id is not None) == bool(to_floor):
            raise InvalidArgument("Give exactly one of to_external_id or to_floor")
        if qty is not None:
            qty = _positive(qty, "qty")

        async with self._open(code) as tx:
            item = await tx.get_item(item_id)
            if item is None:
                raise EntityNotFound("item", item_id)
            if caller_external_id is not None:
                await self._require_holder(tx, item, caller_external_id)
            if qty is not None and qty > item.qty:
                raise InvalidArgument(f"Cannot move {qty} of {item.qty}")

            if to_external_id is not None:
                receiver = await tx.find_player(to_external_id)
                if receiver is None:
                    raise EntityNotFound("player", to_external_id)
                custody = {"owner_id": receiver.id, "location_id": None}
            else:
                custody = {"owner_id": None, "location_id": self._active_location_id(tx)}

            if qty is None or qty == item.qty:
                moved = await tx.update_item(item.id, **custody)
            else:
                await tx.update_item(item.id, qty=item.qty - qty)
                moved = await tx.add_item(
                    replace(
                        item,
                        id=new_id(),
                        qty=qty,
                        seq=await tx.next_seq(),
                        origin_id=item.origin_id or item.id,
                        created_at=self.policy.now(),
                        **custody,
                    )
                )
            return ItemView.from_record(moved)

    async def _require_holder(
        self, tx: SessionTransaction, item: ItemRecord, external_id: str
    ) -> None:
        if external_id == tx.session.authority_id:
            return
        player = await tx.find_player(external_id)
        if player is None or item.owner_id != player.id:
            raise Forbidden("Only the holder or the game master can move this item")

    async def look_around(self, code: str, external_id: str) -> ItemView | None:
        """Reveal and claim one unit of the oldest item on the active floor."""
        async with self._open(code) as tx:
            claimant = await self._require_player(tx, external_id)
            location_id = tx.session.active_location_id
            if location_id is None:
                return None
            floor = await tx.floor_items(location_id)
            if not floor:
                return None

            oldest = floor[0]
            if oldest.qty == 1:
                claimed = await tx.update_item(oldest.id, owner_id=claimant.id, location_id=None)
            else:
                await tx.update_item(oldest.id, qty=oldest.qty - 1)
                claimed = await tx.add_item(
                    replace(
                        oldest,
                        id=new_id(),
                        qty=1,
                        seq=await tx.next_seq(),
                        owner_id=claimant.id,
                        location_id=None,
                        origin_id=oldest.origin_id or oldest.id,
                        created_at=self.policy.now(),
                    )
                )
            logger.debug("%s picked up %s in %s", external_id, claimed.name, tx.session.code)
            return ItemView.from_record(claimed)

    async def list_items(self, code: str, caller_external_id: str) -> list[ItemView]:
        """Every item for the game master, the caller's own items otherwise."""
        caller_id = _require_text(caller_external_id, "external_id", 128)
        async with self._open(code, write=False) as tx:
            if caller_id == tx.session.authority_id:
                items = await tx.list_items()
            else:
                player = await tx.find_player(caller_id)
                items = await tx.list_items(owner_id=player.id) if player else []
            return [ItemView.from_record(i) for i in items]

    async def delete_item(self, code: str, caller_external_id: str, item_id: str) -> None:
        async with self._open(code) as tx:
            self._require_authority(tx, caller_external_id, "delete items")
            if await tx.get_item(item_id) is None:
                raise EntityNotFound("item", item_id)
            await tx.delete_item(item_id)

    # --- chat and dice ---

    async def post_message(
        self, code: str, external_id: str | None, text: str
    ) -> MessageView:
        text = _require_text(text, "text", MAX_TEXT)
        async with self._open(code) as tx:
            author = await self._require_player(tx, external_id) if external_id else None
            message = await tx.add_message(
                MessageRecord(
                    id=new_id(),
                    session_id=tx.session.id,
                    text=text,
                    seq=await tx.next_seq(),
                    player_id=author.id if author else None,
                    created_at=self.policy.now(),
                )
            )
            return MessageView.from_record(message)

    async def roll_dice(
        self, code: str, external_id: str | None, die: int, *, narrate: bool = True
    ) -> RollView:
        die = _integer(die, "die")
        if die not in self._allowed_dice:
            raise InvalidArgument(
                f"Die d{die} not allowed; use one of {sorted(self._allowed_dice)}"
            )
        result = 1 + int(self._rng.random() * die)
        async with self._open(code) as tx:
            roller = await self._require_player(tx, external_id) if external_id else None
            now = self.policy.now()
            roll = await tx.add_roll(
                RollRecord(
                    id=new_id(),
                    session_id=tx.session.id,
                    die=die,
                    result=result,
                    seq=await tx.next_seq(),
                    player_id=roller.id if roller else None,
                    created_at=now,
                )
            )
            if narrate:
                who = roller.name if roller else "Someone"
                await tx.add_message(
                    MessageRecord(
                        id=new_id(),
                        session_id=tx.session.id,
                        text=f"{who} rolled d{die}: {result}",
                        seq=await tx.next_seq(),
                        created_at=now,
                    )
                )
            return RollView.from_record(roll)


def create_session_store(cfg=None) -> SessionStore:
    """Build the store from settings.

    A configured database becomes the durable backend; the in-process
    fallback is added unless disabled, and is the only backend without a
    database.
    """
    from app.backends.memory import MemoryBackend
    from app.backends.sql import SqlBackend
    from app.infra.config import settings as default_settings

    cfg = cfg or default_settings
    durable = None
    if cfg.database_url:
        durable = SqlBackend(
            cfg.database_url,
            timeout=cfg.db_timeout_seconds,
            auto_create_schema=cfg.auto_create_schema,
        )
    fallback = None
    if durable is None or cfg.fallback_enabled:
        fallback = MemoryBackend(history_retention=cfg.history_retention)

    return SessionStore(
        durable=durable,
        fallback=fallback,
        policy=TtlPolicy(ttl=cfg.session_ttl),
        code_length=cfg.code_length,
        code_max_attempts=cfg.code_max_attempts,
        history_limit=cfg.history_limit,
        default_hp=cfg.default_hp,
        default_currency=cfg.default_currency,
        allowed_dice=cfg.allowed_dice,
        default_location_name=cfg.default_location_name,
    )
