"""Durable backend on SQLAlchemy's async engine (PostgreSQL in production).

Write transactions lock the session row with ``SELECT ... FOR UPDATE`` so that
custody changes against the same session serialize. SQLite has no row locks,
so on SQLite writes are serialized inside the process instead.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, fields
from datetime import datetime, timezone
from typing import Any, AsyncIterator, TypeVar

from sqlalchemy import delete, event, select, text, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.domain.errors import BackendUnavailable
from app.models.db_models import Base, GameSession, Item, Location, Message, Player, Roll
from app.models.records import (
    ItemRecord,
    LocationRecord,
    MessageRecord,
    PlayerRecord,
    RollRecord,
    SessionRecord,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

_CONNECTIVITY_ERRORS = (OperationalError, InterfaceError, OSError, TimeoutError)


def _aware(value: Any) -> Any:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(record_cls: type[R], obj: Any) -> R:
    return record_cls(**{f.name: _aware(getattr(obj, f.name)) for f in fields(record_cls)})


def _columns(record: Any) -> dict[str, Any]:
    return {k: v for k, v in asdict(record).items() if v is not None}


class SqlTransaction:
    """Session-scoped reads and writes inside one database transaction."""

    def __init__(self, db: AsyncSession, row: GameSession | None):
        self._db = db
        self._row = row
        self.session: SessionRecord | None = (
            _to_record(SessionRecord, row) if row is not None else None
        )

    @property
    def _sid(self) -> str:
        return self._row.id

    async def update_session(self, **changes: Any) -> SessionRecord:
        for key, value in changes.items():
            setattr(self._row, key, value)
        await self._db.flush()
        self.session = _to_record(SessionRecord, self._row)
        return self.session

    async def next_seq(self) -> int:
        self._row.seq += 1
        await self._db.flush()
        self.session.seq = self._row.seq
        return self._row.seq

    async def _upsert(
        self, model: type, key: dict[str, Any], values: dict[str, Any], changes: dict[str, Any]
    ) -> tuple[Any, bool]:
        obj = (await self._db.execute(select(model).filter_by(**key))).scalar_one_or_none()
        if obj is None:
            obj = model(**values)
            self._db.add(obj)
            await self._db.flush()
            return obj, True
        for name, value in changes.items():
            setattr(obj, name, value)
        await self._db.flush()
        return obj, False

    async def _scalars(self, stmt) -> list[Any]:
        return list((await self._db.execute(stmt)).scalars().all())

    # --- players ---

    async def get_player(self, player_id: str) -> PlayerRecord | None:
        player = await self._db.get(Player, player_id)
        if player is None or player.session_id != self._sid:
            return None
        return _to_record(PlayerRecord, player)

    async def find_player(self, external_id: str) -> PlayerRecord | None:
        player = (
            await self._db.execute(
                select(Player).where(
                    Player.session_id == self._sid, Player.external_id == external_id
                )
            )
        ).scalar_one_or_none()
        return _to_record(PlayerRecord, player) if player is not None else None

    async def list_players(self) -> list[PlayerRecord]:
        rows = await self._scalars(
            select(Player).where(Player.session_id == self._sid).order_by(Player.joined_at, Player.id)
        )
        return [_to_record(PlayerRecord, p) for p in rows]

    async def upsert_player(
        self, record: PlayerRecord, changes: dict[str, Any]
    ) -> tuple[PlayerRecord, bool]:
        player, created = await self._upsert(
            Player,
            {"session_id": record.session_id, "external_id": record.external_id},
            _columns(record),
            changes,
        )
        return _to_record(PlayerRecord, player), created

    async def update_player(self, player_id: str, **changes: Any) -> PlayerRecord:
        player = await self._db.get(Player, player_id)
        for key, value in changes.items():
            setattr(player, key, value)
        await self._db.flush()
        return _to_record(PlayerRecord, player)

    async def move_players(self, location_id: str | None) -> None:
        await self._db.execute(
            update(Player).where(Player.session_id == self._sid).values(location_id=location_id)
        )

    # --- locations ---

    async def add_location(self, record: LocationRecord) -> LocationRecord:
        location = Location(**_columns(record))
        self._db.add(location)
        await self._db.flush()
        return _to_record(LocationRecord, location)

    async def get_location(self, location_id: str) -> LocationRecord | None:
        location = await self._db.get(Location, location_id)
        if location is None or location.session_id != self._sid:
            return None
        return _to_record(LocationRecord, location)

    async def list_locations(self) -> list[LocationRecord]:
        rows = await self._scalars(
            select(Location)
            .where(Location.session_id == self._sid)
            .order_by(Location.created_at, Location.id)
        )
        return [_to_record(LocationRecord, loc) for loc in rows]

    # --- items ---

    async def add_item(self, record: ItemRecord) -> ItemRecord:
        item = Item(**_columns(record))
        self._db.add(item)
        await self._db.flush()
        return _to_record(ItemRecord, item)

    async def get_item(self, item_id: str) -> ItemRecord | None:
        item = await self._db.get(Item, item_id)
        if item is None or item.session_id != self._sid:
            return None
        return _to_record(ItemRecord, item)

    async def update_item(self, item_id: str, **changes: Any) -> ItemRecord:
        item = await self._db.get(Item, item_id)
        for key, value in changes.items():
            setattr(item, key, value)
        await self._db.flush()
        return _to_record(ItemRecord, item)

    async def delete_item(self, item_id: str) -> None:
        await self._db.execute(
            delete(Item).where(Item.id == item_id, Item.session_id == self._sid)
        )

    async def list_items(self, owner_id: str | None = None) -> list[ItemRecord]:
        stmt = select(Item).where(Item.session_id == self._sid)
        if owner_id is not None:
            stmt = stmt.where(Item.owner_id == owner_id)
        rows = await self._scalars(stmt.order_by(Item.seq))
        return [_to_record(ItemRecord, i) for i in rows]

    async def floor_items(self, location_id: str) -> list[ItemRecord]:
        rows = await self._scalars(
            select(Item)
            .where(
                Item.session_id == self._sid,
                Item.owner_id.is_(None),
                Item.location_id == location_id,
            )
            .order_by(Item.seq)
        )
        return [_to_record(ItemRecord, i) for i in rows]

    # --- history ---

    async def add_message(self, record: MessageRecord) -> MessageRecord:
        message = Message(**_columns(record))
        self._db.add(message)
        await self._db.flush()
        return _to_record(MessageRecord, message)

    async def recent_messages(self, limit: int) -> list[MessageRecord]:
        rows = await self._scalars(
            select(Message)
            .where(Message.session_id == self._sid)
            .order_by(Message.seq.desc())
            .limit(limit)
        )
        return [_to_record(MessageRecord, m) for m in reversed(rows)]

    async def add_roll(self, record: RollRecord) -> RollRecord:
        roll = Roll(**_columns(record))
        self._db.add(roll)
        await self._db.flush()
        return _to_record(RollRecord, roll)

    async def recent_rolls(self, limit: int) -> list[RollRecord]:
        rows = await self._scalars(
            select(Roll)
            .where(Roll.session_id == self._sid)
            .order_by(Roll.seq.desc())
            .limit(limit)
        )
        return [_to_record(RollRecord, r) for r in reversed(rows)]


class SqlBackend:
    """Durable backend. Connectivity failures surface as ``BackendUnavailable``."""

    name = "sql"

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: AsyncEngine | None = None,
        timeout: float = 5.0,
        auto_create_schema: bool = True,
    ):
        if engine is None:
            if not url or not url.strip():
                raise ValueError("SqlBackend requires a database URL (TAVERN_DATABASE_URL).")
            engine = create_async_engine(url.strip(), pool_pre_ping=True)
        self._engine = engine
        self._sessionmaker = async_sessionmaker(engine, expire_on_commit=False)
        self._timeout = timeout
        # Cleared once create_all succeeds; retried lazily after a failed start.
        self._schema_pending = auto_create_schema
        self._schema_lock = asyncio.Lock()
        self._write_lock: asyncio.Lock | None = None

        if engine.dialect.name == "sqlite":
            self._write_lock = asyncio.Lock()

            @event.listens_for(engine.sync_engine, "connect")
            def _set_sqlite_pragma(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        try:
            async with asyncio.timeout(self._timeout):
                yield
        except _CONNECTIVITY_ERRORS as exc:
            raise BackendUnavailable(f"Durable store unavailable: {exc}") from exc

    def _serialized(self, write: bool) -> contextlib.AbstractAsyncContextManager:
        if write and self._write_lock is not None:
            return self._write_lock
        return contextlib.nullcontext()

    @property
    def schema_pending(self) -> bool:
        return self._schema_pending

    async def _ensure_schema(self) -> None:
        if not self._schema_pending:
            return
        async with self._schema_lock:
            if not self._schema_pending:
                return
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._schema_pending = False
            logger.info("Durable schema ready on %s", self._engine.dialect.name)

    async def start(self) -> None:
        async with self._guard():
            await self._ensure_schema()

    async def close(self) -> None:
        await self._engine.dispose()

    async def ping(self) -> bool:
        async with self._guard():
            async with self._engine.connect() as conn:
                await conn.execute(text("select 1"))
        return True

    async def insert_session(self, record: SessionRecord) -> bool:
        async with self._guard(), self._serialized(True):
            await self._ensure_schema()
            try:
                async with self._sessionmaker() as db, db.begin():
                    taken = await db.scalar(
                        select(GameSession.id).where(GameSession.code == record.code)
                    )
                    if taken is not None:
                        return False
                    db.add(GameSession(**_columns(record)))
            except IntegrityError:
                logger.debug("Join code %s collided on insert", record.code)
                return False
        return True

    @asynccontextmanager
    async def transaction(
        self, code: str, *, write: bool = True
    ) -> AsyncIterator[SqlTransaction]:
        async with self._guard(), self._serialized(write):
            await self._ensure_schema()
            async with self._sessionmaker() as db, db.begin():
                stmt = select(GameSession).where(GameSession.code == code)
                if write:
                    stmt = stmt.with_for_update()
                row = (await db.execute(stmt)).scalar_one_or_none()
                yield SqlTransaction(db, row)

    async def expired_codes(self, now: datetime) -> list[str]:
        async with self._guard():
            await self._ensure_schema()
            async with self._sessionmaker() as db:
                result = await db.execute(
                    select(GameSession.code).where(GameSession.expires_at <= now)
                )
                return list(result.scalars().all())

    async def delete_session(self, code: str) -> bool:
        async with self._guard(), self._serialized(True):
            async with self._sessionmaker() as db, db.begin():
                session_id = await db.scalar(
                    select(GameSession.id).where(GameSession.code == code).with_for_update()
                )
                if session_id is None:
                    return False
                # Children first: items point at players and locations.
                for model in (Roll, Message, Item, Player, Location):
                    await db.execute(delete(model).where(model.session_id == session_id))
                await db.execute(delete(GameSession).where(GameSession.id == session_id))
        return True
