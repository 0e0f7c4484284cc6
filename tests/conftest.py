"""Shared fixtures: a controllable clock, stores on both backends, an HTTP client."""

from __future__ import annotations

import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.backends.memory import MemoryBackend
from app.backends.sql import SqlBackend
from app.domain.errors import BackendUnavailable
from app.domain.store import SessionStore
from app.domain.ttl import TtlPolicy
from app.infra.config import Settings
from app.main import create_app
from app.models.views import LocationView, PlayerView


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FlakyBackend(MemoryBackend):
    """Stands in for the durable store; ``down = True`` simulates an outage."""

    name = "sql"

    def __init__(self):
        super().__init__()
        self.down = False
        self.inserts = 0

    def _check(self) -> None:
        if self.down:
            raise BackendUnavailable("connection refused")

    async def insert_session(self, record):
        self._check()
        self.inserts += 1
        return await super().insert_session(record)

    @asynccontextmanager
    async def transaction(self, code, *, write=True):
        self._check()
        async with super().transaction(code, write=write) as tx:
            yield tx

    async def expired_codes(self, now):
        self._check()
        return await super().expired_codes(now)


@dataclass
class Table:
    """A started game: gm1 is the game master, p1 and p2 are players."""

    code: str
    gm: PlayerView
    p1: PlayerView
    p2: PlayerView
    location: LocationView


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy(clock) -> TtlPolicy:
    return TtlPolicy(ttl=timedelta(hours=6), clock=clock)


@pytest.fixture
def flaky_durable() -> FlakyBackend:
    return FlakyBackend()


@pytest_asyncio.fixture
async def sql_backend(tmp_path):
    backend = SqlBackend(f"sqlite+aiosqlite:///{tmp_path / 'tavern.db'}")
    await backend.start()
    yield backend
    await backend.close()


@pytest_asyncio.fixture
async def db_session(sql_backend):
    async with AsyncSession(sql_backend.engine) as session:
        yield session


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, policy, tmp_path):
    if request.param == "memory":
        s = SessionStore(fallback=MemoryBackend(), policy=policy, rng=random.Random(7))
    else:
        durable = SqlBackend(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        s = SessionStore(durable=durable, policy=policy, rng=random.Random(7))
    await s.start()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def table(store) -> Table:
    created = await store.create_session()
    code = created.code
    gm = await store.join_session(code, "gm1", "Master", as_authority=True)
    p1 = await store.join_session(code, "p1", "Aria", "🧝")
    p2 = await store.join_session(code, "p2", "Borin", "🪓")
    await store.add_location(code, "gm1", "Old Mill", "Dusty and quiet")
    location = await store.start_session(code, "gm1")
    return Table(code=code, gm=gm, p1=p1, p2=p2, location=location)


@pytest_asyncio.fixture
async def client(policy):
    store = SessionStore(fallback=MemoryBackend(), policy=policy)
    app = create_app(Settings(sweep_interval_seconds=3600), store=store)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
