"""Durable backend outages and the in-process fallback."""

import asyncio

import pytest

from app.backends.memory import MemoryBackend
from app.backends.sql import SqlBackend
from app.domain.errors import BackendUnavailable, SessionNotFound
from app.domain.store import SessionStore, create_session_store
from app.domain.sweeper import EvictionSweeper
from app.infra.config import Settings


@pytest.mark.asyncio
async def test_creation_falls_back_to_memory(flaky_durable):
    fallback = MemoryBackend()
    store = SessionStore(durable=flaky_durable, fallback=fallback)

    flaky_durable.down = True
    created = await store.create_session()
    assert created.backend == "memory"
    assert store.backend_of(created.code) == "memory"
    assert created.code in fallback

    # The session stays in memory after the durable store recovers.
    flaky_durable.down = False
    await store.join_session(created.code, "u1", "Aria")
    assert created.code not in flaky_durable
    state = await store.get_state(created.code)
    assert len(state.players) == 1


@pytest.mark.asyncio
async def test_durable_is_preferred_when_reachable(flaky_durable):
    store = SessionStore(durable=flaky_durable, fallback=MemoryBackend())
    created = await store.create_session()
    assert created.backend == "sql"
    assert created.code in flaky_durable


@pytest.mark.asyncio
async def test_no_fallback_surfaces_outage(flaky_durable):
    store = SessionStore(durable=flaky_durable)
    flaky_durable.down = True
    with pytest.raises(BackendUnavailable):
        await store.create_session()


@pytest.mark.asyncio
async def test_outage_mid_lifetime_does_not_migrate(flaky_durable):
    store = SessionStore(durable=flaky_durable, fallback=MemoryBackend())
    created = await store.create_session()

    flaky_durable.down = True
    with pytest.raises(BackendUnavailable):
        await store.join_session(created.code, "u1", "Aria")
    assert store.backend_of(created.code) == "sql"

    flaky_durable.down = False
    player = await store.join_session(created.code, "u1", "Aria")
    assert player.name == "Aria"


@pytest.mark.asyncio
async def test_sweeper_skips_unreachable_backend(flaky_durable, policy, clock):
    fallback = MemoryBackend()
    store = SessionStore(durable=flaky_durable, fallback=fallback, policy=policy)
    flaky_durable.down = True
    in_memory = await store.create_session()

    clock.advance(hours=7)
    assert await EvictionSweeper(store).run_once() == 1
    assert in_memory.code not in fallback


@pytest.mark.asyncio
async def test_unreachable_sqlite_falls_back(tmp_path):
    durable = SqlBackend(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'tavern.db'}")
    store = SessionStore(durable=durable, fallback=MemoryBackend())

    # Startup logs the outage instead of failing.
    await store.start()
    with pytest.raises(BackendUnavailable):
        await durable.ping()

    created = await store.create_session()
    assert created.backend == "memory"
    await store.close()


@pytest.mark.asyncio
async def test_schema_created_once_database_recovers(tmp_path):
    db_dir = tmp_path / "missing"
    durable = SqlBackend(f"sqlite+aiosqlite:///{db_dir / 'tavern.db'}")
    store = SessionStore(durable=durable, fallback=MemoryBackend())
    await store.start()
    assert durable.schema_pending

    db_dir.mkdir()
    created = await store.create_session()
    assert created.backend == "sql"
    assert not durable.schema_pending

    player = await store.join_session(created.code, "u1", "Aria")
    assert player.name == "Aria"
    await store.close()


@pytest.mark.asyncio
async def test_unreachable_sqlite_without_fallback(tmp_path):
    durable = SqlBackend(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'tavern.db'}")
    store = SessionStore(durable=durable)
    with pytest.raises(BackendUnavailable):
        await store.start()
    await store.close()


@pytest.mark.asyncio
async def test_slow_durable_times_out(sql_backend):
    sql_backend._timeout = 0.05

    with pytest.raises(BackendUnavailable):
        async with sql_backend._guard():
            await asyncio.sleep(1)


@pytest.mark.asyncio
async def test_unknown_code_without_durable():
    store = SessionStore(fallback=MemoryBackend())
    with pytest.raises(SessionNotFound):
        await store.get_state("ABCDEF")


def test_store_requires_a_backend():
    with pytest.raises(ValueError):
        SessionStore()


def test_sql_backend_requires_url():
    with pytest.raises(ValueError):
        SqlBackend("   ")


def test_factory_without_database_uses_memory_only():
    store = create_session_store(Settings(database_url=None))
    assert [b.name for b in store.backends] == ["memory"]
    assert store.durable is None


def test_factory_with_database(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'tavern.db'}"
    store = create_session_store(Settings(database_url=url, fallback_enabled=False))
    assert [b.name for b in store.backends] == ["sql"]

    store = create_session_store(Settings(database_url=url))
    assert [b.name for b in store.backends] == ["sql", "memory"]
