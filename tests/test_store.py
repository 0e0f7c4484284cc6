"""Session store behaviour, run against both the memory and the SQL backend."""

import pytest

from app.domain.errors import (
    EntityNotFound,
    Forbidden,
    InvalidArgument,
    SessionNotFound,
)
from app.models.records import Custody


async def _item_totals(store, code, origin_id):
    items = await store.list_items(code, "gm1")
    return sum(i.qty for i in items if i.origin_id == origin_id)


# --- join and authority ---


@pytest.mark.asyncio
async def test_join_is_idempotent(store):
    created = await store.create_session()
    first = await store.join_session(created.code, "u1", "Aria", "🧝")
    again = await store.join_session(created.code, "u1", "Aria the Bold")

    assert again.id == first.id
    assert again.name == "Aria the Bold"
    assert again.avatar == "🧝"

    state = await store.get_state(created.code, "u1")
    assert len(state.players) == 1
    assert state.you.name == "Aria the Bold"


@pytest.mark.asyncio
async def test_join_defaults(store):
    created = await store.create_session()
    player = await store.join_session(created.code, "u1")
    assert player.name == "Player"
    assert player.hp == 10
    assert player.currency == 0
    assert player.is_authority is False


@pytest.mark.asyncio
async def test_first_authority_claim_wins(store):
    created = await store.create_session()
    gm = await store.join_session(created.code, "gm1", "Master", as_authority=True)
    late = await store.join_session(created.code, "gm2", "Usurper", as_authority=True)

    assert gm.is_authority is True
    assert late.is_authority is False

    # The authority does not move once claimed.
    with pytest.raises(Forbidden):
        await store.add_location(created.code, "gm2", "Throne Room")

    state = await store.get_state(created.code, "gm1")
    assert state.authority_claimed is True
    assert state.is_authority is True


@pytest.mark.asyncio
async def test_requested_authority_on_create(store):
    created = await store.create_session("gm9")
    player = await store.join_session(created.code, "gm9", "Keeper")
    assert player.is_authority is True

    state = await store.get_state(created.code, "gm9")
    assert state.authority_claimed is True


@pytest.mark.asyncio
async def test_join_rejects_blank_external_id(store):
    created = await store.create_session()
    with pytest.raises(InvalidArgument):
        await store.join_session(created.code, "   ", "Ghost")


@pytest.mark.asyncio
async def test_unknown_and_lowercase_codes(store):
    created = await store.create_session()
    player = await store.join_session(created.code.lower(), "u1", "Aria")
    assert player.external_id == "u1"

    with pytest.raises(SessionNotFound):
        await store.get_state("ZZZZZZ")
    with pytest.raises(SessionNotFound):
        await store.join_session("nope", "u1")


# --- start and locations ---


@pytest.mark.asyncio
async def test_start_creates_default_location(store):
    created = await store.create_session()
    await store.join_session(created.code, "gm1", as_authority=True)
    await store.join_session(created.code, "p1", "Aria")

    location = await store.start_session(created.code, "gm1")
    assert location.name == "Starting Area"

    state = await store.get_state(created.code, "p1")
    assert state.started is True
    assert state.location.id == location.id
    assert state.you.location_id == location.id


@pytest.mark.asyncio
async def test_start_requires_authority_and_is_one_way(table, store):
    with pytest.raises(InvalidArgument):
        await store.start_session(table.code, "gm1")

    created = await store.create_session()
    await store.join_session(created.code, "gm1", as_authority=True)
    await store.join_session(created.code, "p1")
    with pytest.raises(Forbidden):
        await store.start_session(created.code, "p1")


@pytest.mark.asyncio
async def test_start_at_unknown_location(store):
    created = await store.create_session()
    await store.join_session(created.code, "gm1", as_authority=True)
    with pytest.raises(EntityNotFound):
        await store.start_session(created.code, "gm1", "missing")


@pytest.mark.asyncio
async def test_late_joiner_lands_at_active_location(table, store):
    late = await store.join_session(table.code, "p3", "Cole")
    assert late.location_id == table.location.id


@pytest.mark.asyncio
async def test_set_active_location_moves_party(table, store):
    cave = await store.add_location(table.code, "gm1", "Cave", image_url="https://img/cave.png")
    moved = await store.set_active_location(table.code, "gm1", cave.id)
    assert moved.name == "Cave"

    state = await store.get_state(table.code, "p1")
    assert state.location.id == cave.id
    assert state.you.location_id == cave.id
    assert {loc.name for loc in state.locations} == {"Old Mill", "Cave"}

    with pytest.raises(Forbidden):
        await store.set_active_location(table.code, "p1", table.location.id)
    with pytest.raises(EntityNotFound):
        await store.set_active_location(table.code, "gm1", "missing")


@pytest.mark.asyncio
async def test_add_location_validates_name(table, store):
    with pytest.raises(InvalidArgument):
        await store.add_location(table.code, "gm1", "  ")


# --- stats and profile ---


@pytest.mark.asyncio
async def test_adjust_stat_clamps_at_zero(table, store):
    assert await store.adjust_stat(table.code, "gm1", table.p1.id, "hp", -3) == 7
    assert await store.adjust_stat(table.code, "gm1", table.p1.id, "hp", -50) == 0
    assert await store.adjust_stat(table.code, "gm1", table.p1.id, "currency", 25) == 25

    state = await store.get_state(table.code, "p1")
    assert state.you.hp == 0
    assert state.you.currency == 25


@pytest.mark.asyncio
async def test_adjust_stat_rejections(table, store):
    with pytest.raises(Forbidden):
        await store.adjust_stat(table.code, "p1", table.p2.id, "hp", -1)
    with pytest.raises(InvalidArgument):
        await store.adjust_stat(table.code, "gm1", table.p1.id, "mana", 1)
    with pytest.raises(InvalidArgument):
        await store.adjust_stat(table.code, "gm1", table.p1.id, "hp", "1")
    with pytest.raises(EntityNotFound):
        await store.adjust_stat(table.code, "gm1", "missing", "hp", 1)

    state = await store.get_state(table.code, "p2")
    assert state.you.hp == 10


@pytest.mark.asyncio
async def test_update_profile(table, store):
    player = await store.update_profile(table.code, "p1", bio="Elf ranger", sheet="STR 12")
    assert player.bio == "Elf ranger"
    assert player.sheet == "STR 12"

    player = await store.update_profile(table.code, "p1", bio="")
    assert player.bio is None
    assert player.sheet == "STR 12"

    with pytest.raises(EntityNotFound):
        await store.update_profile(table.code, "stranger", bio="hi")


# --- items ---


@pytest.mark.asyncio
async def test_create_item_custody(table, store):
    held = await store.create_item(table.code, "gm1", "Rope", owner_external_id="p1")
    floor = await store.create_item(table.code, "gm1", "Coin", 5, on_floor=True)
    loose = await store.create_item(table.code, "gm1", "Map", note="Torn")

    assert held.custody is Custody.HELD
    assert held.owner_id == table.p1.id
    assert floor.custody is Custody.FLOOR
    assert floor.location_id == table.location.id
    assert loose.custody is Custody.UNPLACED
    assert loose.note == "Torn"
    assert loose.kind == "misc"


@pytest.mark.asyncio
async def test_create_item_rejections(table, store):
    with pytest.raises(Forbidden):
        await store.create_item(table.code, "p1", "Sword")
    with pytest.raises(InvalidArgument):
        await store.create_item(table.code, "gm1", "Sword", 0)
    with pytest.raises(InvalidArgument):
        await store.create_item(table.code, "gm1", "Sword", owner_external_id="p1", on_floor=True)
    with pytest.raises(EntityNotFound):
        await store.create_item(table.code, "gm1", "Sword", owner_external_id="stranger")
    with pytest.raises(EntityNotFound):
        await store.create_item(table.code, "gm1", "Sword", location_id="missing")

    assert await store.list_items(table.code, "gm1") == []


@pytest.mark.asyncio
async def test_transfer_between_players(table, store):
    rope = await store.create_item(table.code, "gm1", "Rope", owner_external_id="p1")
    moved = await store.transfer_item(table.code, rope.id, to_external_id="p2", caller_external_id="p1")

    assert moved.id == rope.id
    assert moved.owner_id == table.p2.id
    assert moved.location_id is None

    p1_items = await store.list_items(table.code, "p1")
    p2_items = await store.list_items(table.code, "p2")
    assert p1_items == []
    assert [i.id for i in p2_items] == [rope.id]


@pytest.mark.asyncio
async def test_partial_transfer_conserves_quantity(table, store):
    coins = await store.create_item(table.code, "gm1", "Coin", 10, owner_external_id="p1")
    split = await store.transfer_item(table.code, coins.id, to_external_id="p2", qty=4)

    assert split.id != coins.id
    assert split.qty == 4
    assert split.origin_id == coins.id
    assert split.owner_id == table.p2.id

    remaining = await store.list_items(table.code, "p1")
    assert [(i.id, i.qty) for i in remaining] == [(coins.id, 6)]
    assert await _item_totals(store, table.code, coins.id) == 10

    with pytest.raises(InvalidArgument):
        await store.transfer_item(table.code, coins.id, to_external_id="p2", qty=7)
    assert await _item_totals(store, table.code, coins.id) == 10


@pytest.mark.asyncio
async def test_transfer_needs_exactly_one_target(table, store):
    rope = await store.create_item(table.code, "gm1", "Rope", owner_external_id="p1")
    with pytest.raises(InvalidArgument):
        await store.transfer_item(table.code, rope.id)
    with pytest.raises(InvalidArgument):
        await store.transfer_item(table.code, rope.id, to_external_id="p2", to_floor=True)
    with pytest.raises(InvalidArgument):
        await store.transfer_item(table.code, rope.id, to_external_id="p2", qty=0)
    with pytest.raises(EntityNotFound):
        await store.transfer_item(table.code, "missing", to_external_id="p2")
    with pytest.raises(EntityNotFound):
        await store.transfer_item(table.code, rope.id, to_external_id="stranger")


@pytest.mark.asyncio
async def test_only_holder_or_authority_moves_item(table, store):
    rope = await store.create_item(table.code, "gm1", "Rope", owner_external_id="p1")
    with pytest.raises(Forbidden):
        await store.transfer_item(table.code, rope.id, to_external_id="p2", caller_external_id="p2")

    moved = await store.transfer_item(table.code, rope.id, to_floor=True, caller_external_id="gm1")
    assert moved.custody is Custody.FLOOR


@pytest.mark.asyncio
async def test_drop_needs_active_location(store):
    created = await store.create_session()
    await store.join_session(created.code, "gm1", as_authority=True)
    await store.join_session(created.code, "p1")
    rope = await store.create_item(created.code, "gm1", "Rope", owner_external_id="p1")

    with pytest.raises(InvalidArgument):
        await store.transfer_item(created.code, rope.id, to_floor=True)
    with pytest.raises(InvalidArgument):
        await store.create_item(created.code, "gm1", "Coin", on_floor=True)

    items = await store.list_items(created.code, "p1")
    assert items[0].custody is Custody.HELD


@pytest.mark.asyncio
async def test_delete_item(table, store):
    rope = await store.create_item(table.code, "gm1", "Rope", owner_external_id="p1")
    with pytest.raises(Forbidden):
        await store.delete_item(table.code, "p1", rope.id)

    await store.delete_item(table.code, "gm1", rope.id)
    assert await store.list_items(table.code, "gm1") == []
    with pytest.raises(EntityNotFound):
        await store.delete_item(table.code, "gm1", rope.id)


@pytest.mark.asyncio
async def test_list_items_scoped_to_caller(table, store):
    await store.create_item(table.code, "gm1", "Rope", owner_external_id="p1")
    await store.create_item(table.code, "gm1", "Axe", owner_external_id="p2")
    await store.create_item(table.code, "gm1", "Gem", on_floor=True)

    assert [i.name for i in await store.list_items(table.code, "p1")] == ["Rope"]
    assert [i.name for i in await store.list_items(table.code, "gm1")] == ["Rope", "Axe", "Gem"]
    assert await store.list_items(table.code, "stranger") == []


# --- look around ---


@pytest.mark.asyncio
async def test_look_around_takes_oldest_first(table, store):
    first = await store.create_item(table.code, "gm1", "Lantern", on_floor=True)
    await store.create_item(table.code, "gm1", "Dagger", on_floor=True)

    found = await store.look_around(table.code, "p1")
    assert found.id == first.id
    assert found.owner_id == table.p1.id
    assert found.custody is Custody.HELD

    found = await store.look_around(table.code, "p2")
    assert found.name == "Dagger"

    assert await store.look_around(table.code, "p1") is None


@pytest.mark.asyncio
async def test_look_around_splits_stacks(table, store):
    coins = await store.create_item(table.code, "gm1", "Coin", 3, on_floor=True)

    claimed = [await store.look_around(table.code, pid) for pid in ("p1", "p2", "p1")]
    assert [c.qty for c in claimed] == [1, 1, 1]
    assert all(c.origin_id == coins.id for c in claimed)
    # The last unit moves the original row itself.
    assert claimed[-1].id == coins.id

    assert await store.look_around(table.code, "p2") is None
    assert await _item_totals(store, table.code, coins.id) == 3
    assert sum(i.qty for i in await store.list_items(table.code, "p1")) == 2


@pytest.mark.asyncio
async def test_look_around_leaves_rest_of_placed_stack(table, store):
    arrows = await store.create_item(
        table.code, "gm1", "Arrow", 3, location_id=table.location.id
    )

    found = await store.look_around(table.code, "p1")
    assert found.id != arrows.id
    assert found.qty == 1
    assert found.owner_id == table.p1.id

    gm_view = await store.get_state(table.code, "gm1")
    assert [(i.id, i.qty) for i in gm_view.floor.items] == [(arrows.id, 2)]
    assert gm_view.floor.count == 2


@pytest.mark.asyncio
async def test_overlong_location_ids_rejected(table, store):
    long_id = table.location.id + "x"
    with pytest.raises(InvalidArgument, match="too long"):
        await store.set_active_location(table.code, "gm1", long_id)
    with pytest.raises(InvalidArgument, match="too long"):
        await store.create_item(table.code, "gm1", "Rope", location_id=long_id)

    created = await store.create_session()
    await store.join_session(created.code, "gm1", as_authority=True)
    with pytest.raises(InvalidArgument, match="too long"):
        await store.start_session(created.code, "gm1", "L" * 33)

    assert await store.list_items(table.code, "gm1") == []


@pytest.mark.asyncio
async def test_look_around_rejections(store):
    created = await store.create_session()
    await store.join_session(created.code, "p1")
    # Lobby: nothing to find yet.
    assert await store.look_around(created.code, "p1") is None
    with pytest.raises(EntityNotFound):
        await store.look_around(created.code, "stranger")


@pytest.mark.asyncio
async def test_scenario_drop_then_search(table, store):
    torch = await store.create_item(table.code, "gm1", "Torch", owner_external_id="p1")
    await store.transfer_item(table.code, torch.id, to_floor=True, caller_external_id="p1")

    state = await store.get_state(table.code, "p2")
    assert state.floor.count == 1

    found = await store.look_around(table.code, "p2")
    assert found.id == torch.id
    assert found.owner_id == table.p2.id

    state = await store.get_state(table.code, "p2")
    assert state.floor.count == 0
    assert [i.id for i in state.inventory] == [torch.id]


# --- snapshot ---


@pytest.mark.asyncio
async def test_snapshot_hides_floor_from_players(table, store):
    await store.create_item(table.code, "gm1", "Gem", 2, on_floor=True)
    await store.create_item(table.code, "gm1", "Key", on_floor=True)

    player_view = await store.get_state(table.code, "p1")
    assert player_view.floor.count == 3
    assert player_view.floor.items is None
    assert player_view.is_authority is False

    gm_view = await store.get_state(table.code, "gm1")
    assert gm_view.floor.count == 3
    assert [i.name for i in gm_view.floor.items] == ["Gem", "Key"]

    anonymous = await store.get_state(table.code)
    assert anonymous.you is None
    assert anonymous.inventory == []
    assert len(anonymous.players) == 3


# --- chat and dice ---


@pytest.mark.asyncio
async def test_messages_keep_order(table, store):
    await store.post_message(table.code, "p1", "Hello")
    await store.post_message(table.code, None, "A cold wind blows")
    posted = await store.post_message(table.code, "p2", "  Who's there?  ")
    assert posted.text == "Who's there?"
    assert posted.player_id == table.p2.id

    state = await store.get_state(table.code)
    assert [m.text for m in state.messages] == ["Hello", "A cold wind blows", "Who's there?"]

    with pytest.raises(InvalidArgument):
        await store.post_message(table.code, "p1", "   ")
    with pytest.raises(EntityNotFound):
        await store.post_message(table.code, "stranger", "hi")


@pytest.mark.asyncio
async def test_roll_records_and_narrates(table, store):
    roll = await store.roll_dice(table.code, "p1", 20)
    assert 1 <= roll.result <= 20
    assert roll.player_id == table.p1.id

    state = await store.get_state(table.code)
    assert [r.id for r in state.rolls] == [roll.id]
    assert state.messages[-1].text == f"Aria rolled d20: {roll.result}"
    assert state.messages[-1].player_id is None

    quiet = await store.roll_dice(table.code, None, 6, narrate=False)
    state = await store.get_state(table.code)
    assert state.rolls[-1].id == quiet.id
    assert len(state.messages) == 1


@pytest.mark.asyncio
async def test_roll_rejects_unknown_die(table, store):
    with pytest.raises(InvalidArgument):
        await store.roll_dice(table.code, "p1", 7)
    with pytest.raises(InvalidArgument):
        await store.roll_dice(table.code, "p1", True)

    state = await store.get_state(table.code)
    assert state.rolls == []
