import asyncio

import pytest
from conftest import make_room
from redis.exceptions import ConnectionError

from swotapp.entities import Room, RoundStatus


@pytest.mark.asyncio
async def test_save_and_load_round_trip_with_version(room_store):
    room = make_room()
    room.matches[0].round_status = RoundStatus.DECISION
    room.matches[0].turn_owner = "t_a"

    await room_store.save([room])
    loaded, version = await room_store.load_room_with_version(room.id)

    assert version == 1
    assert loaded == room


@pytest.mark.asyncio
async def test_load_orders_rooms_by_creation(room_store):
    late = Room(id="r_late", name="Late", created_at=20)
    early = Room(id="r_early", name="Early", created_at=10)

    await room_store.save([late, early])
    rooms = await room_store.load()

    assert [room.id for room in rooms] == ["r_early", "r_late"]


@pytest.mark.asyncio
async def test_load_skips_undecodable_documents(room_store, redis_client):
    await room_store.save([make_room()])
    await redis_client.set(room_store._room_key("r_broken"), b"{not json")
    await redis_client.sadd(room_store._rooms_key, "r_broken")

    rooms = await room_store.load()

    assert [room.id for room in rooms] == ["r_test"]


@pytest.mark.asyncio
async def test_version_check_rejects_stale_writer(room_store):
    room = make_room()
    await room_store.save([room])
    _, version = await room_store.load_room_with_version(room.id)

    room.teams[0].winnings = 5
    assert await room_store.save_room_with_version_check(room, version) is True

    room.teams[0].winnings = 99
    assert await room_store.save_room_with_version_check(room, version) is False

    stored, current = await room_store.load_room_with_version(room.id)
    assert current == version + 1
    assert stored.teams[0].winnings == 5


@pytest.mark.asyncio
async def test_version_check_creates_missing_room(room_store):
    room = make_room()

    assert await room_store.save_room_with_version_check(room, 0) is True

    rooms = await room_store.load()
    assert [stored.id for stored in rooms] == [room.id]


@pytest.mark.asyncio
async def test_delete_room_removes_document_and_index(room_store):
    room = make_room()
    await room_store.save([room])

    await room_store.delete_room(room.id)

    assert await room_store.load() == []
    assert await room_store.load_room_with_version(room.id) == (None, 0)


@pytest.mark.asyncio
async def test_room_and_version_are_read_in_one_command(room_store, monkeypatch):
    room = make_room()
    await room_store.save([room])
    commands = []
    original = room_store._redis_ops.call

    async def recording_call(command, *args, **kwargs):
        commands.append(command)
        return await original(command, *args, **kwargs)

    monkeypatch.setattr(room_store._redis_ops, "call", recording_call)

    loaded, version = await room_store.load_room_with_version(room.id)

    assert commands == ["mget"]
    assert loaded.id == room.id
    assert version == 1


@pytest.mark.asyncio
async def test_committed_writes_survive_an_unreachable_updates_channel(
    room_store, monkeypatch
):
    room = make_room()
    await room_store.save([room])
    _, version = await room_store.load_room_with_version(room.id)

    async def offline_publish(*args, **kwargs):
        raise ConnectionError("pubsub offline")

    monkeypatch.setattr(room_store._redis_ops, "safe_publish", offline_publish)

    room.teams[0].winnings = 4
    assert await room_store.save_room_with_version_check(room, version) is True
    await room_store.save([room])
    stored, current = await room_store.load_room_with_version(room.id)
    assert stored.teams[0].winnings == 4
    assert current == version + 2

    await room_store.delete_room(room.id)
    assert await room_store.load() == []


@pytest.mark.asyncio
async def test_subscribe_delivers_current_and_updated_rooms(room_store):
    received: asyncio.Queue = asyncio.Queue()

    unsubscribe = await room_store.subscribe(received.put_nowait)
    try:
        initial = await asyncio.wait_for(received.get(), timeout=2)
        assert initial == []

        await room_store.save([make_room()])
        updated = await asyncio.wait_for(received.get(), timeout=5)
        assert [room.id for room in updated] == ["r_test"]
    finally:
        await unsubscribe()


@pytest.mark.asyncio
async def test_subscribe_accepts_coroutine_callbacks(room_store):
    seen = []
    delivered = asyncio.Event()

    async def _callback(rooms):
        seen.append([room.id for room in rooms])
        delivered.set()

    await room_store.save([make_room()])
    unsubscribe = await room_store.subscribe(_callback)
    await asyncio.wait_for(delivered.wait(), timeout=2)
    await unsubscribe()

    assert seen == [["r_test"]]
