import random

import pytest
from conftest import make_room

from swotapp.entities import RoomStatus, RoundStatus, TeamSlot
from swotapp.room_service import RoomService, leaderboard


@pytest.fixture
def room_service(engine):
    return RoomService(engine, rng=random.Random(7))


@pytest.mark.asyncio
async def test_create_room_persists_numbered_teams(room_service, engine):
    room = await room_service.create_room("  Strategy Lab ", 4)

    assert room.id.startswith("r_")
    assert room.name == "Strategy Lab"
    assert room.status is RoomStatus.PREPARING
    assert [team.name for team in room.teams] == ["Team 1", "Team 2", "Team 3", "Team 4"]
    assert all(team.id.startswith("t_") for team in room.teams)
    assert all(not team.is_ready and team.members == [] for team in room.teams)
    assert await engine.get_room(room.id) == room


@pytest.mark.asyncio
async def test_create_room_rejects_bad_input(room_service):
    with pytest.raises(ValueError):
        await room_service.create_room("   ", 2)
    with pytest.raises(ValueError):
        await room_service.create_room("Lab", 1)


@pytest.mark.asyncio
async def test_join_team_adds_member_once(room_service, engine):
    room = await room_service.create_room("Lab", 2)
    team_id = room.teams[0].id

    joined = await room_service.join_team(room.id, team_id, " Ana ")
    repeated = await room_service.join_team(room.id, team_id, "Ana")
    blank = await room_service.join_team(room.id, team_id, "  ")

    assert joined.changed
    assert repeated.no_op
    assert not blank.success
    stored = await engine.get_room(room.id)
    assert stored.find_team(team_id).members == ["Ana"]


@pytest.mark.asyncio
async def test_auto_match_pairs_teams_and_leaves_odd_team_out(room_service, engine):
    room = await room_service.create_room("Lab", 5)

    outcome = await room_service.auto_match(room.id)

    assert outcome.changed
    stored = await engine.get_room(room.id)
    assert len(stored.matches) == 2
    paired = [
        team_id
        for match in stored.matches
        for team_id in (match.team_a_id, match.team_b_id)
    ]
    assert len(set(paired)) == 4
    assert set(paired) <= {team.id for team in stored.teams}
    for match in stored.matches:
        assert match.id.startswith("m_")
        assert match.current_round == 1
        assert match.round_status is RoundStatus.READY
        assert match.pot == match.carry_over == 0
        assert match.history == []


@pytest.mark.asyncio
async def test_assign_team_moves_team_between_slots(room_service, engine):
    room = await room_service.create_room("Lab", 3)
    first, second, third = (team.id for team in room.teams)

    await room_service.assign_team(room.id, 0, first, TeamSlot.A)
    await room_service.assign_team(room.id, 0, second, TeamSlot.B)
    moved = await room_service.assign_team(room.id, 1, first, TeamSlot.B)

    assert moved.changed
    stored = await engine.get_room(room.id)
    assert len(stored.matches) == 2
    assert (stored.matches[0].team_a_id, stored.matches[0].team_b_id) == ("", second)
    assert (stored.matches[1].team_a_id, stored.matches[1].team_b_id) == ("", first)

    unknown = await room_service.assign_team(room.id, 0, "t_unknown", TeamSlot.A)
    assert not unknown.success

    await room_service.assign_team(room.id, 1, "", TeamSlot.B)
    stored = await engine.get_room(room.id)
    assert stored.matches[1].team_b_id == ""
    assert third not in {stored.matches[0].team_a_id, stored.matches[0].team_b_id}


@pytest.mark.asyncio
async def test_matches_are_fixed_once_playing(room_service, room_store):
    await room_store.save([make_room()])

    assert (await room_service.auto_match("r_test")).no_op
    assert (await room_service.assign_team("r_test", 0, "t_a", TeamSlot.B)).no_op


@pytest.mark.asyncio
async def test_delete_room(room_service, engine):
    room = await room_service.create_room("Lab", 2)

    await room_service.delete_room(room.id)

    assert await engine.get_room(room.id) is None
    assert await engine.list_rooms() == []
    assert room.id not in engine._room_locks


@pytest.mark.asyncio
async def test_leaderboard_orders_by_winnings_then_name(room_service, room_store):
    room = make_room(a_winnings=4, b_winnings=9)
    room.teams[0].name = "Zulu"
    await room_store.save([room])

    standings = await room_service.leaderboard(room.id)

    assert [entry.team_id for entry in standings] == ["t_b", "t_a"]
    assert [entry.rank for entry in standings] == [1, 2]

    room.teams[0].winnings = 9
    room.teams[1].name = "Alpha"
    tied = leaderboard(room)
    assert [entry.name for entry in tied] == ["Alpha", "Zulu"]
    assert await room_service.leaderboard("r_missing") == []
