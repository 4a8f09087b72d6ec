import random

import pytest
from conftest import make_strategy

from swotapp.bootstrap import build_services
from swotapp.config import Config
from swotapp.entities import RoomStatus, RoundStatus, TeamSlot


@pytest.fixture
def services(redis_client, monkeypatch):
    monkeypatch.delenv("SWOTBOT_ADVISOR_URL", raising=False)
    cfg = Config()
    cfg.RETRY_BACKOFF_SECONDS = 0.0
    return build_services(
        cfg,
        redis_client=redis_client,
        rng=random.Random(3),
        configure_logging=False,
    )


def test_advisor_is_optional(services, redis_client, monkeypatch):
    assert services.advisor_client is None
    assert services.advisor_service is None
    assert services.kv_async is redis_client

    monkeypatch.setenv("SWOTBOT_ADVISOR_URL", "http://advisor.local")
    with_advisor = build_services(
        Config(), redis_client=redis_client, configure_logging=False
    )
    assert with_advisor.advisor_client is not None
    assert with_advisor.advisor_service is not None


@pytest.mark.asyncio
async def test_room_plays_from_creation_to_first_result(services):
    rooms = services.room_service
    engine = services.engine

    room = await rooms.create_room("Lab", 2)
    first, second = (team.id for team in room.teams)
    await rooms.assign_team(room.id, 0, first, TeamSlot.A)
    await rooms.assign_team(room.id, 0, second, TeamSlot.B)
    await rooms.join_team(room.id, first, "Ana")
    await engine.submit_strategy(
        room.id, first, make_strategy(cards=[9, 1, 2, 3, 4, 5, 6, 7, 8, 0])
    )
    await engine.submit_strategy(room.id, second, make_strategy())

    started = await engine.start_room(room.id)
    assert started.changed
    stored = await engine.get_room(room.id)
    assert stored.status is RoomStatus.PLAYING
    assert stored.matches[0].round_status is RoundStatus.SHOWDOWN

    resolved = await engine.showdown(room.id, second)
    assert resolved.round_result.pot_won == 6
    assert resolved.room.find_team(first).winnings == 6

    standings = await rooms.leaderboard(room.id)
    assert standings[0].team_id == first
    assert standings[0].members == ["Ana"]
