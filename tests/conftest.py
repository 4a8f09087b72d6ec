"""Pytest configuration shared across the test suite."""

import sys
from pathlib import Path
from typing import List, Optional, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import fakeredis
import fakeredis.aioredis
import pytest

from swotapp.config import Config
from swotapp.entities import (
    Match,
    Room,
    RoomStatus,
    RoundStatus,
    RoundStrategy,
    Team,
)
from swotapp.match_engine import MatchEngine
from swotapp.room_store import RoomStore
from swotapp.utils.redis_safeops import RedisSafeOps


DEFAULT_CARDS = [0, 1, 2, 3, 4, 5, 6, 7, 8, 9]
EVEN_CHIPS = [3] * 10


def make_strategy(
    cards: Optional[Sequence[int]] = None,
    chips: Optional[Sequence[int]] = None,
) -> List[RoundStrategy]:
    cards = list(cards if cards is not None else DEFAULT_CARDS)
    chips = list(chips if chips is not None else EVEN_CHIPS)
    return [
        RoundStrategy(round=index + 1, card=card, chips=amount)
        for index, (card, amount) in enumerate(zip(cards, chips))
    ]


def make_room(
    *,
    a_cards: Optional[Sequence[int]] = None,
    a_chips: Optional[Sequence[int]] = None,
    b_cards: Optional[Sequence[int]] = None,
    b_chips: Optional[Sequence[int]] = None,
    a_winnings: int = 0,
    b_winnings: int = 0,
    current_round: int = 1,
    carry_over: int = 0,
    status: RoomStatus = RoomStatus.PLAYING,
    ready: bool = True,
) -> Room:
    """A room with one scheduled match between ``t_a`` (slot A) and ``t_b``."""

    team_a = Team(
        id="t_a",
        name="Alpha",
        room_id="r_test",
        is_ready=ready,
        winnings=a_winnings,
        members=["Ana"],
        strategy=make_strategy(a_cards, a_chips) if ready else [],
    )
    team_b = Team(
        id="t_b",
        name="Bravo",
        room_id="r_test",
        is_ready=ready,
        winnings=b_winnings,
        members=["Ben"],
        strategy=make_strategy(b_cards, b_chips) if ready else [],
    )
    match = Match(
        id="m_1",
        team_a_id=team_a.id,
        team_b_id=team_b.id,
        current_round=current_round,
        round_status=RoundStatus.READY,
        carry_over=carry_over,
    )
    return Room(
        id="r_test",
        name="Workshop",
        total_teams=2,
        status=status,
        teams=[team_a, team_b],
        matches=[match],
        created_at=1,
    )


@pytest.fixture
def redis_client():
    server = fakeredis.FakeServer()
    return fakeredis.aioredis.FakeRedis(server=server)


@pytest.fixture
def engine_config():
    cfg = Config()
    cfg.RETRY_BACKOFF_SECONDS = 0.0
    cfg.READY_EVALUATION_DELAY = 0.0
    cfg.AUTO_EVALUATE_READY = True
    return cfg


@pytest.fixture
def room_store(redis_client):
    return RoomStore(
        redis_client,
        redis_ops=RedisSafeOps(redis_client, max_retries=0, timeout_seconds=1.0),
    )


@pytest.fixture
def engine(room_store, engine_config):
    return MatchEngine(room_store, config=engine_config)
