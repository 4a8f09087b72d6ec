"""Application composition root for the strategy match engine."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis.asyncio as aioredis

from swotapp.advisor_service import AdvisorService, HttpAdvisorClient
from swotapp.config import Config
from swotapp.logging_config import setup_logging
from swotapp.match_engine import MatchEngine
from swotapp.metrics import record_redis_operation
from swotapp.room_service import RoomService
from swotapp.room_store import RoomStore
from swotapp.state_machine import MatchStateMachine
from swotapp.strategy_validator import StrategyValidator
from swotapp.utils.logging_helpers import MatchLogAdapter, match_logger
from swotapp.utils.redis_safeops import RedisSafeOps


def _build_redis_client_kwargs(cfg: Config) -> Dict[str, Any]:
    """Return connection settings for the Redis client."""

    return {
        "host": cfg.REDIS_HOST,
        "port": cfg.REDIS_PORT,
        "db": cfg.REDIS_DB,
        "password": cfg.REDIS_PASS or None,
        "socket_connect_timeout": 5,
        "socket_timeout": 5,
        "retry_on_timeout": True,
        "health_check_interval": 30,
    }


def _create_redis_client(client_kwargs: Dict[str, Any]) -> aioredis.Redis:
    return aioredis.Redis(**dict(client_kwargs))


def _make_service_logger(
    parent_logger: MatchLogAdapter, child_name: str, component: str
) -> MatchLogAdapter:
    return match_logger(parent_logger.getChild(child_name), component=component)


@dataclass(frozen=True)
class ApplicationServices:
    """Container for the engine and the infrastructure it runs on."""

    logger: MatchLogAdapter
    kv_async: aioredis.Redis
    redis_ops: RedisSafeOps
    room_store: RoomStore
    engine: MatchEngine
    room_service: RoomService
    advisor_client: Optional[HttpAdvisorClient]
    advisor_service: Optional[AdvisorService]

    async def aclose(self) -> None:
        if self.advisor_client is not None:
            await self.advisor_client.close()
        await self.kv_async.aclose()


def build_services(
    cfg: Config,
    *,
    redis_client: Optional[aioredis.Redis] = None,
    rng: Optional[random.Random] = None,
    configure_logging: bool = True,
) -> ApplicationServices:
    """Wire the store, engine and services for ``cfg``.

    ``redis_client`` replaces the configured connection, which is how the
    test-suite plugs in fakeredis.
    """

    if configure_logging:
        setup_logging(debug=cfg.DEBUG)
    logger = match_logger(logging.getLogger("swotapp"))

    if redis_client is None:
        kv_async = _create_redis_client(_build_redis_client_kwargs(cfg))
        logger.info(
            "Redis client initialized with lazy connection",
            extra={
                "event_type": "redis_client_created",
                "host": cfg.REDIS_HOST,
                "port": cfg.REDIS_PORT,
            },
        )
    else:
        kv_async = redis_client

    redis_ops = RedisSafeOps(
        kv_async,
        logger=_make_service_logger(logger, "redis_safeops", "redis"),
        metrics_recorder=record_redis_operation,
    )
    room_store = RoomStore(
        kv_async,
        redis_ops=redis_ops,
        constants=cfg.constants,
        logger=_make_service_logger(logger, "room_store", "room_store"),
    )

    game = cfg.constants.game
    validator = StrategyValidator(
        total_rounds=int(game.get("total_rounds", 10)),
        total_chips=int(game.get("total_chips", 30)),
        cards=cfg.cards,
        min_round_chips=int(game.get("min_round_chips", 1)),
    )
    engine = MatchEngine(
        room_store,
        config=cfg,
        validator=validator,
        state_machine=MatchStateMachine(total_rounds=int(game.get("total_rounds", 10))),
        logger=_make_service_logger(logger, "engine", "match_engine"),
    )
    room_service = RoomService(
        engine, rng=rng, logger=_make_service_logger(logger, "room_service", "room_service")
    )

    advisor_client: Optional[HttpAdvisorClient] = None
    advisor_service: Optional[AdvisorService] = None
    if cfg.ADVISOR_URL:
        advisor_client = HttpAdvisorClient(
            cfg.ADVISOR_URL,
            api_key=cfg.ADVISOR_API_KEY,
            timeout_seconds=cfg.ADVISOR_TIMEOUT,
        )
        advisor_service = AdvisorService(
            engine,
            advisor_client,
            max_helps=int(game.get("max_ai_helps", 3)),
            logger=_make_service_logger(logger, "advisor", "advisor"),
        )
    else:
        logger.info(
            "Advisor URL not configured; AI help is disabled",
            extra={"event_type": "advisor_disabled"},
        )

    return ApplicationServices(
        logger=logger,
        kv_async=kv_async,
        redis_ops=redis_ops,
        room_store=room_store,
        engine=engine,
        room_service=room_service,
        advisor_client=advisor_client,
        advisor_service=advisor_service,
    )
