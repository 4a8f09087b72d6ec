#!/usr/bin/env python3

import asyncio
import signal
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from swotapp.bootstrap import ApplicationServices, build_services
from swotapp.config import Config
from swotapp.entities import Room


def _startup_log_extra(
    *,
    stage: str,
    additional: Optional[Mapping[str, object]] = None,
) -> dict:
    """Return a structured ``extra`` payload for startup logs."""

    extra = {
        "component": "startup",
        "stage": stage,
        "room_id": None,
        "match_id": None,
    }
    if additional:
        extra.update(dict(additional))
    return extra


def _log_rooms(services: ApplicationServices, rooms: List[Room]) -> None:
    logger = services.logger.getChild("observer")
    for room in rooms:
        for match in room.matches:
            logger.info(
                "Match progress",
                extra={
                    "event_type": "match_progress",
                    "room_id": room.id,
                    "match_id": match.id,
                    "round": match.current_round,
                    "round_status": match.round_status,
                    "room_status": room.status.value,
                    "team_a_score": match.team_a_score,
                    "team_b_score": match.team_b_score,
                    "carry_over": match.carry_over,
                },
            )


async def _observe(services: ApplicationServices) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:  # pragma: no cover - platforms without signals
            pass

    unsubscribe = await services.room_store.subscribe(
        lambda rooms: _log_rooms(services, rooms)
    )
    services.logger.info(
        "Observing room updates",
        extra=_startup_log_extra(
            stage="running",
            additional={"channel": services.room_store.updates_channel},
        ),
    )
    try:
        await stop_event.wait()
    finally:
        await unsubscribe()
        await services.aclose()


def main() -> None:
    load_dotenv()
    cfg: Config = Config()
    services = build_services(cfg)
    logger = services.logger.getChild(__name__)

    logger.info(
        "Starting room observer",
        extra=_startup_log_extra(
            stage="startup",
            additional={
                "redis_host": cfg.REDIS_HOST,
                "redis_port": cfg.REDIS_PORT,
                "debug_mode": cfg.DEBUG,
                "advisor_enabled": bool(cfg.ADVISOR_URL),
            },
        ),
    )
    asyncio.run(_observe(services))


if __name__ == "__main__":
    main()
