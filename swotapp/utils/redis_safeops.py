"""Redis commands with bounded retries for the room store."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, List, Optional, Sequence, Union

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError, ResponseError, TimeoutError

from swotapp.utils.logging_helpers import match_logger

MetricsRecorder = Callable[[str, float, str], None]

_TRANSIENT = (ConnectionError, TimeoutError, asyncio.TimeoutError)


def backoff_delays(retries: int, base: float, factor: float) -> List[float]:
    """Sleep before each retry: ``base``, ``base * factor``, ..."""

    return [base * factor**step for step in range(max(retries, 0))]


def _key_of(args: Sequence[Any]) -> Any:
    if not args:
        return None
    first = args[0]
    if isinstance(first, (list, tuple)):
        return "%s (+%d)" % (first[0], len(first) - 1) if first else None
    return first


class RedisSafeOps:
    """Run redis commands for the room store, retrying transient failures.

    Dropped connections and timeouts are retried on the backoff schedule and
    re-raised when it runs out. A ``ResponseError`` means the command itself
    is wrong and is raised at once.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        *,
        logger: Optional[logging.Logger] = None,
        max_retries: int = 3,
        base_backoff: float = 0.2,
        backoff_factor: float = 2.0,
        timeout_seconds: float = 5.0,
        metrics_recorder: Optional[MetricsRecorder] = None,
    ) -> None:
        self._redis = redis_client
        self._logger = match_logger(
            logger or logging.getLogger(__name__), component="redis"
        )
        self._delays = backoff_delays(max_retries, base_backoff, backoff_factor)
        self._timeout_seconds = timeout_seconds
        self._metrics_recorder = metrics_recorder

    async def call(
        self, command: str, *args: Any, room_id: Optional[str] = None
    ) -> Any:
        started = time.monotonic()
        attempts = len(self._delays) + 1
        for attempt, delay in enumerate([*self._delays, None], start=1):
            try:
                result = await asyncio.wait_for(
                    getattr(self._redis, command)(*args), timeout=self._timeout_seconds
                )
            except _TRANSIENT as exc:
                self._log_failure(command, args, exc, room_id, attempt, attempts)
                if delay is None:
                    self._observe(command, started, "failure")
                    raise
                await asyncio.sleep(delay)
            except ResponseError as exc:
                self._log_failure(command, args, exc, room_id, attempt, attempts)
                self._observe(command, started, "failure")
                raise
            else:
                self._observe(command, started, "success")
                return result

    async def safe_get(
        self, key: str, *, room_id: Optional[str] = None
    ) -> Optional[Union[bytes, str]]:
        return await self.call("get", key, room_id=room_id)

    async def safe_mget(
        self, keys: Sequence[str], *, room_id: Optional[str] = None
    ) -> List[Optional[Union[bytes, str]]]:
        if not keys:
            return []
        return list(await self.call("mget", list(keys), room_id=room_id) or [])

    async def safe_smembers(self, key: str) -> Sequence[Any]:
        return await self.call("smembers", key) or []

    async def safe_publish(
        self, channel: str, message: str, *, room_id: Optional[str] = None
    ) -> int:
        return int(await self.call("publish", channel, message, room_id=room_id) or 0)

    def _log_failure(
        self,
        command: str,
        args: Sequence[Any],
        exc: BaseException,
        room_id: Optional[str],
        attempt: int,
        attempts: int,
    ) -> None:
        fatal = isinstance(exc, ResponseError)
        self._logger.log(
            logging.ERROR if fatal else logging.WARNING,
            "Redis %s failed" % command,
            extra={
                "room_id": room_id,
                "event_type": "redis_command_failed",
                "command": command,
                "redis_key": _key_of(args),
                "attempt": attempt,
                "max_attempts": attempts,
                "retrying": not fatal and attempt < attempts,
                "error_type": type(exc).__name__,
            },
        )

    def _observe(self, command: str, started: float, status: str) -> None:
        if self._metrics_recorder is not None:
            self._metrics_recorder(command, time.monotonic() - started, status)


__all__ = ["RedisSafeOps", "backoff_delays"]
