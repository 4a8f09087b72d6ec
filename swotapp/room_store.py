"""Redis-backed shared store for room documents."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Union

import redis.asyncio as aioredis
from redis import exceptions as redis_exceptions

from swotapp.config import GameConstants, get_game_constants
from swotapp.entities import Room
from swotapp.utils.logging_helpers import match_logger
from swotapp.utils.redis_safeops import RedisSafeOps

RoomsCallback = Callable[[List[Room]], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], Awaitable[None]]


def _decode(raw: Union[bytes, str]) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", "ignore")
    return str(raw)


def _parse_version(raw: Any) -> int:
    if raw is None:
        return 0
    try:
        return int(_decode(raw))
    except (TypeError, ValueError):
        return 0


class RoomStore:
    """Persist rooms as JSON documents with a per-room version counter.

    ``load``/``save``/``subscribe`` form the shared state channel. Engine
    writes go through :meth:`save_room_with_version_check`, which only
    commits when the version read by :meth:`load_room_with_version` is still
    current.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        redis_ops: Optional[RedisSafeOps] = None,
        constants: Optional[GameConstants] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._redis = redis
        base_logger = logger or logging.getLogger(__name__)
        self._logger = match_logger(base_logger, component="room_store")
        self._redis_ops = redis_ops or RedisSafeOps(
            redis, logger=base_logger.getChild("redis_safeops")
        )
        redis_constants = (constants or get_game_constants()).redis
        self._rooms_key = str(redis_constants.get("rooms_key", "swot:rooms"))
        self._room_prefix = str(redis_constants.get("room_key_prefix", "swot:room:"))
        self._version_prefix = str(
            redis_constants.get("version_key_prefix", "swot:room_version:")
        )
        self._updates_channel = str(
            redis_constants.get("updates_channel", "swot:rooms:updates")
        )

    # Keys ---------------------------------------------------------------
    def _room_key(self, room_id: str) -> str:
        return f"{self._room_prefix}{room_id}"

    def _version_key(self, room_id: str) -> str:
        return f"{self._version_prefix}{room_id}"

    @property
    def updates_channel(self) -> str:
        return self._updates_channel

    # Decoding -----------------------------------------------------------
    def _decode_room(self, room_id: str, raw: Optional[Union[bytes, str]]) -> Optional[Room]:
        if not raw:
            return None
        try:
            return Room.from_dict(json.loads(_decode(raw)))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            self._logger.warning(
                "Failed to decode persisted room; skipping",
                extra={
                    "room_id": room_id,
                    "event_type": "room_decode_failed",
                    "error_type": type(exc).__name__,
                },
            )
            return None

    @staticmethod
    def _encode_room(room: Room) -> str:
        return json.dumps(room.to_dict(), separators=(",", ":"))

    # Shared state channel ----------------------------------------------
    async def load(self) -> List[Room]:
        """Return every stored room ordered by creation time."""

        members = await self._redis_ops.safe_smembers(self._rooms_key)
        room_ids = sorted(_decode(member) for member in members)
        raw_documents = await self._redis_ops.safe_mget(
            [self._room_key(room_id) for room_id in room_ids]
        )
        rooms: List[Room] = []
        for room_id, raw in zip(room_ids, raw_documents):
            room = self._decode_room(room_id, raw)
            if room is not None:
                rooms.append(room)
        rooms.sort(key=lambda item: (item.created_at, item.id))
        return rooms

    async def save(self, rooms: Iterable[Room]) -> None:
        """Overwrite the given rooms unconditionally and bump their versions."""

        saved: List[str] = []
        async with self._redis.pipeline(transaction=True) as pipe:
            for room in rooms:
                pipe.set(self._room_key(room.id), self._encode_room(room))
                pipe.incr(self._version_key(room.id))
                pipe.sadd(self._rooms_key, room.id)
                saved.append(room.id)
            if not saved:
                return
            await pipe.execute()

        for room_id in saved:
            await self._publish(room_id)
        self._logger.debug(
            "Rooms saved",
            extra={"event_type": "rooms_saved", "room_count": len(saved)},
        )

    async def delete_room(self, room_id: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._room_key(room_id), self._version_key(room_id))
            pipe.srem(self._rooms_key, room_id)
            await pipe.execute()
        await self._publish(room_id)

    async def subscribe(self, callback: RoomsCallback) -> Unsubscribe:
        """Deliver the rooms list now and after every published change.

        Returns a coroutine function that stops the listener and closes the
        underlying pub/sub connection.
        """

        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._updates_channel)
        await self._deliver(callback, await self.load())
        task = asyncio.create_task(self._listen(pubsub, callback))

        async def unsubscribe() -> None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            await pubsub.unsubscribe(self._updates_channel)
            await pubsub.aclose()

        return unsubscribe

    async def _listen(self, pubsub, callback: RoomsCallback) -> None:
        while True:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message is None:
                continue
            try:
                rooms = await self.load()
                await self._deliver(callback, rooms)
            except Exception:
                self._logger.exception(
                    "Failed to deliver rooms to subscriber",
                    extra={"event_type": "room_subscription_reload_failed"},
                )

    async def _deliver(self, callback: RoomsCallback, rooms: List[Room]) -> None:
        outcome = callback(rooms)
        if inspect.isawaitable(outcome):
            await outcome

    async def _publish(self, room_id: str) -> None:
        """Announce a committed change; a failed announcement is only logged."""

        try:
            await self._redis_ops.safe_publish(
                self._updates_channel, room_id, room_id=room_id
            )
        except (redis_exceptions.RedisError, asyncio.TimeoutError) as exc:
            self._logger.warning(
                "Room change committed but not announced",
                extra={
                    "room_id": room_id,
                    "event_type": "room_publish_failed",
                    "error_type": type(exc).__name__,
                },
            )

    # Versioned access ---------------------------------------------------
    async def load_room(self, room_id: str) -> Optional[Room]:
        raw = await self._redis_ops.safe_get(self._room_key(room_id), room_id=room_id)
        return self._decode_room(room_id, raw)

    async def load_room_with_version(self, room_id: str) -> Tuple[Optional[Room], int]:
        """Return the stored room and its optimistic locking version.

        Both keys come from one ``MGET`` so the pair is always a snapshot of
        the same commit.
        """

        raw_room, raw_version = await self._redis_ops.safe_mget(
            [self._room_key(room_id), self._version_key(room_id)], room_id=room_id
        )
        return self._decode_room(room_id, raw_room), _parse_version(raw_version)

    async def save_room_with_version_check(self, room: Room, expected_version: int) -> bool:
        """Persist ``room`` if its stored version still equals ``expected_version``."""

        room_key = self._room_key(room.id)
        version_key = self._version_key(room.id)
        data = self._encode_room(room)

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(version_key)
                current_version = _parse_version(await pipe.get(version_key))

                if current_version != expected_version:
                    await pipe.unwatch()
                    self._logger.warning(
                        "Version conflict detected during save",
                        extra={
                            "room_id": room.id,
                            "event_type": "room_version_conflict",
                            "expected_version": expected_version,
                            "current_version": current_version,
                        },
                    )
                    return False

                new_version = current_version + 1
                pipe.multi()
                pipe.set(room_key, data)
                pipe.set(version_key, new_version)
                pipe.sadd(self._rooms_key, room.id)
                await pipe.execute()
        except redis_exceptions.WatchError:
            self._logger.warning(
                "Concurrent modification detected (WatchError)",
                extra={
                    "room_id": room.id,
                    "event_type": "room_version_conflict",
                    "expected_version": expected_version,
                },
            )
            return False
        except redis_exceptions.RedisError as exc:
            self._logger.error(
                "Redis error during save_room_with_version_check",
                extra={
                    "room_id": room.id,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                },
                exc_info=True,
            )
            raise

        await self._publish(room.id)
        self._logger.debug(
            "Room saved with version check",
            extra={
                "room_id": room.id,
                "event_type": "room_saved",
                "old_version": expected_version,
                "new_version": new_version,
            },
        )
        return True
