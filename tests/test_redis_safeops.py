import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError, ResponseError

from swotapp.utils.redis_safeops import RedisSafeOps, _key_of, backoff_delays


class _DummyRedis(SimpleNamespace):
    pass


@pytest.mark.asyncio
async def test_call_success_records_metrics():
    redis = _DummyRedis()
    redis.get = AsyncMock(return_value=b"value")
    recorded = []
    safeops = RedisSafeOps(
        redis,
        max_retries=0,
        timeout_seconds=0.1,
        metrics_recorder=lambda method, elapsed, status: recorded.append((method, status)),
    )

    result = await safeops.safe_get("key", room_id="r_1")

    assert result == b"value"
    assert redis.get.await_count == 1
    assert recorded == [("get", "success")]


@pytest.mark.asyncio
async def test_connection_error_retries(monkeypatch):
    redis = _DummyRedis()
    redis.get = AsyncMock(side_effect=[ConnectionError("fail"), b"ok"])
    sleep_calls = []

    async def fake_sleep(delay):
        sleep_calls.append(delay)

    monkeypatch.setattr("swotapp.utils.redis_safeops.asyncio.sleep", fake_sleep)
    safeops = RedisSafeOps(redis, max_retries=1, base_backoff=0.01, timeout_seconds=0.1)

    result = await safeops.safe_get("key")

    assert result == b"ok"
    assert redis.get.await_count == 2
    assert sleep_calls == [0.01]


@pytest.mark.asyncio
async def test_retries_exhausted_raise_last_error(monkeypatch):
    redis = _DummyRedis()
    redis.publish = AsyncMock(side_effect=ConnectionError("down"))
    sleep_calls = []

    async def fake_sleep(delay):
        sleep_calls.append(delay)

    monkeypatch.setattr("swotapp.utils.redis_safeops.asyncio.sleep", fake_sleep)
    recorded = []
    safeops = RedisSafeOps(
        redis,
        max_retries=2,
        base_backoff=0.1,
        timeout_seconds=0.1,
        metrics_recorder=lambda method, elapsed, status: recorded.append(status),
    )

    with pytest.raises(ConnectionError):
        await safeops.safe_publish("channel", "r_1")

    assert redis.publish.await_count == 3
    assert sleep_calls == pytest.approx([0.1, 0.2])
    assert recorded == ["failure"]


@pytest.mark.asyncio
async def test_response_error_no_retry():
    redis = _DummyRedis()
    redis.get = AsyncMock(side_effect=ResponseError("bad"))
    safeops = RedisSafeOps(redis, max_retries=3, timeout_seconds=0.1)

    with pytest.raises(ResponseError):
        await safeops.safe_get("key")

    assert redis.get.await_count == 1


@pytest.mark.asyncio
async def test_async_timeout_retries(monkeypatch):
    redis = _DummyRedis()
    redis.smembers = AsyncMock(side_effect=[asyncio.TimeoutError(), {b"r_1"}])
    sleep_calls = []

    async def fake_sleep(delay):
        sleep_calls.append(delay)

    monkeypatch.setattr("swotapp.utils.redis_safeops.asyncio.sleep", fake_sleep)
    safeops = RedisSafeOps(redis, max_retries=1, base_backoff=0.05, timeout_seconds=0.1)

    result = await safeops.safe_smembers("rooms")

    assert result == {b"r_1"}
    assert sleep_calls == [0.05]


@pytest.mark.asyncio
async def test_mget_skips_empty_key_list():
    redis = _DummyRedis()
    redis.mget = AsyncMock(return_value=[b"a", None])
    safeops = RedisSafeOps(redis, max_retries=0, timeout_seconds=0.1)

    assert await safeops.safe_mget([]) == []
    assert await safeops.safe_mget(["k1", "k2"]) == [b"a", None]
    redis.mget.assert_awaited_once_with(["k1", "k2"])


def test_backoff_schedule_grows_geometrically():
    assert backoff_delays(3, 0.2, 2.0) == pytest.approx([0.2, 0.4, 0.8])
    assert backoff_delays(0, 0.2, 2.0) == []


def test_logged_key_summarises_multi_key_commands():
    assert _key_of(("swot:room:r_1",)) == "swot:room:r_1"
    assert _key_of((["swot:room:r_1", "swot:room_version:r_1"],)) == "swot:room:r_1 (+1)"
    assert _key_of(()) is None
