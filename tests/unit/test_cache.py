"""Unit tests for the Redis-backed cache"""

import json
import pytest
import redis
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch
from redis.exceptions import ConnectionError as RedisConnectionError
from defi_ledger.infrastructure.cache import NullCache, RedisCache, build_cache


@pytest.fixture
def client() -> MagicMock:
    return MagicMock(spec=redis.Redis)


@pytest.fixture
def failing_client() -> MagicMock:
    client = MagicMock(spec=redis.Redis)
    error = RedisConnectionError("connection refused")
    client.get.side_effect = error
    client.set.side_effect = error
    client.delete.side_effect = error
    client.scan_iter.side_effect = error
    return client


def test_set_stores_prefixed_json_with_ttl(client):
    cache = RedisCache(client)

    cache.set("credit:score:7", {"score": 620}, ttl=300)

    client.set.assert_called_once_with("defi-ledger:credit:score:7", '{"score": 620}', ex=300)


def test_set_serializes_decimals_and_datetimes_as_strings(client):
    cache = RedisCache(client)
    when = datetime(2024, 1, 1, tzinfo=timezone.utc)

    cache.set("k", {"balance": Decimal("1.50"), "at": when})

    stored = json.loads(client.set.call_args.args[1])
    assert stored == {"balance": "1.50", "at": str(when)}


def test_get_decodes_json(client):
    client.get.return_value = '{"score": 620, "last_updated": null}'
    cache = RedisCache(client)

    assert cache.get("credit:score:7") == {"score": 620, "last_updated": None}
    client.get.assert_called_once_with("defi-ledger:credit:score:7")


def test_get_miss_returns_none(client):
    client.get.return_value = None

    assert RedisCache(client).get("missing") is None


def test_empty_prefix_uses_bare_keys(client):
    RedisCache(client, prefix="").invalidate("webhooks:status")

    client.delete.assert_called_once_with("webhooks:status")


def test_invalidate_pattern_deletes_scanned_keys(client):
    client.scan_iter.return_value = iter(["defi-ledger:credit:score:1", "defi-ledger:credit:score:2"])
    cache = RedisCache(client)

    cache.invalidate_pattern("credit:score:*")

    client.scan_iter.assert_called_once_with(match="defi-ledger:credit:score:*")
    client.delete.assert_called_once_with("defi-ledger:credit:score:1", "defi-ledger:credit:score:2")


def test_invalidate_pattern_without_matches_deletes_nothing(client):
    client.scan_iter.return_value = iter([])

    RedisCache(client).invalidate_pattern("credit:score:*")

    client.delete.assert_not_called()


def test_redis_errors_degrade_to_miss(failing_client):
    """An unreachable Redis never fails the caller"""
    cache = RedisCache(failing_client)

    assert cache.get("credit:score:7") is None
    cache.set("credit:score:7", {"score": 620}, ttl=300)
    cache.invalidate("credit:score:7")
    cache.invalidate_pattern("credit:score:*")

    failing_client.get.assert_called_once()
    failing_client.set.assert_called_once()


def test_build_cache_without_url_is_null():
    assert isinstance(build_cache(None), NullCache)
    assert isinstance(build_cache(""), NullCache)


def test_build_cache_with_url_connects_lazily():
    with patch.object(redis.Redis, "from_url") as from_url:
        cache = build_cache("redis://localhost:6379/0")

    assert isinstance(cache, RedisCache)
    assert cache.client is from_url.return_value
    from_url.assert_called_once_with(
        "redis://localhost:6379/0", decode_responses=True, socket_timeout=5.0, socket_connect_timeout=5.0
    )
