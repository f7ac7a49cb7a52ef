from datetime import timedelta
from unittest.mock import MagicMock

from core.cache import IdempotencyCache
from tests.support import InMemoryRedis


def test_claim_uses_set_nx_with_expiry() -> None:
    client = MagicMock()
    client.set.return_value = True
    cache = IdempotencyCache(client, ttl_seconds=60)

    assert cache.claim("webhook:evt_1") is True
    client.set.assert_called_once_with(
        "webhook:evt_1", "1", nx=True, ex=timedelta(seconds=60)
    )

    client.set.return_value = None
    assert cache.claim("webhook:evt_1") is False


def test_claim_is_one_shot_until_released() -> None:
    cache = IdempotencyCache(InMemoryRedis())

    assert cache.claim("k") is True
    assert cache.claim("k") is False
    cache.release("k")
    assert cache.claim("k") is True


def test_json_round_trip_and_missing_key() -> None:
    cache = IdempotencyCache(InMemoryRedis())

    assert cache.get_json("missing") is None
    cache.set_json("result", {"success": True, "orderId": "order_1"})
    assert cache.get_json("result") == {"success": True, "orderId": "order_1"}


def test_unreadable_entry_is_dropped() -> None:
    redis_client = InMemoryRedis()
    redis_client.set("result", "{not json")
    cache = IdempotencyCache(redis_client)

    assert cache.get_json("result") is None
    assert redis_client.get("result") is None
