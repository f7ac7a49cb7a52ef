import json
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import redis
from redis import Redis

logger = logging.getLogger(__name__)


def get_redis_client(redis_url: str) -> "Redis[str]":
    # decode_responses=True 讓拿出來的資料直接是字串，不用 decode bytes
    client = redis.from_url(redis_url, decode_responses=True)
    # Ping 一下確保連線成功，連不上就讓啟動失敗
    if not client.ping():
        raise redis.ConnectionError("Ping failed")
    return client


class IdempotencyCache:
    """
    Thin wrapper over Redis for one-shot claims and cached responses.

    A claim is a ``SET NX`` with expiry: the first caller gets True, every
    later caller gets False until the key expires or is released.
    """

    def __init__(self, client: Any, ttl_seconds: int = 24 * 60 * 60) -> None:
        self.client = client
        self.ttl = timedelta(seconds=ttl_seconds)

    def claim(self, key: str, ttl: Optional[timedelta] = None) -> bool:
        return bool(self.client.set(key, "1", nx=True, ex=ttl or self.ttl))

    def release(self, key: str) -> None:
        self.client.delete(key)

    def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"⚠️ [Cache] Dropping unreadable entry {key}")
            self.client.delete(key)
            return None

    def set_json(self, key: str, value: Dict[str, Any]) -> None:
        self.client.set(key, json.dumps(value, default=str), ex=self.ttl)
