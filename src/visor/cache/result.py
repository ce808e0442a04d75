"""Module implementing the remote, TTL-based result cache."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Final, Protocol

import redis

# Time-to-live for each operation class
RESULT_TTL_FILTERS: Final[timedelta] = timedelta(hours=24)
RESULT_TTL_METADATA: Final[timedelta] = timedelta(hours=24)
RESULT_TTL_DATA: Final[timedelta] = timedelta(minutes=30)
RESULT_TTL_AGGREGATE: Final[timedelta] = timedelta(hours=1)

log = logging.getLogger("cache/result")


class ResultCache(Protocol):
    """
    Represent a shared key-value store for serialized query results.

    Methods:
        get: return the bytes stored at key, None on a miss.
        set: store the bytes at key for ttl.
        ping: return whether the store is reachable.
        close: release the underlying resources.
    """

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes, ttl: timedelta) -> None: ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...


class RedisResultCache:
    """
    Result cache stored in Redis.

    This class implements the ResultCache protocol and may raise
    `redis.RedisError` from get and set: the coordinator is the
    component deciding that cache failures are not fatal.
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> RedisResultCache:
        """Create a cache connecting to the given redis:// URL."""
        return cls(redis.Redis.from_url(url))

    def get(self, key: str) -> bytes | None:
        value = self.client.get(key)
        if value is None:
            return None
        return bytes(value)

    def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        self.client.set(key, value, ex=ttl)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            log.warning("pinging redis... failure: %s", exc)
            return False

    def close(self) -> None:
        self.client.close()


class NullResultCache:
    """Result cache that never stores anything, used when Redis is not configured."""

    def get(self, key: str) -> bytes | None:
        return None

    def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        pass

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass
