"""Redis read-through cache for redirect lookups.

Only the code → target URL mapping is cached; click statistics are always
read from the store. Target URLs never change after creation, so an entry can
only go stale when its link is deleted. Deletion evicts it, and so does
creating a link, in case a failed eviction left an entry for a reused code.

How to Use
===========
::
    cache = LinkCache(redis.from_url(settings.REDIS_URL, decode_responses=True))
    target = await cache.get_target("abc123")
    if target is None:
        link = await store.get("abc123")
        await cache.put(link)

Key Behaviours
===============
- Entries expire after ``ttl_seconds`` as a backstop.
- Redis errors never fail a request: reads degrade to a miss, writes and
  evictions are logged and skipped.
"""

import logging

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from tinylink.models import Link
from tinylink.schemas import CachedLinkPayload

__all__ = ["LinkCache"]

DEFAULT_CACHE_TTL_SECONDS = 3600

CACHE_ERRORS_TOTAL = Counter(
    "tinylink_cache_errors_total",
    "Redis operations that failed and were skipped",
    ["operation"],
)


class LinkCache:
    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._logger = logger or logging.getLogger("tinylink")

    @staticmethod
    def _key(code: str) -> str:
        return f"link:{code}"

    async def get_target(self, code: str) -> str | None:
        try:
            cached = await self._client.get(self._key(code))
        except RedisError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            self._logger.warning(f"Cache read failed for {code}: {exc!r}")
            return None

        if not cached:
            return None
        try:
            return CachedLinkPayload.model_validate_json(cached).target_url
        except ValueError as exc:
            self._logger.error(f"Cache deserialization error for {code}: {exc}")
            return None

    async def put(self, link: Link) -> None:
        payload = CachedLinkPayload.model_validate(link)
        try:
            await self._client.setex(self._key(link.code), self._ttl, payload.model_dump_json())
        except RedisError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="put").inc()
            self._logger.warning(f"Cache write failed for {link.code}: {exc!r}")

    async def evict(self, code: str) -> None:
        try:
            await self._client.delete(self._key(code))
        except RedisError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="evict").inc()
            self._logger.error(f"Cache eviction failed for {code}: {exc!r}")

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            self._logger.error(f"Cache health check failed: {exc!r}")
            return False
