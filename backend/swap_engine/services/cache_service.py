"""
Redis caching for the open-listing browse pages.

CACHING STRATEGY
================

What we cache:
  - Browse responses for open listings (paginated, JSON-serialized)
  - Key pattern: "listings:open:page={page}&size={size}&mode={mode}&exclude={owner}"

Invalidation:
  - Any committed transition that can change a listing's status (accept,
    complete, cancel, auction close) deletes every "listings:open:" key
  - Listing creation does the same
  - TTL as the safety net

Proposals, targeting state and single listings are never cached: the
validator and the commit transaction always read the database.

A Redis outage degrades to uncached reads; it never fails a request.
"""

import json
from typing import Optional

import redis.asyncio as redis

from swap_engine.core.logging import get_logger
from swap_engine.core.metrics import record_cache_operation

logger = get_logger(__name__)

KEY_PREFIX = "listings:open:"


def make_browse_key(page: int, page_size: int, mode: Optional[str], exclude_owner_id: Optional[int]) -> str:
    return f"{KEY_PREFIX}page={page}&size={page_size}&mode={mode or 'all'}&exclude={exclude_owner_id or '-'}"


class ListingCache:
    def __init__(self, url: Optional[str], ttl_seconds: int = 300, enabled: bool = True):
        self.url = url
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled and bool(url)
        self._client: Optional[redis.Redis] = None

    async def get_redis(self) -> Optional[redis.Redis]:
        """Get or create the Redis connection. Returns None if Redis is disabled or unreachable."""
        if not self.enabled:
            return None

        if self._client is None:
            try:
                client = redis.from_url(
                    self.url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                )
                await client.ping()
                self._client = client
                logger.info("redis_connected", url=self.url)
            except Exception as e:
                logger.error("redis_connection_failed", error=str(e))
                return None

        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_browse(
        self, page: int, page_size: int, mode: Optional[str], exclude_owner_id: Optional[int]
    ) -> Optional[dict]:
        client = await self.get_redis()
        if not client:
            return None

        key = make_browse_key(page, page_size, mode, exclude_owner_id)
        try:
            data = await client.get(key)
            record_cache_operation("get", hit=data is not None)
            if data:
                logger.debug("cache_hit", key=key)
                return json.loads(data)
            logger.debug("cache_miss", key=key)
        except Exception as e:
            logger.error("cache_get_error", key=key, error=str(e))

        return None

    async def set_browse(
        self,
        page: int,
        page_size: int,
        mode: Optional[str],
        exclude_owner_id: Optional[int],
        data: dict,
    ) -> None:
        client = await self.get_redis()
        if not client:
            return

        key = make_browse_key(page, page_size, mode, exclude_owner_id)
        try:
            await client.setex(key, self.ttl_seconds, json.dumps(data, default=str))
            logger.debug("cache_set", key=key, ttl=self.ttl_seconds)
        except Exception as e:
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate(self) -> None:
        """Delete every cached browse page (SCAN over the key prefix)."""
        client = await self.get_redis()
        if not client:
            return

        try:
            deleted = 0
            async for key in client.scan_iter(match=f"{KEY_PREFIX}*", count=100):
                await client.delete(key)
                deleted += 1
            logger.info("cache_invalidated", keys_deleted=deleted)
        except Exception as e:
            logger.error("cache_invalidation_error", error=str(e))

    async def stats(self) -> dict:
        client = await self.get_redis()
        if not client:
            return {"status": "disabled"}

        try:
            info = await client.info("stats")
            hits = info.get("keyspace_hits", 0)
            misses = info.get("keyspace_misses", 0)
            return {
                "status": "connected",
                "hits": hits,
                "misses": misses,
                "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}
