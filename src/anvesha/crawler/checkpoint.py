"""
Redis-backed checkpoint for the URL frontier, so an interrupted crawl can resume.
"""

import json
import logging
from typing import List, Set, Tuple, TYPE_CHECKING

import redis.asyncio as redis

if TYPE_CHECKING:
    from .url_frontier import FrontierEntry


class FrontierCheckpoint:
    """
    Mirrors the frontier's seen-set and pending entries into Redis.

    Seen URL hashes live in a set; pending entries live in a hash keyed by
    URL hash. An entry stays pending until its URL is crawled or fails
    permanently, so in-flight URLs survive a restart.
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "anvesha"):
        self.redis_client = redis_client
        self.logger = logging.getLogger(__name__)
        self.seen_key = f"{key_prefix}:frontier:seen"
        self.pending_key = f"{key_prefix}:frontier:pending"

    async def load(self) -> Tuple[Set[str], List['FrontierEntry']]:
        """Load the saved seen-set and pending entries."""
        from .url_frontier import FrontierEntry

        seen = await self.redis_client.smembers(self.seen_key)
        pending = await self.redis_client.hgetall(self.pending_key)

        seen_hashes = {self._decode(h) for h in seen}
        entries = [FrontierEntry.from_dict(json.loads(self._decode(raw)))
                   for raw in pending.values()]

        self.logger.info(f"Loaded frontier checkpoint: {len(seen_hashes)} seen, "
                         f"{len(entries)} pending")
        return seen_hashes, entries

    async def record_added(self, key: str, entry: 'FrontierEntry'):
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.sadd(self.seen_key, key)
            pipe.hset(self.pending_key, key, json.dumps(entry.to_dict()))
            await pipe.execute()

    async def record_finished(self, key: str):
        await self.redis_client.hdel(self.pending_key, key)

    async def clear(self):
        await self.redis_client.delete(self.seen_key, self.pending_key)
        self.logger.info("Frontier checkpoint cleared")

    @staticmethod
    def _decode(value) -> str:
        return value.decode('utf-8') if isinstance(value, bytes) else value
