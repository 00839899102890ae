from __future__ import annotations
from typing import Optional
import redis.asyncio as redis


# ---- keys
def k_idemp(key: str) -> str: return f"idemp:order:{key}"


class IdempotencyMap:
    """Redis-backed map; SET NX is the compare-and-swap."""

    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        v = await self.r.get(k_idemp(key))
        if isinstance(v, bytes):
            v = v.decode()
        return v or None

    async def claim(self, key: str, order_id: str) -> str:
        ok = await self.r.set(k_idemp(key), order_id, nx=True, ex=self.ttl)
        if ok:
            return order_id
        # lost the race: report the winner (expired in between -> ours)
        return (await self.get(key)) or order_id

    async def put(self, key: str, order_id: str) -> None:
        await self.r.set(k_idemp(key), order_id, ex=self.ttl)
