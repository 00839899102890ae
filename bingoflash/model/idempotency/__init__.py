from typing import Optional, Union
import redis.asyncio as redis

from ... import config
from ..document import Document
from ._document import IdempotencyMap as DocumentIdempotencyMap
from ._redis import IdempotencyMap as RedisIdempotencyMap

BACKEND = config.IDEMP_BACKEND  # 'document' | 'redis'

IdempotencyMap = Union[DocumentIdempotencyMap, RedisIdempotencyMap]


# Factory keeps the order code constructor-agnostic:
def new_map(*, doc: Optional[Document] = None,
            r: Optional[redis.Redis] = None,
            ttl_seconds: Optional[int] = None) -> IdempotencyMap:
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("IdempotencyMap(redis) requires r=redis.Redis")
        return RedisIdempotencyMap(
            r=r, ttl_seconds=ttl_seconds or config.IDEMP_TTL_SECONDS
        )
    if doc is None:
        raise RuntimeError("IdempotencyMap(document) requires doc=Document")
    return DocumentIdempotencyMap(doc)


__all__ = [
    "IdempotencyMap", "DocumentIdempotencyMap", "RedisIdempotencyMap",
    "new_map", "BACKEND",
]
