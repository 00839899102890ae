import pytest

from bingoflash.model import idempotency
from bingoflash.model.document import empty_document
from bingoflash.model.idempotency import (
    DocumentIdempotencyMap, RedisIdempotencyMap, new_map,
)
from bingoflash.model.idempotency._redis import k_idemp


@pytest.mark.asyncio
async def test_document_map_first_claim_wins():
    doc = empty_document()
    m = DocumentIdempotencyMap(doc)

    assert await m.get("k1") is None
    assert await m.claim("k1", "order-a") == "order-a"
    assert await m.claim("k1", "order-b") == "order-a"
    assert doc["idempotency"]["k1"]["order_id"] == "order-a"
    assert doc["idempotency"]["k1"]["created_at"]


@pytest.mark.asyncio
async def test_document_map_put_overwrites():
    m = DocumentIdempotencyMap(empty_document())
    await m.claim("k1", "order-a")
    await m.put("k1", "order-b")
    assert await m.get("k1") == "order-b"


@pytest.mark.asyncio
async def test_redis_map_uses_set_nx(fake_redis):
    m = RedisIdempotencyMap(r=fake_redis, ttl_seconds=60)

    assert await m.claim("k1", "order-a") == "order-a"
    assert await m.claim("k1", "order-b") == "order-a"
    assert fake_redis.data[k_idemp("k1")] == "order-a"
    assert fake_redis.ttl[k_idemp("k1")] == 60


@pytest.mark.asyncio
async def test_redis_map_decodes_bytes(fake_redis):
    fake_redis.data[k_idemp("k1")] = b"order-a"
    m = RedisIdempotencyMap(r=fake_redis, ttl_seconds=60)
    assert await m.get("k1") == "order-a"


def test_new_map_picks_backend(monkeypatch, fake_redis):
    monkeypatch.setattr(idempotency, "BACKEND", "document")
    assert isinstance(new_map(doc=empty_document()), DocumentIdempotencyMap)
    with pytest.raises(RuntimeError):
        new_map()

    monkeypatch.setattr(idempotency, "BACKEND", "redis")
    assert isinstance(new_map(r=fake_redis), RedisIdempotencyMap)
    with pytest.raises(RuntimeError):
        new_map(doc=empty_document())
