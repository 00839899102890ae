import pytest
from fastapi.testclient import TestClient

from bingoflash import config
from bingoflash.model import idempotency
from bingoflash.model.store import FileDocumentStore


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "FILES_PATH", str(tmp_path / "files"))
    monkeypatch.setattr(config, "ADMIN_TOKEN", "")
    monkeypatch.setattr(config, "PAYMENT_MODE", "SIMULATED")
    monkeypatch.setattr(config, "ORDER_PENDING_TTL_MINUTES", 30)
    monkeypatch.setattr(config, "ISSUANCE_SAFETY_MULTIPLIER", 20)
    monkeypatch.setattr(idempotency, "BACKEND", "document")


@pytest.fixture
def store(tmp_path):
    """A seeded file store in a temp dir (seed is written on first load)."""
    return FileDocumentStore(str(tmp_path / "bingo-db.json"))


@pytest.fixture
def client(store):
    from bingoflash.server import app

    app.state.store = store
    with TestClient(app) as c:
        yield c
    app.state.store = None


class FakeRedis:
    """Just enough of redis.asyncio.Redis for SET NX / GET."""

    def __init__(self):
        self.data = {}
        self.ttl = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttl[key] = ex
        return True

    async def get(self, key):
        return self.data.get(key)


@pytest.fixture
def fake_redis():
    return FakeRedis()
