import json

import pytest

from bingoflash import config
from bingoflash.mockpay import sign
from bingoflash.server import app

ORDER = {
    "eventId": "VIERNES",
    "offerId": "c1",
    "buyerName": "Ana Gomez",
    "buyerPhone": "3001234567",
    "buyerEmail": "ana@example.com",
    "format": "DIGITAL",
}


def _webhook(client, ref, status):
    payload = json.dumps({"reference": ref, "status": status}).encode()
    return client.post(
        "/payments/webhook",
        content=payload,
        headers={"x-mockpay-signature": sign(payload),
                 "content-type": "application/json"},
    )


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_public_config_hides_pin(client):
    client.put("/api/admin/events/VIERNES/pin", json={"new_pin": "2468"})
    body = client.get("/api/config/VIERNES").json()
    assert body["event"]["id"] == "VIERNES"
    assert "admin_pin" not in body["event"]
    assert len(body["offers"]) == 4


def test_order_flow_through_webhook(client):
    resp = client.post("/api/orders", json=ORDER)
    assert resp.status_code == 200
    order = resp.json()
    assert order["status"] == "PENDING_PAYMENT"
    assert order["amount"] == 6000

    resp = _webhook(client, order["paymentRef"], "APPROVED")
    assert resp.status_code == 200
    assert resp.json()["order_status"] == "TICKETS_ISSUED"

    resp = _webhook(client, order["paymentRef"], "APPROVED")
    assert resp.json()["idempotent"] is True

    body = client.get(f"/api/orders/{order['orderId']}").json()
    assert body["order"]["status"] == "TICKETS_ISSUED"
    assert [t["card_index"] for t in body["tickets"]] == list(range(6))


def test_idempotency_header(client):
    first = client.post("/api/orders", json=ORDER,
                        headers={"Idempotency-Key": "k-1"}).json()
    again = client.post("/api/orders", json=ORDER,
                        headers={"X-Idempotency-Key": "k-1"}).json()
    assert again["orderId"] == first["orderId"]
    assert again["idempotent"] is True


def test_domain_errors_are_mapped(client):
    resp = client.post("/api/orders", json=dict(ORDER, offerId="zzz"))
    assert resp.status_code == 400
    assert resp.json()["error"] == "INVALID_INPUT"

    resp = client.post("/api/orders", json=dict(ORDER, eventId="NOPE"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "NOT_FOUND"

    resp = client.get("/api/orders")
    assert resp.status_code == 400


def test_webhook_rejects_bad_signature(client):
    resp = client.post(
        "/payments/webhook",
        content=b'{"reference": "MOCK-x", "status": "APPROVED"}',
        headers={"x-mockpay-signature": "nope"},
    )
    assert resp.status_code == 401


def test_webhook_unknown_reference(client):
    resp = _webhook(client, "MOCK-unknown", "APPROVED")
    assert resp.status_code == 404


def test_webhook_rejection(client):
    order = client.post("/api/orders", json=ORDER).json()
    resp = _webhook(client, order["paymentRef"], "REJECTED")
    assert resp.json()["order_status"] == "FAILED"


def test_search_orders(client):
    client.post("/api/orders", json=ORDER)
    rows = client.get("/api/orders", params={"phone": "3001234567"}).json()
    assert len(rows) == 1
    assert "vendor_id" not in rows[0]


class _FakeHttp:
    def __init__(self):
        self.posts = []

    async def post(self, url, content=None, headers=None):
        self.posts.append((url, content, headers))

        class _Resp:
            status_code = 200
        return _Resp()

    async def aclose(self):
        pass


def test_mockpay_emit_signs_and_posts(client):
    order = client.post("/api/orders", json=ORDER).json()
    ref = order["paymentRef"]
    fake = _FakeHttp()
    app.state.http = fake

    screen = client.get(f"/mockpay/{ref}").json()
    assert screen["order_id"] == order["orderId"]

    resp = client.post(f"/mockpay/{ref}/emit", data={"t": "approved"})
    assert resp.status_code == 200
    assert resp.json()["delivered"] is True

    url, content, headers = fake.posts[0]
    assert url == config.MOCK_WEBHOOK_URL
    assert headers["x-mockpay-signature"] == sign(content)
    assert json.loads(content)["reference"] == ref

    resp = client.post(f"/mockpay/{ref}/emit", data={"t": "maybe"})
    assert resp.status_code == 400


@pytest.fixture
def locked(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_TOKEN", "s3cret")


def test_admin_routes_need_token(client, locked):
    assert client.get("/api/admin/orders").status_code == 401
    assert client.get("/api/admin/ping",
                      headers={"X-Admin-Token": "wrong"}).status_code == 401

    resp = client.get("/api/admin/orders",
                      headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200
    assert resp.json()["items"] == []


def test_manual_order_and_mark_paid(client, locked):
    auth = {"X-Admin-Token": "s3cret"}
    resp = client.post("/api/admin/manual-order", headers=auth, json={
        "eventId": "VIERNES", "buyerName": "Luis", "buyerPhone": "3005556677",
        "format": "PRINT", "combos": 2, "comboSize": 3,
    })
    assert resp.status_code == 200
    order = resp.json()
    assert order["status"] == "TICKETS_ISSUED"
    assert order["totalCards"] == 6

    resp = client.post("/api/admin/mark-paid", headers=auth,
                       json={"orderId": order["orderId"]})
    assert resp.json()["alreadyPaid"] is True
    assert len(resp.json()["tickets"]) == 6


def test_event_pin_flow(client, locked):
    path = "/api/admin/events/VIERNES"

    resp = client.get(path)
    assert resp.status_code == 401
    assert resp.json()["error"] == "PIN_NOT_SET"

    resp = client.put(f"{path}/pin", json={"new_pin": "1234"})
    assert resp.status_code == 401

    resp = client.put(f"{path}/pin", json={"new_pin": "1234"},
                      headers={"Authorization": "Bearer s3cret"})
    assert resp.json()["updated"] is True

    assert client.get(path).json()["error"] == "PIN_REQUIRED"
    assert client.get(path, headers={"X-Event-Pin": "0000"}).json()[
        "error"] == "PIN_INVALID"

    pin = {"X-Event-Pin": "1234"}
    assert client.get(f"{path}/pin/verify", headers=pin).json()["ok"] is True

    resp = client.put(f"{path}/pin", json={"new_pin": "5678"}, headers=pin)
    assert resp.status_code == 200
    assert client.get(path, headers={"X-Event-Pin": "5678"}).status_code == 200


def test_event_admin_routes(client):
    path = "/api/admin/events/VIERNES"

    resp = client.put(path, json={"name": "Viernes Flash", "sales_locked": True})
    assert resp.json()["event"]["name"] == "Viernes Flash"
    assert resp.json()["event"]["sales_locked_effective"] is True

    resp = client.post("/api/orders", json=ORDER)
    assert resp.status_code == 409
    assert resp.json()["error"] == "SALES_LOCKED"

    client.put(path, json={"sales_locked": False})
    resp = client.put(f"{path}/offers", json={"offers": [
        {"id": "solo", "label": "Solo", "combos_count": 1, "price_cop": 5000},
    ]})
    assert [o["id"] for o in resp.json()["offers"]] == ["solo"]

    state = {"vendors": {"v1": {"name": "Marta", "commission_pct": 10}}}
    assert client.put(f"{path}/state", json={"state": state}).json()["ok"]
    assert client.get(f"{path}/state").json()["state"] == state

    order = client.post("/api/orders", json=dict(
        ORDER, offerId="solo", vendor="v1")).json()
    _webhook(client, order["paymentRef"], "APPROVED")

    tickets = client.get(f"{path}/tickets").json()
    assert tickets["total"] == 6

    people = client.get(f"{path}/participants").json()
    assert people["total"] == 1
    assert people["participants"][0]["vendor_name"] == "Marta"

    stats = client.get(f"{path}/state").json()["state"]["vendors"]["v1"][
        "stats"]
    assert stats["comision"] == 500.0


def test_lowercase_event_path_credits_vendor(client):
    path = "/api/admin/events/viernes"
    state = {"vendors": {"v1": {"name": "Marta", "commission_pct": 10}}}
    assert client.put(f"{path}/state", json={"state": state}).json()[
        "event_id"] == "VIERNES"

    order = client.post("/api/orders", json=dict(
        ORDER, eventId="viernes", vendor="v1")).json()
    resp = client.post("/api/admin/mark-paid",
                       json={"orderId": order["orderId"]})
    assert resp.json()["order"]["vendor_id"] == "v1"

    assert client.get(f"{path}/tickets").json()["total"] == 6
    stats = client.get(f"{path}/state").json()["state"]["vendors"]["v1"][
        "stats"]
    assert stats["cartones"] == 6
    assert stats["comision"] == 600.0
