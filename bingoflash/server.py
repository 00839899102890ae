from __future__ import annotations
import httpx
import json
import logging
import time
import uuid
from typing import Optional

from . import config
from .auth import check_event_access, require_admin
from .errors import DomainError, InvalidInputError, NotFoundError
from .helpers import now_utc, to_iso
from .infra.sql import make_async_engine, redacted_url
from .mockpay import PaymentAdapter, MockPay, sign
from .model import events, orders, reports
from .model.document import find_order_by_payment_ref
from .model.store import DocumentStore, new_store, BACKEND as STORE_BACKEND
from .model.idempotency import BACKEND as IDEMP_BACKEND

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import ORJSONResponse

import redis.asyncio as redis

logger = logging.getLogger(__name__)

EMIT_OUTCOMES = {"APPROVED", "REJECTED"}

adapter: PaymentAdapter = MockPay()

app = FastAPI(
    title="Bingo Flash",
    default_response_class=ORJSONResponse,
)


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code.value, "detail": exc.message},
    )


def get_store() -> DocumentStore:
    store = getattr(app.state, "store", None)
    if store is None:
        raise RuntimeError("Document store not initialized")
    return store


def get_redis() -> Optional[redis.Redis]:
    return getattr(app.state, "redis", None)


async def event_access(event_id: str, request: Request,
                       store: DocumentStore = Depends(get_store)) -> str:
    return await check_event_access(request, store, event_id)


async def event_pin_access(event_id: str, request: Request,
                           store: DocumentStore = Depends(get_store)) -> str:
    return await check_event_access(request, store, event_id,
                                    setting_pin=True)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _logging_start():
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Bingo Flash is starting up (store=%s, idempotency=%s, "
                "payments=%s)", STORE_BACKEND, IDEMP_BACKEND,
                config.PAYMENT_MODE)


@app.on_event("startup")
async def _store_start():
    if getattr(app.state, "store", None) is not None:
        return
    if STORE_BACKEND == "sql":
        app.state.store = new_store(
            engine=make_async_engine(config.DATABASE_URL)
        )
        logger.info("document store: %s", redacted_url(config.DATABASE_URL))
    else:
        app.state.store = new_store(path=config.DB_PATH)
        logger.info("document store: %s", config.DB_PATH)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=5.0,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=16),
    )


@app.on_event("startup")
async def _redis_start():
    if IDEMP_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.close()
        app.state.redis = None


@app.on_event("shutdown")
async def _store_stop():
    store = getattr(app.state, "store", None)
    if store is not None:
        await store.close()
        app.state.store = None


# ----------------------------
# Public
# ----------------------------
@app.get("/health")
async def health():
    return {"ok": True, "ts": to_iso(now_utc())}


@app.get("/api/config/{event_id}")
async def event_config(event_id: str,
                       store: DocumentStore = Depends(get_store)):
    async with store.snapshot() as doc:
        return events.event_overview(doc, event_id)


@app.post("/api/orders")
async def create_order(
    payload: dict,
    idempotency_key: Optional[str] = Header(None),
    x_idempotency_key: Optional[str] = Header(None),
    store: DocumentStore = Depends(get_store),
    r: Optional[redis.Redis] = Depends(get_redis),
):
    return await orders.create_order(
        store,
        event_id=payload.get("eventId"),
        offer_id=payload.get("offerId"),
        buyer_name=payload.get("buyerName"),
        buyer_phone=payload.get("buyerPhone"),
        buyer_email=payload.get("buyerEmail"),
        format=payload.get("format"),
        vendor=payload.get("vendor"),
        idempotency_key=idempotency_key or x_idempotency_key,
        adapter=adapter,
        r=r,
    )


@app.get("/api/orders")
async def search_orders(phone: Optional[str] = None,
                        email: Optional[str] = None,
                        eventId: Optional[str] = None,
                        store: DocumentStore = Depends(get_store)):
    return await orders.search_orders(store, phone=phone, email=email,
                                      event_id=eventId)


@app.get("/api/orders/{order_id}")
async def get_order(order_id: str, store: DocumentStore = Depends(get_store)):
    return await orders.get_order_with_tickets(store, order_id)


# ----------------------------
# Webhook endpoint (payment provider callback)
# ----------------------------
@app.post("/payments/webhook")
async def payments_webhook(request: Request,
                           store: DocumentStore = Depends(get_store)):
    payload = await request.body()
    headers = dict(request.headers)

    event = adapter.verify_webhook(payload, headers)
    ref = adapter.event_reference(event)
    if not ref:
        raise HTTPException(400, detail="missing payment reference")
    return await orders.handle_payment_signal(
        store, ref, adapter.event_outcome(event)
    )


# ----------------------------
# MockPay: stands in for the provider's checkout
# ----------------------------
@app.get("/mockpay/{ref}")
async def mockpay_screen(ref: str, store: DocumentStore = Depends(get_store)):
    async with store.snapshot() as doc:
        order = find_order_by_payment_ref(doc, ref)
    if not order:
        raise NotFoundError("Payment not found")
    return {
        "payment_ref": ref,
        "order_id": order["id"],
        "amount_cop": order.get("amount_cop"),
        "status": order.get("status"),
        "outcomes": sorted(EMIT_OUTCOMES),
        "webhook_url": config.MOCK_WEBHOOK_URL,
    }


@app.post("/mockpay/{ref}/emit")
async def mockpay_emit(ref: str, request: Request,
                       store: DocumentStore = Depends(get_store)):
    form = await request.form()
    outcome = str(form.get("t") or "").upper()
    if outcome not in EMIT_OUTCOMES:
        raise InvalidInputError("invalid outcome")

    async with store.snapshot() as doc:
        order = find_order_by_payment_ref(doc, ref)
    if not order:
        raise NotFoundError("Payment not found")

    event = {
        "type": f"payment.{outcome.lower()}",
        "reference": ref,
        "status": outcome,
        "order_id": order["id"],
        "amount": order.get("amount_cop"),
        "created_at": int(time.time()),
        "idempotency_key": f"evt_{uuid.uuid4().hex}",
    }
    payload = json.dumps(event).encode()

    client_http: httpx.AsyncClient = app.state.http
    delivered = False
    try:
        resp = await client_http.post(
            config.MOCK_WEBHOOK_URL,
            content=payload,
            headers={
                "x-mockpay-signature": sign(payload),
                "content-type": "application/json",
            },
        )
        delivered = resp.status_code < 400
    except httpx.HTTPError as e:
        # the buyer can press the button again
        logger.warning("webhook delivery failed for %s: %s", ref, e)

    return {"ok": True, "delivered": delivered, "order_id": order["id"],
            "outcome": outcome}


# ----------------------------
# Admin
# ----------------------------
@app.get("/api/admin/ping", dependencies=[Depends(require_admin)])
async def admin_ping():
    return {"ok": True, "ts": to_iso(now_utc())}


@app.post("/api/admin/manual-order", dependencies=[Depends(require_admin)])
async def admin_manual_order(
    payload: dict,
    idempotency_key: Optional[str] = Header(None),
    x_idempotency_key: Optional[str] = Header(None),
    store: DocumentStore = Depends(get_store),
    r: Optional[redis.Redis] = Depends(get_redis),
):
    return await orders.create_manual_order(
        store,
        event_id=payload.get("eventId"),
        buyer_name=payload.get("buyerName"),
        buyer_phone=payload.get("buyerPhone"),
        buyer_email=payload.get("buyerEmail"),
        format=payload.get("format"),
        vendor=payload.get("vendor"),
        combos=payload.get("combos"),
        combo_size=payload.get("comboSize"),
        amount=payload.get("amount") or 0,
        payment_method=payload.get("paymentMethod"),
        idempotency_key=idempotency_key or x_idempotency_key,
        adapter=adapter,
        r=r,
    )


@app.post("/api/admin/mark-paid", dependencies=[Depends(require_admin)])
async def admin_mark_paid(payload: dict,
                          store: DocumentStore = Depends(get_store)):
    return await orders.mark_paid(store, payload.get("orderId"))


@app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
async def api_admin_orders(limit: int = 200,
                           status: Optional[str] = None,
                           eventId: Optional[str] = None,
                           store: DocumentStore = Depends(get_store)):
    return await orders.list_orders(store, status=status, event_id=eventId,
                                    limit=limit)


# ----------------------------
# Event admin (admin token or event PIN)
# ----------------------------
@app.get("/api/admin/events/{event_id}",
         dependencies=[Depends(event_access)])
async def admin_get_event(event_id: str,
                          store: DocumentStore = Depends(get_store)):
    async with store.snapshot() as doc:
        return events.event_overview(doc, event_id)


@app.put("/api/admin/events/{event_id}",
         dependencies=[Depends(event_access)])
async def admin_put_event(event_id: str, payload: dict,
                          store: DocumentStore = Depends(get_store)):
    async with store.transaction() as doc:
        event = events.upsert_event(doc, event_id, payload)
        overview = events.event_overview(doc, event["id"])
    return {"event": overview["event"]}


@app.put("/api/admin/events/{event_id}/offers",
         dependencies=[Depends(event_access)])
async def admin_put_offers(event_id: str, payload: dict,
                           store: DocumentStore = Depends(get_store)):
    async with store.transaction() as doc:
        offers = events.replace_offers(doc, event_id, payload.get("offers"))
    return {"offers": offers}


@app.get("/api/admin/events/{event_id}/pin/verify",
         dependencies=[Depends(event_access)])
async def admin_verify_pin(event_id: str):
    return {"ok": True, "eventId": event_id, "ts": to_iso(now_utc())}


@app.put("/api/admin/events/{event_id}/pin",
         dependencies=[Depends(event_pin_access)])
async def admin_put_pin(event_id: str, payload: dict,
                        store: DocumentStore = Depends(get_store)):
    async with store.transaction() as doc:
        events.set_event_pin(doc, event_id, payload.get("new_pin"))
    return {"ok": True, "eventId": event_id, "updated": True}


@app.get("/api/admin/events/{event_id}/state",
         dependencies=[Depends(event_access)])
async def admin_get_state(event_id: str,
                          store: DocumentStore = Depends(get_store)):
    async with store.snapshot() as doc:
        return events.get_event_state(doc, event_id)


@app.put("/api/admin/events/{event_id}/state",
         dependencies=[Depends(event_access)])
async def admin_put_state(event_id: str, payload: dict,
                          store: DocumentStore = Depends(get_store)):
    async with store.transaction() as doc:
        return events.put_event_state(doc, event_id, payload.get("state"))


@app.get("/api/admin/events/{event_id}/tickets",
         dependencies=[Depends(event_access)])
async def admin_event_tickets(event_id: str,
                              store: DocumentStore = Depends(get_store)):
    async with store.transaction() as doc:
        orders.expire_pending_orders(doc)
        tickets = reports.event_tickets(doc, event_id)
    return {"event_id": event_id, "total": len(tickets), "tickets": tickets}


@app.get("/api/admin/events/{event_id}/participants",
         dependencies=[Depends(event_access)])
async def admin_event_participants(event_id: str,
                                   store: DocumentStore = Depends(get_store)):
    async with store.snapshot() as doc:
        rows = reports.participants(doc, event_id)
    return {"event_id": event_id, "total": len(rows), "participants": rows}
