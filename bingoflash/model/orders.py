"""
Order lifecycle.

    PENDING_PAYMENT -> PAID -> TICKETS_ISSUED
                    -> FAILED | EXPIRED | CANCELLED

PAID and TICKETS_ISSUED both count as approved: a second approval signal is
a no-op, not an error. Every operation here starts with the expiry sweep,
inside the same store transaction as the work it guards.

Payment confirmation and issuance are two transactions. If issuance fails
the order stays PAID; the next confirmation signal or an admin mark-paid
retries it, and issuance itself is idempotent per order.
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from .. import config
from ..errors import (
    InvalidInputError, IssuanceError, NotFoundError, OrderExpiredError,
    SalesLockedError,
)
from ..helpers import (
    is_valid_email, is_valid_phone, minutes_after, norm_str, now_utc,
    parse_iso, to_iso,
)
from ..mockpay import (
    APPROVED_OUTCOMES, REJECTED_OUTCOMES, MockPay, PaymentAdapter,
)
from .document import (
    Document, OrderStatus, event_key, find_event, find_offer,
    find_order, find_order_by_payment_ref, tickets_for_order,
)
from .idempotency import new_map
from .issuance import issue_tickets
from .reports import sales_locked_effective
from .store import DocumentStore
from .vendors import LEDGER_NOT_APPLICABLE, LEDGER_PENDING, resolve_vendor

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500


@dataclass(frozen=True)
class ConfirmationResult:
    order_id: str
    status: str
    idempotent: bool = False
    total_cards: int = 0
    error: Optional[str] = None


# ----------------------------
# Expiry sweep
# ----------------------------
def expire_pending_orders(doc: Document, *,
                          ttl_minutes: Optional[int] = None,
                          now: Optional[datetime] = None) -> int:
    """Expire unpaid orders past their deadline; returns how many changed.

    Orders without `expires_at` get one (created_at + TTL) and are left
    pending for this pass.
    """
    if ttl_minutes is None:
        ttl_minutes = config.ORDER_PENDING_TTL_MINUTES
    now = now or now_utc()
    changed = 0

    for o in doc["orders"]:
        if not o or o.get("status") not in OrderStatus.AWAITING_PAYMENT:
            continue

        if not o.get("expires_at"):
            created = parse_iso(o.get("created_at")) or now
            o["expires_at"] = to_iso(minutes_after(created, ttl_minutes))
            changed += 1
            continue

        deadline = parse_iso(o["expires_at"])
        if deadline is None:
            continue
        if deadline <= now:
            o["status"] = OrderStatus.EXPIRED
            o["expired_at"] = to_iso(now)
            changed += 1

    if changed:
        logger.info("expiry sweep touched %d pending orders", changed)
    return changed


# ----------------------------
# Views
# ----------------------------
def public_view(order: dict, idempotent: bool = False) -> dict:
    view = {
        "orderId": order["id"],
        "status": order.get("status"),
        "amount": order.get("amount_cop"),
        "paymentRef": order.get("payment_ref"),
        "paymentUrl": order.get("payment_url"),
    }
    if idempotent:
        view["idempotent"] = True
    return view


def buyer_view(order: dict) -> dict:
    """What a buyer may see when searching their purchases."""
    return {
        "id": order["id"],
        "event_id": order.get("event_id"),
        "buyer_name": order.get("buyer_name"),
        "buyer_phone": order.get("buyer_phone"),
        "buyer_email": order.get("buyer_email") or None,
        "format": order.get("format"),
        "amount_cop": order.get("amount_cop"),
        "status": order.get("status"),
        "created_at": order.get("created_at"),
        "paid_at": order.get("paid_at"),
        "expires_at": order.get("expires_at"),
        "payment_method": order.get("payment_method") or "MANUAL",
        "combos_count": order.get("combos_count") or 1,
        "combo_size": order.get("combo_size") or config.DEFAULT_COMBO_SIZE,
    }


# ----------------------------
# Creation
# ----------------------------
def _validate_buyer(buyer_name: Any, buyer_phone: Any, buyer_email: Any,
                    fmt: Any) -> None:
    if not norm_str(buyer_name) or not norm_str(buyer_phone) \
            or not norm_str(fmt):
        raise InvalidInputError("Missing required fields")
    if not is_valid_phone(buyer_phone):
        raise InvalidInputError("Invalid phone number")
    if not is_valid_email(buyer_email):
        raise InvalidInputError("Invalid email address")


def _positive_int(value: Any, field: str, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{field} must be a whole number")
    if n <= 0:
        raise InvalidInputError(f"{field} must be positive")
    return n


def _new_order(doc: Document, *, order_id: str, event: dict,
               offer_id: Optional[str], buyer_name: str, buyer_phone: str,
               buyer_email: Optional[str], fmt: str, vendor: Any,
               combos_count: int, combo_size: int, amount: int,
               payment_method: str, adapter: PaymentAdapter,
               ttl_minutes: int, now: datetime) -> dict:
    payment = adapter.create_payment(order_id, amount, buyer_phone)
    vendor_ref = resolve_vendor(doc, event["id"], vendor)
    return {
        "id": order_id,
        "event_id": event["id"],
        "offer_id": offer_id,
        "buyer_name": norm_str(buyer_name),
        "buyer_phone": norm_str(buyer_phone),
        "buyer_email": norm_str(buyer_email) or None,
        "format": norm_str(fmt),
        "vendor_code": norm_str(vendor) or None,
        "vendor_id": vendor_ref.id if vendor_ref else None,
        "vendor_name": vendor_ref.name if vendor_ref else None,
        "vendor_ledger": (LEDGER_PENDING if vendor_ref
                          else LEDGER_NOT_APPLICABLE),
        "amount_cop": amount,
        "combos_count": combos_count,
        "combo_size": combo_size,
        "payment_method": payment_method,
        "payment_ref": payment["payment_ref"],
        "payment_url": payment["payment_url"],
        "status": OrderStatus.PENDING_PAYMENT,
        "created_at": to_iso(now),
        "expires_at": to_iso(minutes_after(now, ttl_minutes)),
        "paid_at": None,
    }


async def _claim_key(doc: Document, key: Optional[str], order_id: str,
                     r: Optional[redis.Redis]) -> Optional[dict]:
    """Bind key -> order_id; returns the earlier order when the key is taken."""
    if not key:
        return None
    idem = new_map(doc=doc, r=r)
    winner = await idem.claim(key, order_id)
    if winner == order_id:
        return None
    prev = find_order(doc, winner)
    if prev is not None:
        return prev
    # key points at an order that was never written: rebind it
    await idem.put(key, order_id)
    return None


async def create_order(
    store: DocumentStore,
    *,
    event_id: Any,
    offer_id: Any,
    buyer_name: Any,
    buyer_phone: Any,
    buyer_email: Any = None,
    format: Any = None,
    vendor: Any = None,
    idempotency_key: Optional[str] = None,
    adapter: Optional[PaymentAdapter] = None,
    r: Optional[redis.Redis] = None,
    ttl_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Create a PENDING_PAYMENT order for an offer of an event.

    With an idempotency key already bound to an existing order, that
    order's public view is returned instead (``idempotent: True``).

    Raises:
        InvalidInputError: missing/invalid fields, or the offer is not one
            of the event's offers.
        NotFoundError: unknown event.
        SalesLockedError: the event stopped selling.
    """
    if not norm_str(event_id) or not norm_str(offer_id):
        raise InvalidInputError("Missing required fields")
    _validate_buyer(buyer_name, buyer_phone, buyer_email, format)

    adapter = adapter or MockPay()
    if ttl_minutes is None:
        ttl_minutes = config.ORDER_PENDING_TTL_MINUTES
    now = now or now_utc()
    key = norm_str(idempotency_key) or None

    async with store.transaction() as doc:
        expire_pending_orders(doc, ttl_minutes=ttl_minutes, now=now)

        event = find_event(doc, event_id)
        if event is None:
            raise NotFoundError("Event not found")
        offer = find_offer(doc, offer_id, event["id"])
        if offer is None:
            raise InvalidInputError("Offer is not valid for this event")
        if sales_locked_effective(event, now):
            raise SalesLockedError(event["id"])

        order_id = str(uuid.uuid4())
        prev = await _claim_key(doc, key, order_id, r)
        if prev is not None:
            return public_view(prev, idempotent=True)

        order = _new_order(
            doc, order_id=order_id, event=event, offer_id=offer["id"],
            buyer_name=buyer_name, buyer_phone=buyer_phone,
            buyer_email=buyer_email, fmt=format, vendor=vendor,
            combos_count=int(offer.get("combos_count") or 1),
            combo_size=int(event.get("combo_size")
                           or config.DEFAULT_COMBO_SIZE),
            amount=int(offer.get("price_cop") or 0),
            payment_method=adapter.name, adapter=adapter,
            ttl_minutes=ttl_minutes, now=now,
        )
        doc["orders"].append(order)

    logger.info("order %s created for event %s (%s)",
                order_id, order["event_id"], order["payment_ref"])
    return public_view(order)


async def create_manual_order(
    store: DocumentStore,
    *,
    event_id: Any,
    buyer_name: Any,
    buyer_phone: Any,
    buyer_email: Any = None,
    format: Any = None,
    vendor: Any = None,
    combos: Any = None,
    combo_size: Any = None,
    amount: Any = 0,
    payment_method: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    payment_mode: Optional[str] = None,
    adapter: Optional[PaymentAdapter] = None,
    r: Optional[redis.Redis] = None,
    ttl_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
    **issue_kwargs,
) -> dict:
    """Admin-created order collected outside the online checkout.

    In SIMULATED payment mode the order is approved right away through
    apply_payment_confirmation, like any other payment signal.
    """
    if not norm_str(event_id):
        raise InvalidInputError("Missing required fields")
    _validate_buyer(buyer_name, buyer_phone, buyer_email, format)
    combos_count = _positive_int(combos, "combos", 1)
    amount = _positive_int(amount, "amount", 0) if amount else 0

    adapter = adapter or MockPay()
    if ttl_minutes is None:
        ttl_minutes = config.ORDER_PENDING_TTL_MINUTES
    payment_mode = (payment_mode or config.PAYMENT_MODE).upper()
    now = now or now_utc()
    key = norm_str(idempotency_key) or None

    async with store.transaction() as doc:
        expire_pending_orders(doc, ttl_minutes=ttl_minutes, now=now)
        event = find_event(doc, event_id)
        if event is None:
            raise NotFoundError("Event not found")
        size = _positive_int(
            combo_size, "comboSize",
            int(event.get("combo_size") or config.DEFAULT_COMBO_SIZE),
        )

        order_id = str(uuid.uuid4())
        prev = await _claim_key(doc, key, order_id, r)
        if prev is not None:
            return public_view(prev, idempotent=True)

        order = _new_order(
            doc, order_id=order_id, event=event, offer_id=None,
            buyer_name=buyer_name, buyer_phone=buyer_phone,
            buyer_email=buyer_email, fmt=format, vendor=vendor,
            combos_count=combos_count, combo_size=size, amount=amount,
            payment_method=norm_str(payment_method) or "MANUAL",
            adapter=adapter, ttl_minutes=ttl_minutes, now=now,
        )
        doc["orders"].append(order)

    logger.info("manual order %s created for event %s (mode %s)",
                order_id, order["event_id"], payment_mode)

    view = public_view(order)
    if payment_mode == "SIMULATED":
        result = await apply_payment_confirmation(
            store, order_id, ttl_minutes=ttl_minutes, **issue_kwargs
        )
        view["status"] = result.status
        view["totalCards"] = result.total_cards
        if result.error:
            view["issuanceError"] = result.error
    return view


# ----------------------------
# Payment signals
# ----------------------------
def _freeze_card_count(doc: Document, order: dict) -> None:
    # the card count is fixed from here on; only fill what is missing
    if not order.get("combos_count"):
        offer = find_offer(doc, order.get("offer_id"), order.get("event_id"))
        order["combos_count"] = int((offer or {}).get("combos_count") or 1)
    if not order.get("combo_size"):
        event = find_event(doc, order.get("event_id"))
        order["combo_size"] = int((event or {}).get("combo_size")
                                  or config.DEFAULT_COMBO_SIZE)


def _deadline_passed(order: dict, now: datetime) -> bool:
    if order.get("status") not in OrderStatus.AWAITING_PAYMENT:
        return False
    deadline = parse_iso(order.get("expires_at"))
    return deadline is not None and deadline <= now


async def apply_payment_confirmation(
    store: DocumentStore,
    order_id: str,
    *,
    ttl_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
    **issue_kwargs,
) -> ConfirmationResult:
    """Approve an order and issue its tickets.

    Safe to call any number of times. Already-issued orders are a no-op,
    PAID orders get their issuance retried.

    Raises:
        NotFoundError: unknown order.
        OrderExpiredError: the order expired before payment arrived.
    """
    now = now or now_utc()
    found = expired = already_paid = False
    async with store.transaction() as doc:
        expire_pending_orders(doc, ttl_minutes=ttl_minutes, now=now)
        order = find_order(doc, order_id)
        if order is not None:
            found = True
            status = order.get("status")
            if status == OrderStatus.TICKETS_ISSUED:
                return ConfirmationResult(
                    order_id, status, idempotent=True,
                    total_cards=len(tickets_for_order(doc, order_id)),
                )
            if status == OrderStatus.EXPIRED:
                expired = True
            elif status == OrderStatus.PAID:
                already_paid = True
            elif _deadline_passed(order, now):
                # deadline backfilled by this very sweep
                order["status"] = OrderStatus.EXPIRED
                order["expired_at"] = to_iso(now)
                expired = True
            else:
                _freeze_card_count(doc, order)
                order["status"] = OrderStatus.PAID
                order["paid_at"] = to_iso(now)

    if not found:
        raise NotFoundError("Order not found")
    if expired:
        raise OrderExpiredError(order_id)

    logger.info("order %s paid%s", order_id,
                " (retrying issuance)" if already_paid else "")
    try:
        issued = await issue_tickets(store, order_id, **issue_kwargs)
    except IssuanceError as e:
        logger.exception("ticket issuance failed for order %s", order_id)
        return ConfirmationResult(order_id, OrderStatus.PAID,
                                  idempotent=already_paid, error=e.code.value)

    return ConfirmationResult(order_id, OrderStatus.TICKETS_ISSUED,
                              idempotent=already_paid,
                              total_cards=issued.total_cards)


async def apply_payment_rejection(
    store: DocumentStore,
    order_id: str,
    *,
    ttl_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> str:
    """PENDING_PAYMENT -> FAILED; any other status is left alone."""
    async with store.transaction() as doc:
        expire_pending_orders(doc, ttl_minutes=ttl_minutes, now=now)
        order = find_order(doc, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.get("status") in OrderStatus.AWAITING_PAYMENT:
            order["status"] = OrderStatus.FAILED
            order["failed_at"] = to_iso(now or now_utc())
            logger.info("order %s payment rejected", order_id)
        return order["status"]


async def handle_payment_signal(
    store: DocumentStore,
    reference: Optional[str],
    outcome: Optional[str],
    **kwargs,
) -> dict:
    """Route a provider callback {reference, outcome} to the order."""
    if not reference:
        raise InvalidInputError("Missing payment reference")
    outcome = norm_str(outcome).upper()
    if outcome not in APPROVED_OUTCOMES | REJECTED_OUTCOMES:
        raise InvalidInputError(f"Unknown payment outcome {outcome!r}")

    async with store.snapshot() as doc:
        order = find_order_by_payment_ref(doc, reference)
        order_id = order["id"] if order else None
    if order_id is None:
        raise NotFoundError("Order not found")

    if outcome in APPROVED_OUTCOMES:
        result = await apply_payment_confirmation(store, order_id, **kwargs)
        body = {"ok": True, "order_status": result.status}
        if result.idempotent:
            body["idempotent"] = True
        if result.error:
            body["issuance_error"] = result.error
        return body

    kwargs = {k: v for k, v in kwargs.items() if k in ("ttl_minutes", "now")}
    status = await apply_payment_rejection(store, order_id, **kwargs)
    return {"ok": True, "order_status": status}


async def mark_paid(store: DocumentStore, order_id: str, **kwargs) -> dict:
    """Admin confirmation: same path as a provider approval."""
    if not norm_str(order_id):
        raise InvalidInputError("Missing orderId")
    result = await apply_payment_confirmation(store, order_id, **kwargs)
    body = await get_order_with_tickets(store, order_id)
    body["alreadyPaid"] = result.idempotent
    if result.error:
        body["issuanceError"] = result.error
    return body


# ----------------------------
# Queries
# ----------------------------
async def get_order_with_tickets(store: DocumentStore, order_id: str,
                                 *, now: Optional[datetime] = None) -> dict:
    async with store.transaction() as doc:
        expire_pending_orders(doc, now=now)
        order = find_order(doc, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return {"order": dict(order),
                "tickets": tickets_for_order(doc, order_id)}


def _newest_first(rows: List[dict]) -> List[dict]:
    return sorted(rows, key=lambda o: o.get("created_at") or "", reverse=True)


async def search_orders(store: DocumentStore, *, phone: Optional[str] = None,
                        email: Optional[str] = None,
                        event_id: Optional[str] = None) -> List[dict]:
    """Public lookup of a buyer's purchases; no vendor data leaves here."""
    phone, email = norm_str(phone), norm_str(email)
    if not phone and not email:
        raise InvalidInputError("Provide phone or email")

    async with store.transaction() as doc:
        expire_pending_orders(doc)
        rows = [o for o in doc["orders"] if o]
        event_id = event_key(doc, event_id) if event_id else None
    if phone:
        rows = [o for o in rows if o.get("buyer_phone") == phone]
    if email:
        rows = [o for o in rows if o.get("buyer_email") == email]
    if event_id:
        rows = [o for o in rows if o.get("event_id") == event_id]
    return [buyer_view(o) for o in _newest_first(rows)]


async def list_orders(store: DocumentStore, *, status: Optional[str] = None,
                      event_id: Optional[str] = None,
                      limit: int = 200) -> Dict[str, Any]:
    limit = max(1, min(int(limit), MAX_LIST_LIMIT))
    async with store.transaction() as doc:
        expire_pending_orders(doc)
        rows = [o for o in doc["orders"] if o]
        event_id = event_key(doc, event_id) if event_id else None
    if status:
        rows = [o for o in rows if o.get("status") == status.upper()]
    if event_id:
        rows = [o for o in rows if o.get("event_id") == event_id]
    rows = _newest_first(rows)
    return {"items": [dict(o) for o in rows[:limit]], "total": len(rows),
            "limit": limit}
