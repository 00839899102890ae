"""
The shared document every store backend persists.

One JSON object holds all durable state:

    events, offers, orders, tickets       lists of plain dicts
    idempotency                           {key: {order_id, created_at}}
    event_states                          {event_id: {state, updated_at}}
    event_ticket_seq                      {event_id: last serial number}

Everything here operates on an in-memory copy handed out by a store
transaction; nothing in this module touches disk.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

Document = Dict[str, Any]


class OrderStatus:
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    TICKETS_ISSUED = "TICKETS_ISSUED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    # rows written before the status names were settled
    LEGACY_PENDING = "PENDING"

    APPROVED = (PAID, TICKETS_ISSUED)
    AWAITING_PAYMENT = (PENDING_PAYMENT, LEGACY_PENDING)

_LISTS = ("events", "offers", "orders", "tickets")
_MAPS = ("idempotency", "event_states", "event_ticket_seq")


def seed_document() -> Document:
    return {
        "events": [
            {
                "id": "VIERNES",
                "name": "Bingo Flash Tradicional",
                "date_time": None,
                "combo_size": 6,
                "price_carton": 0,
                "admin_pin": None,
            }
        ],
        "offers": [
            {"id": "c1", "event_id": "VIERNES", "label": "1 combo",
             "combos_count": 1, "price_cop": 6000},
            {"id": "c2", "event_id": "VIERNES", "label": "2 combos",
             "combos_count": 2, "price_cop": 12000},
            {"id": "c5", "event_id": "VIERNES", "label": "5 combos",
             "combos_count": 5, "price_cop": 28000},
            {"id": "c10", "event_id": "VIERNES", "label": "10 combos",
             "combos_count": 10, "price_cop": 50000},
        ],
        "orders": [],
        "tickets": [],
        "idempotency": {},
        "event_states": {},
        "event_ticket_seq": {},
    }


def empty_document() -> Document:
    doc: Document = {k: [] for k in _LISTS}
    doc.update({k: {} for k in _MAPS})
    return doc


def ensure_shape(doc: Document) -> Document:
    """Add any missing top-level collection; keeps existing content."""
    for k in _LISTS:
        if not isinstance(doc.get(k), list):
            doc[k] = []
    for k in _MAPS:
        if not isinstance(doc.get(k), dict):
            doc[k] = {}
    return doc


# ----------------------------
# Lookups
# ----------------------------
def find_event(doc: Document, event_id: Any) -> Optional[dict]:
    if event_id is None:
        return None
    wanted = str(event_id).upper()
    for ev in doc["events"]:
        if ev and str(ev.get("id")).upper() == wanted:
            return ev
    return None


def event_key(doc: Document, event_id: Any) -> Optional[str]:
    """Stored id of the event, whatever case the caller used.

    Unknown events keep the id as given, trimmed.
    """
    event = find_event(doc, event_id)
    if event is not None:
        return event["id"]
    if event_id is None:
        return None
    return str(event_id).strip()


def find_offer(doc: Document, offer_id: Any,
               event_id: Any) -> Optional[dict]:
    for o in doc["offers"]:
        if o and o.get("id") == offer_id and o.get("event_id") == event_id:
            return o
    return None


def offers_for_event(doc: Document, event_id: Any) -> List[dict]:
    return [o for o in doc["offers"] if o and o.get("event_id") == event_id]


def find_order(doc: Document, order_id: Any) -> Optional[dict]:
    if not order_id:
        return None
    for o in doc["orders"]:
        if o and o.get("id") == order_id:
            return o
    return None


def find_order_by_payment_ref(doc: Document, ref: str) -> Optional[dict]:
    for o in doc["orders"]:
        # nequi_ref: rows written before the payment adapter was generic
        if o and ref and ref in (o.get("payment_ref"), o.get("nequi_ref")):
            return o
    return None


def tickets_for_order(doc: Document, order_id: str) -> List[dict]:
    rows = [t for t in doc["tickets"] if t and t.get("order_id") == order_id]
    rows.sort(key=lambda t: t.get("card_index", 0))
    return rows


def event_panel_state(doc: Document, event_id: Any) -> Optional[dict]:
    """The admin panel state object of an event, or None."""
    states = doc["event_states"]
    entry = states.get(event_key(doc, event_id))
    if entry is None:
        # state saved under another spelling before ids were canonical
        entry = states.get(event_id)
    if not isinstance(entry, dict):
        return None
    st = entry.get("state")
    return st if isinstance(st, dict) else None
