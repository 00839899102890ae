"""
Read-only views over an event: sales lock, sold cards, tickets, buyers.

The manual/online split of sold cards is best-effort reporting. The admin
panel has stored its generated cards in two shapes over time and neither
carries enough metadata to tell every manual card from an online one.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .. import config
from ..helpers import now_utc, parse_iso
from .document import Document, OrderStatus, event_key, event_panel_state


def sales_locked_effective(event: Optional[dict],
                           now: Optional[datetime] = None,
                           lead_minutes: Optional[int] = None) -> bool:
    """Manual lock, or automatic lock shortly before the draw."""
    if not event:
        return False
    if event.get("sales_locked"):
        return True
    cantada_at = parse_iso(event.get("cantada_at"))
    if cantada_at is None:
        return False
    if lead_minutes is None:
        lead_minutes = config.SALES_LOCK_LEAD_MINUTES
    now = now or now_utc()
    return now >= cantada_at - timedelta(minutes=lead_minutes)


def approved_orders(doc: Document, event_id: Any) -> List[dict]:
    event_id = event_key(doc, event_id)
    return [
        o for o in doc["orders"]
        if o and o.get("event_id") == event_id
        and o.get("status") in OrderStatus.APPROVED
    ]


def event_tickets(doc: Document, event_id: Any) -> List[dict]:
    """Tickets of approved orders, for syncing with the draw app."""
    event_id = event_key(doc, event_id)
    order_ids = {o["id"] for o in approved_orders(doc, event_id)}
    if not order_ids:
        return []
    return [
        {
            "id": t.get("id"),
            "serial": t.get("serial"),
            "order_id": t.get("order_id"),
            "event_id": t.get("event_id"),
            "buyer_name": t.get("buyer_name"),
            "buyer_phone": t.get("buyer_phone"),
            "buyer_email": t.get("buyer_email"),
            "card_index": t.get("card_index"),
            "cols": t.get("cols"),
            "cols_signature": t.get("cols_signature"),
            "created_at": t.get("created_at"),
        }
        for t in doc["tickets"]
        if t and t.get("event_id") == event_id
        and t.get("order_id") in order_ids
    ]


def _is_online_generated(g: Any, online_ids: set) -> bool:
    if not isinstance(g, dict):
        return False
    if g.get("order_id"):
        return True
    src = str(g.get("source") or g.get("origin") or "").upper()
    if src == "ONLINE":
        return True
    gid = g.get("id") if g.get("id") is not None else g.get("ticket_id")
    return gid is not None and str(gid) in online_ids


def sold_cards_breakdown(doc: Document, event_id: Any) -> Dict[str, int]:
    order_ids = {o["id"] for o in approved_orders(doc, event_id)}
    tickets = [t for t in doc["tickets"]
               if t and t.get("order_id") in order_ids]
    online = len(tickets)

    st = event_panel_state(doc, event_id)
    generated = st.get("generated") if st else None
    if not isinstance(generated, list):
        generated = []

    if generated and isinstance(generated[0], dict):
        online_ids = {str(t.get("id")) for t in tickets}
        manual = sum(1 for g in generated
                     if not _is_online_generated(g, online_ids))
    else:
        # legacy: bare ids that usually already include the online cards
        manual = max(0, len(generated) - online)

    return {"online": online, "manual": manual, "total": online + manual}


def target_cards(event: dict) -> Optional[int]:
    # explicit target wins over the older auto target
    for key in ("target_cards", "auto_target_cards"):
        v = event.get(key)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return v
    return None


def participants(doc: Document, event_id: Any) -> List[dict]:
    """Approved orders grouped per buyer (phone, else lower-cased name)."""
    grouped: Dict[str, dict] = {}
    for o in approved_orders(doc, event_id):
        name = str(o.get("buyer_name") or "").strip()
        phone = str(o.get("buyer_phone") or "").strip()
        email = str(o.get("buyer_email") or "").strip()
        combos = int(o.get("combos_count") or 0)
        combo_size = int(o.get("combo_size") or config.DEFAULT_COMBO_SIZE)
        paid_at = o.get("paid_at") or o.get("created_at")
        key = f"tel:{phone}" if phone else f"name:{name.lower()}"

        cur = grouped.get(key)
        if cur is None:
            cur = grouped[key] = {
                "name": name, "phone": phone, "email": email or None,
                "combos": 0, "combo_size": combo_size, "paid_at": paid_at,
                "orders": 0, "vendor_id": None, "vendor_name": None,
            }
        cur["combos"] += combos
        cur["orders"] += 1
        if o.get("vendor_id"):
            cur["vendor_id"] = o["vendor_id"]
            cur["vendor_name"] = o.get("vendor_name")

        latest = parse_iso(cur["paid_at"])
        candidate = parse_iso(paid_at)
        if candidate and (latest is None or candidate > latest):
            cur["paid_at"] = paid_at
        if not cur["name"] and name:
            cur["name"] = name
        if not cur["email"] and email:
            cur["email"] = email

    return [
        {
            "name": p["name"],
            "phone": p["phone"],
            "email": p["email"],
            "vendor_id": p["vendor_id"],
            "vendor_name": p["vendor_name"],
            "combos": p["combos"],
            "combo_size": p["combo_size"],
            "total_cards": p["combos"] * p["combo_size"],
            "paid_at": p["paid_at"],
            "orders": p["orders"],
        }
        for p in grouped.values()
    ]
