"""
Vendor attribution and the per-event vendor ledger.

Vendors live in the admin panel state of an event
(event_states[eid].state.vendors[vid]); the ledger is the `stats` object of
each vendor. Orders carry an explicit `vendor_ledger` state so that stats are
added exactly once per order:

    NOT_APPLICABLE   order has no vendor
    PENDING          vendor attributed, stats not yet added
    APPLIED          stats added; terminal
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import ConflictError
from .document import Document, event_panel_state

logger = logging.getLogger(__name__)

LEDGER_NOT_APPLICABLE = "NOT_APPLICABLE"
LEDGER_PENDING = "PENDING"
LEDGER_APPLIED = "APPLIED"


@dataclass(frozen=True)
class VendorRef:
    id: str
    name: str
    commission_pct: float


def _num(v: Any) -> float:
    try:
        return float(v or 0)
    except (TypeError, ValueError):
        return 0.0


def commission_pct_of(vendor: dict) -> float:
    # older panel builds wrote camelCase / Spanish keys
    return _num(vendor.get("commission_pct")
                or vendor.get("commissionPct")
                or vendor.get("comisionPct"))


def _vendors(doc: Document, event_id: Any) -> Optional[dict]:
    st = event_panel_state(doc, event_id)
    vendors = st.get("vendors") if st else None
    return vendors if isinstance(vendors, dict) else None


def resolve_vendor(doc: Document, event_id: Any,
                   code: Any) -> Optional[VendorRef]:
    """Match a vendor by internal id or by its link token."""
    if not code:
        return None
    vendors = _vendors(doc, event_id)
    if not vendors:
        return None

    code = str(code).strip()
    for vid, v in vendors.items():
        if not isinstance(v, dict):
            continue
        token = str(v.get("link_token") or v.get("linkToken") or "").strip()
        if code == vid or (token and code == token):
            name = str(v.get("name") or v.get("nombre") or "").strip()
            return VendorRef(id=vid, name=name or vid,
                             commission_pct=commission_pct_of(v))
    return None


def ledger_state(order: dict) -> str:
    state = order.get("vendor_ledger")
    if state in (LEDGER_NOT_APPLICABLE, LEDGER_PENDING, LEDGER_APPLIED):
        return state
    if order.get("vendor_stats_applied"):
        return LEDGER_APPLIED
    return LEDGER_PENDING if order.get("vendor_id") else LEDGER_NOT_APPLICABLE


def set_ledger_state(order: dict, new_state: str) -> None:
    current = ledger_state(order)
    if current == LEDGER_APPLIED and new_state != LEDGER_APPLIED:
        raise ConflictError(
            f"vendor ledger for order {order.get('id')} already applied"
        )
    order["vendor_ledger"] = new_state


def apply_vendor_stats_once(doc: Document, order: dict,
                            total_cards: int) -> bool:
    """Add this order to its vendor's stats unless already done.

    Returns True when stats were added by this call. A vendor that vanished
    from the panel state leaves the order PENDING so a later retry can still
    apply it.
    """
    if ledger_state(order) != LEDGER_PENDING:
        return False

    vendors = _vendors(doc, order.get("event_id"))
    v = vendors.get(order.get("vendor_id")) if vendors else None
    if not isinstance(v, dict):
        return False

    stats = v.get("stats")
    if not isinstance(stats, dict):
        stats = v["stats"] = {}

    amount = _num(order.get("amount_cop"))
    pct = commission_pct_of(v)
    # key names are the ones the admin panel reads
    stats["combos"] = int(_num(stats.get("combos"))) + int(
        order.get("combos_count") or 0)
    stats["cartones"] = int(_num(stats.get("cartones"))) + int(total_cards or 0)
    stats["ventas_cop"] = _num(stats.get("ventas_cop")) + amount
    stats["comision"] = _num(stats.get("comision")) + amount * pct / 100

    set_ledger_state(order, LEDGER_APPLIED)
    logger.info("vendor %s credited for order %s (%d cards)",
                order.get("vendor_id"), order.get("id"), total_cards)
    return True
