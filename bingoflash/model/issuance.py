"""
Ticket issuance: turn a paid order into its cards, exactly once.

All of it runs inside one store transaction. The batch of tickets, the
advanced per-event serial counter, the vendor ledger update and the order's
move to TICKETS_ISSUED are persisted by a single save, or not at all.
"""
from __future__ import annotations
import logging
import random
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from .. import config
from ..errors import (
    ConflictError, IssuanceError, IssuanceExhaustedError, NotFoundError,
)
from ..helpers import now_utc, to_iso
from .cards import Cols, gen_cols, make_serial, sign
from .document import Document, OrderStatus, find_order, tickets_for_order
from .store import DocumentStore
from .ticketfiles import CardRenderer, render_card_files
from .vendors import apply_vendor_stats_once

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuanceResult:
    order_id: str
    total_cards: int
    idempotent: bool = False


def total_cards_for(order: dict) -> int:
    combos = int(order.get("combos_count") or 1)
    combo_size = int(order.get("combo_size") or config.DEFAULT_COMBO_SIZE)
    return combos * combo_size


def used_signatures(doc: Document, event_id: str) -> set:
    return {
        t["cols_signature"] for t in doc["tickets"]
        if t and t.get("event_id") == event_id and t.get("cols_signature")
    }


def _mark_issued(order: dict) -> None:
    if order.get("status") == OrderStatus.PAID:
        order["status"] = OrderStatus.TICKETS_ISSUED
        order["tickets_issued_at"] = to_iso(now_utc())


async def _card_files(renderer: CardRenderer, event_id: str, order: dict,
                      card_index: int, cols: Cols) -> tuple:
    try:
        files = await renderer(event_id, order, card_index, cols)
    except Exception:
        logger.exception("card files failed for order %s card %d",
                         order.get("id"), card_index + 1)
        return None, None
    if not files:
        return None, None
    return files.get("pdf_url"), files.get("jpg_url")


def _generate_batch(doc: Document, order: dict, total: int,
                    card_factory: Callable[..., Cols], rng,
                    safety_multiplier: int) -> list:
    """Unique grids for the whole order; raises before anything is kept."""
    event_id = order["event_id"]
    used = used_signatures(doc, event_id)
    accepted = []
    attempts = 0
    ceiling = total * safety_multiplier

    while len(accepted) < total and attempts < ceiling:
        attempts += 1
        cols = card_factory(rng)
        sig = sign(cols)
        if sig in used:
            continue
        used.add(sig)
        accepted.append((cols, sig))

    if len(accepted) < total:
        raise IssuanceExhaustedError(order["id"], total, len(accepted),
                                     attempts)
    return accepted


async def issue_tickets(
    store: DocumentStore,
    order_id: str,
    *,
    renderer: CardRenderer = render_card_files,
    card_factory: Callable[..., Cols] = gen_cols,
    rng=random,
    safety_multiplier: Optional[int] = None,
) -> IssuanceResult:
    """Generate and persist every card of a PAID order.

    Re-running for an order that already has tickets returns the existing
    count and only finishes bookkeeping (vendor ledger, TICKETS_ISSUED).

    Raises:
        NotFoundError: unknown order id.
        ConflictError: the order is not approved.
        IssuanceError: the order has no event.
        IssuanceExhaustedError: the retry ceiling was reached.
    """
    if safety_multiplier is None:
        safety_multiplier = config.ISSUANCE_SAFETY_MULTIPLIER

    async with store.transaction() as doc:
        order = find_order(doc, order_id)
        if order is None:
            raise NotFoundError("Order not found")

        existing = tickets_for_order(doc, order_id)
        if existing:
            apply_vendor_stats_once(doc, order, len(existing))
            _mark_issued(order)
            return IssuanceResult(order_id, len(existing), idempotent=True)

        if order.get("status") not in OrderStatus.APPROVED:
            raise ConflictError(
                f"order {order_id} is {order.get('status')}, not PAID"
            )
        event_id = order.get("event_id")
        if not event_id:
            raise IssuanceError("order.event_id is required to issue cards")

        total = total_cards_for(order)
        batch = _generate_batch(doc, order, total, card_factory, rng,
                                safety_multiplier)

        seq = int(doc["event_ticket_seq"].get(event_id) or 0)
        now = to_iso(now_utc())
        for card_index, (cols, sig) in enumerate(batch):
            seq += 1
            pdf_url, jpg_url = await _card_files(
                renderer, event_id, order, card_index, cols
            )
            doc["tickets"].append({
                "id": str(uuid.uuid4()),
                "serial": make_serial(event_id, seq, rng),
                "order_id": order_id,
                "event_id": event_id,
                "buyer_name": order.get("buyer_name") or None,
                "buyer_phone": order.get("buyer_phone") or None,
                "buyer_email": order.get("buyer_email") or None,
                "vendor_id": order.get("vendor_id") or None,
                "vendor_name": order.get("vendor_name") or None,
                "card_index": card_index,
                "cols": cols,
                "cols_signature": sig,
                "pdf_url": pdf_url,
                "jpg_url": jpg_url,
                "created_at": now,
            })

        doc["event_ticket_seq"][event_id] = seq
        apply_vendor_stats_once(doc, order, total)
        _mark_issued(order)

    logger.info("issued %d cards for order %s (event %s)",
                total, order_id, event_id)
    return IssuanceResult(order_id, total)
