"""
Event administration: event fields, offers, admin PIN, panel state.

Events are created and edited from the admin panel and never deleted. The
panel keeps its own working state (vendors, generated cards, ...) as an
opaque object under event_states; only the vendor ledger looks inside it.
"""
from __future__ import annotations
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from .. import config
from ..errors import InvalidInputError, NotFoundError
from ..helpers import norm_str, now_utc, to_iso
from .document import Document, event_key, find_event, offers_for_event
from .reports import sales_locked_effective, sold_cards_breakdown, target_cards

MIN_PIN_LENGTH = 4

_STR_FIELDS = ("name", "location", "description", "flyer_url")
_NULLABLE_STR_FIELDS = ("date_time", "cantada_at")
_NUM_FIELDS = ("combo_size", "price_carton", "price_combo",
               "auto_target_cards", "target_cards")
_BOOL_FIELDS = ("is_active", "sales_locked")
_OFFER_STYLE_FIELDS = ("button_color", "button_text_color", "price_text_color",
                       "note_text_color", "badge_text")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and v == v


def upsert_event(doc: Document, event_id: str, fields: Dict[str, Any]) -> dict:
    """Create the event if needed and apply the well-typed fields only."""
    if not norm_str(event_id):
        raise InvalidInputError("Missing event id")
    event = find_event(doc, event_id)
    if event is None:
        event = {
            "id": norm_str(event_id),
            "name": "",
            "date_time": None,
            "combo_size": config.DEFAULT_COMBO_SIZE,
            "price_carton": 0,
            "admin_pin": None,
        }
        doc["events"].append(event)

    for k in _STR_FIELDS:
        if isinstance(fields.get(k), str):
            event[k] = fields[k]
    for k in _NULLABLE_STR_FIELDS:
        if k in fields and (fields[k] is None or isinstance(fields[k], str)):
            event[k] = fields[k]
    for k in _NUM_FIELDS:
        if _is_number(fields.get(k)):
            event[k] = fields[k]
    for k in _BOOL_FIELDS:
        if isinstance(fields.get(k), bool):
            event[k] = fields[k]
    if isinstance(fields.get("theme"), dict):
        event["theme"] = fields["theme"]
    return event


def _int_or(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def normalize_offer(event_id: str, raw: dict, index: int) -> dict:
    label = raw.get("label")
    offer = {
        "id": norm_str(raw.get("id"))
        or f"of_{event_id}_{int(time.time() * 1000)}_{index}",
        "event_id": event_id,
        "label": label.strip() if isinstance(label, str) and label.strip()
        else f"Combo {index + 1}",
        "combos_count": _int_or(raw.get("combos_count") or raw.get("combos"), 1),
        "price_cop": _int_or(raw.get("price_cop") or raw.get("price"), 0),
    }
    for k in _OFFER_STYLE_FIELDS:
        v = raw.get(k)
        offer[k] = v if isinstance(v, str) else None
    return offer


def replace_offers(doc: Document, event_id: str, offers: Any) -> List[dict]:
    if not isinstance(offers, list):
        raise InvalidInputError('"offers" must be a list')
    event = find_event(doc, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    if not all(isinstance(o, dict) for o in offers):
        raise InvalidInputError("every offer must be an object")

    eid = event["id"]
    normalized = [normalize_offer(eid, o, i) for i, o in enumerate(offers)]
    doc["offers"] = [o for o in doc["offers"]
                     if o and o.get("event_id") != eid]
    doc["offers"].extend(normalized)
    return normalized


def event_pin(doc: Document, event_id: Any) -> Optional[str]:
    event = find_event(doc, event_id)
    return (event or {}).get("admin_pin") or None


def set_event_pin(doc: Document, event_id: str, new_pin: Any) -> dict:
    pin = norm_str(new_pin)
    if len(pin) < MIN_PIN_LENGTH:
        raise InvalidInputError(
            f"new_pin is required (at least {MIN_PIN_LENGTH} characters)"
        )
    event = find_event(doc, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    event["admin_pin"] = pin
    return event


def get_event_state(doc: Document, event_id: str) -> dict:
    key = event_key(doc, event_id)
    entry = doc["event_states"].get(key)
    if entry is None:
        entry = doc["event_states"].get(event_id)
    entry = entry if isinstance(entry, dict) else {}
    event_id = key
    return {
        "event_id": event_id,
        "state": entry.get("state"),
        "updated_at": entry.get("updated_at"),
    }


def put_event_state(doc: Document, event_id: str, state: Any,
                    now: Optional[datetime] = None) -> dict:
    if state is not None and not isinstance(state, dict):
        raise InvalidInputError('"state" must be an object or null')
    event_id = event_key(doc, event_id)
    updated_at = to_iso(now or now_utc())
    doc["event_states"][event_id] = {"state": state, "updated_at": updated_at}
    return {"ok": True, "event_id": event_id, "updated_at": updated_at}


def public_event(event: dict) -> dict:
    return {k: v for k, v in event.items() if k != "admin_pin"}


def event_overview(doc: Document, event_id: Any,
                   now: Optional[datetime] = None) -> dict:
    """Event with its offers and sales figures, as the landing/panel use it."""
    event = find_event(doc, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    sold = sold_cards_breakdown(doc, event["id"])
    view = public_event(event)
    view.update({
        "sold_cards": sold["total"],
        "online_sold_cards": sold["online"],
        "manual_sold_cards": sold["manual"],
        "target_cards": target_cards(event),
        "sales_locked_effective": sales_locked_effective(event, now),
    })
    return {"event": view, "offers": offers_for_event(doc, event["id"])}
