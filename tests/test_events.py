import pytest

from bingoflash.errors import InvalidInputError, NotFoundError
from bingoflash.model.document import seed_document
from bingoflash.model.events import (
    event_overview, event_pin, get_event_state, put_event_state,
    replace_offers, set_event_pin, upsert_event,
)


def test_upsert_creates_event_with_defaults():
    doc = seed_document()
    event = upsert_event(doc, "SABADO", {"name": "Sabado", "combo_size": 4})
    assert event["id"] == "SABADO"
    assert event["combo_size"] == 4
    assert event["admin_pin"] is None
    assert len(doc["events"]) == 2


def test_upsert_applies_only_well_typed_fields():
    doc = seed_document()
    event = upsert_event(doc, "viernes", {
        "name": 42,
        "combo_size": "7",
        "sales_locked": "yes",
        "is_active": True,
        "cantada_at": None,
        "theme": {"bg": "#000"},
        "price_combo": 6000,
        "admin_pin": "0000",
    })
    assert event["name"] == "Bingo Flash Tradicional"
    assert event["combo_size"] == 6
    assert "sales_locked" not in event
    assert event["is_active"] is True
    assert event["cantada_at"] is None
    assert event["theme"] == {"bg": "#000"}
    assert event["price_combo"] == 6000
    assert event["admin_pin"] is None
    assert len(doc["events"]) == 1


def test_replace_offers_normalises():
    doc = seed_document()
    offers = replace_offers(doc, "VIERNES", [
        {"id": "x1", "label": "  Doble ", "combos": "2", "price": 11000},
        {"button_color": "#f00", "badge_text": 3},
    ])
    assert offers[0] == {
        "id": "x1", "event_id": "VIERNES", "label": "Doble",
        "combos_count": 2, "price_cop": 11000, "button_color": None,
        "button_text_color": None, "price_text_color": None,
        "note_text_color": None, "badge_text": None,
    }
    assert offers[1]["id"].startswith("of_VIERNES_")
    assert offers[1]["label"] == "Combo 2"
    assert offers[1]["combos_count"] == 1
    assert offers[1]["button_color"] == "#f00"
    assert [o["id"] for o in doc["offers"]] == ["x1", offers[1]["id"]]


def test_replace_offers_errors():
    doc = seed_document()
    with pytest.raises(InvalidInputError):
        replace_offers(doc, "VIERNES", {"id": "x"})
    with pytest.raises(NotFoundError):
        replace_offers(doc, "NOPE", [])


def test_set_event_pin():
    doc = seed_document()
    with pytest.raises(InvalidInputError):
        set_event_pin(doc, "VIERNES", " 12 ")
    with pytest.raises(NotFoundError):
        set_event_pin(doc, "NOPE", "1234")
    set_event_pin(doc, "viernes", " 4321 ")
    assert event_pin(doc, "VIERNES") == "4321"


def test_event_state_round_trip():
    doc = seed_document()
    assert get_event_state(doc, "VIERNES")["state"] is None

    body = put_event_state(doc, "VIERNES", {"generated": [1, 2]})
    assert body["ok"] is True
    got = get_event_state(doc, "VIERNES")
    assert got["state"] == {"generated": [1, 2]}
    assert got["updated_at"] == body["updated_at"]

    put_event_state(doc, "VIERNES", None)
    assert get_event_state(doc, "VIERNES")["state"] is None

    with pytest.raises(InvalidInputError):
        put_event_state(doc, "VIERNES", [1, 2])


def test_event_state_is_keyed_by_stored_event_id():
    doc = seed_document()
    body = put_event_state(doc, "viernes", {"vendors": {}})
    assert body["event_id"] == "VIERNES"
    assert list(doc["event_states"]) == ["VIERNES"]
    assert get_event_state(doc, "Viernes")["state"] == {"vendors": {}}

    # unknown events keep the id they were given
    put_event_state(doc, "sabado", {})
    assert "sabado" in doc["event_states"]


def test_overview_hides_pin_and_reports_sales():
    doc = seed_document()
    set_event_pin(doc, "VIERNES", "9999")
    doc["events"][0]["target_cards"] = 1000
    body = event_overview(doc, "viernes")
    event = body["event"]
    assert "admin_pin" not in event
    assert event["sold_cards"] == 0
    assert event["target_cards"] == 1000
    assert event["sales_locked_effective"] is False
    assert [o["id"] for o in body["offers"]] == ["c1", "c2", "c5", "c10"]

    with pytest.raises(NotFoundError):
        event_overview(doc, "NOPE")
