import random

import pytest

from bingoflash.errors import ConflictError, IssuanceExhaustedError, NotFoundError
from bingoflash.model.document import OrderStatus, find_order, tickets_for_order
from bingoflash.model.issuance import issue_tickets, total_cards_for
from bingoflash.model.orders import apply_payment_confirmation, create_order

FIXED = [[1, 2, 3, 4, 5], [16, 17, 18, 19, 20], [31, 32, 0, 34, 35],
         [46, 47, 48, 49, 50], [61, 62, 63, 64, 65]]


async def _paid_order(store, offer_id="c2"):
    view = await create_order(
        store, event_id="VIERNES", offer_id=offer_id, buyer_name="Luis",
        buyer_phone="3001234567", format="DIGITAL",
    )
    async with store.transaction() as doc:
        order = find_order(doc, view["orderId"])
        order["status"] = OrderStatus.PAID
    return view["orderId"]


def test_total_cards_defaults():
    assert total_cards_for({}) == 6
    assert total_cards_for({"combos_count": 2, "combo_size": 6}) == 12


@pytest.mark.asyncio
async def test_two_combos_of_six_give_twelve_distinct_cards(store):
    order_id = await _paid_order(store)
    result = await issue_tickets(store, order_id, rng=random.Random(5))
    assert result.total_cards == 12
    assert result.idempotent is False

    async with store.snapshot() as doc:
        tickets = tickets_for_order(doc, order_id)
        order = find_order(doc, order_id)
        seq = doc["event_ticket_seq"]["VIERNES"]

    assert [t["card_index"] for t in tickets] == list(range(12))
    assert len({t["cols_signature"] for t in tickets}) == 12
    assert len({t["serial"] for t in tickets}) == 12
    assert all(t["serial"].startswith("BF-VIERNES-") for t in tickets)
    assert tickets[0]["buyer_name"] == "Luis"
    assert order["status"] == OrderStatus.TICKETS_ISSUED
    assert order["tickets_issued_at"]
    assert seq == 12


@pytest.mark.asyncio
async def test_reissue_returns_same_tickets(store):
    order_id = await _paid_order(store)
    await issue_tickets(store, order_id)
    async with store.snapshot() as doc:
        before = [t["id"] for t in tickets_for_order(doc, order_id)]

    again = await issue_tickets(store, order_id)
    assert again.idempotent is True
    assert again.total_cards == 12

    async with store.snapshot() as doc:
        after = [t["id"] for t in tickets_for_order(doc, order_id)]
        assert doc["event_ticket_seq"]["VIERNES"] == 12
    assert after == before


@pytest.mark.asyncio
async def test_exhaustion_persists_nothing(store):
    order_id = await _paid_order(store, offer_id="c1")

    with pytest.raises(IssuanceExhaustedError) as exc:
        await issue_tickets(store, order_id, card_factory=lambda rng: FIXED,
                            safety_multiplier=3)
    assert exc.value.requested == 6
    assert exc.value.created == 1
    assert exc.value.attempts == 18

    async with store.snapshot() as doc:
        assert doc["tickets"] == []
        assert doc["event_ticket_seq"] == {}
        assert find_order(doc, order_id)["status"] == OrderStatus.PAID


@pytest.mark.asyncio
async def test_existing_signatures_are_never_reused(store):
    first = await _paid_order(store, offer_id="c1")
    await issue_tickets(store, first)
    async with store.snapshot() as doc:
        taken = tickets_for_order(doc, first)[0]["cols"]
    second = await _paid_order(store, offer_id="c1")

    with pytest.raises(IssuanceExhaustedError) as exc:
        await issue_tickets(store, second, card_factory=lambda rng: taken)
    assert exc.value.created == 0
    assert exc.value.attempts == 120


@pytest.mark.asyncio
async def test_many_orders_never_share_a_signature(store):
    rng = random.Random(11)
    order_ids = [await _paid_order(store, offer_id="c10") for _ in range(5)]
    for order_id in order_ids:
        await issue_tickets(store, order_id, rng=rng)

    async with store.snapshot() as doc:
        sigs = [t["cols_signature"] for t in doc["tickets"]]
        assert len(sigs) == 300
        assert len(set(sigs)) == 300
        assert doc["event_ticket_seq"]["VIERNES"] == 300


@pytest.mark.asyncio
async def test_renderer_failure_is_not_fatal(store, caplog):
    async def broken_renderer(event_id, order, card_index, cols):
        raise RuntimeError("disk full")

    order_id = await _paid_order(store, offer_id="c1")
    result = await issue_tickets(store, order_id, renderer=broken_renderer)
    assert result.total_cards == 6
    assert "card files failed" in caplog.text

    async with store.snapshot() as doc:
        tickets = tickets_for_order(doc, order_id)
    assert len(tickets) == 6
    assert all(t["pdf_url"] is None and t["jpg_url"] is None for t in tickets)


@pytest.mark.asyncio
async def test_renderer_urls_are_stored(store):
    async def renderer(event_id, order, card_index, cols):
        return {"pdf_url": f"/files/{card_index}.pdf", "jpg_url": None}

    order_id = await _paid_order(store, offer_id="c1")
    await issue_tickets(store, order_id, renderer=renderer)
    async with store.snapshot() as doc:
        tickets = tickets_for_order(doc, order_id)
    assert tickets[3]["pdf_url"] == "/files/3.pdf"


@pytest.mark.asyncio
async def test_unpaid_and_unknown_orders_are_refused(store):
    view = await create_order(
        store, event_id="VIERNES", offer_id="c1", buyer_name="Luis",
        buyer_phone="3001234567", format="DIGITAL",
    )
    with pytest.raises(ConflictError):
        await issue_tickets(store, view["orderId"])
    with pytest.raises(NotFoundError):
        await issue_tickets(store, "nope")


@pytest.mark.asyncio
async def test_confirmation_of_issued_order_adds_nothing(store):
    order_id = await _paid_order(store, offer_id="c1")
    await apply_payment_confirmation(store, order_id)
    await apply_payment_confirmation(store, order_id)
    async with store.snapshot() as doc:
        assert len(doc["tickets"]) == 6
