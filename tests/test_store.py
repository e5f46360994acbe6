import asyncio
from datetime import datetime, timezone

import pytest

from dropline.repos.inmemory import InMemoryOrderStore, matches

pytestmark = pytest.mark.anyio

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _doc(order_id="ORD-1", **kw):
    doc = {
        "order_id": order_id,
        "customer_id": "C1",
        "status": "placed",
        "assigned_partner": None,
        "timestamps": {"placed": NOW},
    }
    doc.update(kw)
    return doc


async def test_matches_treats_none_as_unset():
    doc = {"a": None, "t": {"placed": NOW}}
    assert matches(doc, {"a": None})
    assert matches(doc, {"missing": None})
    assert matches(doc, {"t.accepted": None})
    assert not matches(doc, {"t.placed": None})
    assert matches(doc, {"t.placed": NOW})
    assert matches({"s": "accepted"}, {"s": {"$in": ["accepted", "picked_up"]}})
    assert not matches({"s": "placed"}, {"s": {"$in": ["accepted"]}})


async def test_conditional_update_applies_only_when_predicate_holds():
    store = InMemoryOrderStore()
    await store.insert_order(_doc())

    won = await store.conditional_update(
        "ORD-1", {"status": "placed", "assigned_partner": None},
        {"status": "accepted", "assigned_partner": "P1", "timestamps.accepted": NOW},
    )
    assert won["assigned_partner"] == "P1"
    assert won["timestamps"] == {"placed": NOW, "accepted": NOW}

    lost = await store.conditional_update(
        "ORD-1", {"status": "placed", "assigned_partner": None},
        {"status": "accepted", "assigned_partner": "P2"},
    )
    assert lost is None
    assert (await store.get_order("ORD-1"))["assigned_partner"] == "P1"


async def test_conditional_update_on_missing_order():
    store = InMemoryOrderStore()
    assert await store.conditional_update("nope", {}, {"status": "accepted"}) is None


async def test_returned_documents_are_copies():
    store = InMemoryOrderStore()
    doc = await store.insert_order(_doc())
    doc["status"] = "delivered"
    fetched = await store.get_order("ORD-1")
    fetched["timestamps"]["delivered"] = NOW
    assert await store.get_order("ORD-1") == _doc()


async def test_duplicate_order_id_rejected():
    store = InMemoryOrderStore()
    await store.insert_order(_doc())
    with pytest.raises(ValueError):
        await store.insert_order(_doc())


async def test_concurrent_conditional_updates_have_one_winner():
    store = InMemoryOrderStore()
    await store.insert_order(_doc())

    async def attempt(pid):
        return await store.conditional_update(
            "ORD-1", {"status": "placed", "assigned_partner": None},
            {"status": "accepted", "assigned_partner": pid},
        )

    results = await asyncio.gather(*(attempt(f"P{i}") for i in range(25)))
    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert (await store.get_order("ORD-1"))["assigned_partner"] == winners[0]["assigned_partner"]


async def test_list_and_count():
    store = InMemoryOrderStore()
    for i, status in enumerate(["placed", "accepted", "placed", "delivered"]):
        await store.insert_order(_doc(f"ORD-{i}", status=status,
                                      timestamps={"placed": datetime(2026, 1, 1, i, tzinfo=timezone.utc)}))

    placed = await store.list_orders({"status": "placed"})
    assert [d["order_id"] for d in placed] == ["ORD-2", "ORD-0"]  # newest first
    assert len(await store.list_orders({}, limit=3)) == 3
    assert await store.count_orders({"status": {"$in": ["accepted", "delivered"]}}) == 2
    assert await store.count_orders() == 4
