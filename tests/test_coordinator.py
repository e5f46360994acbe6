import asyncio

import pytest

from dropline.core.errors import Conflict, Forbidden, IllegalTransition, NoOp, NotFound
from dropline.services.coordinator import AssignmentCoordinator, new_order_id
from dropline.services.live_status import LiveStatusService
from factories import ADMIN, CUSTOMER, OTHER_CUSTOMER, P1, P2, order_payload

pytestmark = pytest.mark.anyio

FORWARD = ["picked_up", "in_transit", "delivered"]


async def _placed(coordinator, customer=CUSTOMER):
    return await coordinator.create_order(order_payload(), customer)


async def _claimed(coordinator, partner=P1):
    order = await _placed(coordinator)
    await coordinator.try_claim(order.order_id, partner.id, partner.email)
    return order.order_id


async def test_order_id_format():
    oid = new_order_id()
    prefix, ms, suffix = oid.split("-")
    assert prefix == "ORD" and ms.isdigit() and len(suffix) == 9


async def test_create_order(services):
    store, _, _, coordinator = services
    order = await _placed(coordinator)
    assert order.status == "placed"
    assert order.total == 7.5
    assert order.assigned_partner is None and order.locked is False
    assert set(order.timestamps) == {"placed"}
    assert order.customer_id == "C1" and order.customer_email == "c1@example.com"
    assert (await store.get_order(order.order_id))["status"] == "placed"


async def test_only_customers_create_orders(services):
    coordinator = services[3]
    with pytest.raises(Forbidden):
        await coordinator.create_order(order_payload(), P1)


async def test_single_claim_under_concurrency(services):
    store, _, _, coordinator = services
    order = await _placed(coordinator)
    partners = [f"P{i}" for i in range(30)]

    results = await asyncio.gather(
        *(coordinator.try_claim(order.order_id, pid) for pid in partners),
        return_exceptions=True,
    )
    wins = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, Conflict)]
    assert len(wins) == 1
    assert len(conflicts) == len(partners) - 1

    winner = wins[0].order.assigned_partner
    stored = await store.get_order(order.order_id)
    assert stored["assigned_partner"] == winner
    assert stored["lock_owner"] == winner and stored["locked"] is True
    assert all(c.claimed_by == winner for c in conflicts)


async def test_single_claim_across_coordinator_instances(services):
    store, bus, _, coordinator = services
    other = AssignmentCoordinator(store, LiveStatusService(store, bus))
    order = await _placed(coordinator)

    results = await asyncio.gather(
        coordinator.try_claim(order.order_id, "P1"),
        other.try_claim(order.order_id, "P2"),
        coordinator.try_claim(order.order_id, "P3"),
        other.try_claim(order.order_id, "P4"),
        return_exceptions=True,
    )
    assert sum(not isinstance(r, Exception) for r in results) == 1


async def test_claim_success_sets_fields_together(services):
    coordinator = services[3]
    order = await _placed(coordinator)
    result = await coordinator.try_claim(order.order_id, "P1", "p1@example.com")
    o = result.order
    assert o.status == "accepted"
    assert o.assigned_partner == o.lock_owner == "P1"
    assert o.partner_email == "p1@example.com"
    assert o.timestamps["accepted"] >= o.timestamps["placed"]


async def test_claim_conflict_distinguishes_taken_from_unavailable(services):
    coordinator = services[3]
    taken = await _claimed(coordinator, P1)
    with pytest.raises(Conflict) as exc:
        await coordinator.try_claim(taken, "P2")
    assert exc.value.claimed_by == "P1"
    assert exc.value.status == "accepted"

    gone = await _placed(coordinator)
    await coordinator.cancel_order(gone.order_id, CUSTOMER)
    with pytest.raises(Conflict) as exc:
        await coordinator.try_claim(gone.order_id, "P2")
    assert exc.value.claimed_by is None
    assert exc.value.status == "cancelled"


async def test_claim_unknown_order(services):
    with pytest.raises(NotFound):
        await services[3].try_claim("ORD-404", "P1")


async def test_claim_requires_partner(services):
    coordinator = services[3]
    order = await _placed(coordinator)
    with pytest.raises(Forbidden):
        await coordinator.try_claim(order.order_id, "")
    with pytest.raises(Forbidden):
        await coordinator.claim_order(order.order_id, CUSTOMER)


async def test_full_lifecycle_is_monotonic(services):
    coordinator = services[3]
    oid = await _claimed(coordinator, P1)
    seen = [(await coordinator.snapshot(oid, ADMIN)).order.status]
    for status in FORWARD:
        result = await coordinator.advance_status(oid, "P1", status)
        assert result.previous == seen[-1]
        seen.append((await coordinator.snapshot(oid, ADMIN)).order.status)
    assert seen == ["accepted", "picked_up", "in_transit", "delivered"]
    final = (await coordinator.snapshot(oid, ADMIN)).order
    assert set(final.timestamps) == {"placed", "accepted", "picked_up", "in_transit", "delivered"}


async def test_timestamps_written_once(services):
    store, _, _, coordinator = services
    oid = await _claimed(coordinator, P1)
    await coordinator.advance_status(oid, "P1", "picked_up")
    first = (await store.get_order(oid))["timestamps"]["picked_up"]

    for _ in range(3):
        with pytest.raises(NoOp):
            await coordinator.advance_status(oid, "P1", "picked_up")
    assert (await store.get_order(oid))["timestamps"]["picked_up"] == first


async def test_forbidden_for_other_partner_leaves_order_untouched(services):
    store, _, _, coordinator = services
    oid = await _claimed(coordinator, P1)
    before = await store.get_order(oid)
    for status in FORWARD + ["accepted", "cancelled"]:
        with pytest.raises(Forbidden):
            await coordinator.advance_status(oid, "P2", status)
    assert await store.get_order(oid) == before


async def test_advance_on_unclaimed_order_is_forbidden(services):
    coordinator = services[3]
    order = await _placed(coordinator)
    with pytest.raises(Forbidden):
        await coordinator.advance_status(order.order_id, "P1", "picked_up")


async def test_illegal_transition_leaves_order_unchanged(services):
    store, _, _, coordinator = services
    oid = await _claimed(coordinator, P1)
    before = await store.get_order(oid)
    with pytest.raises(IllegalTransition):
        await coordinator.advance_status(oid, "P1", "delivered")
    with pytest.raises(IllegalTransition):
        await coordinator.advance_status(oid, "P1", "cancelled")
    assert await store.get_order(oid) == before


async def test_terminal_orders_never_change(services):
    store, _, _, coordinator = services
    oid = await _claimed(coordinator, P1)
    for status in FORWARD:
        await coordinator.advance_status(oid, "P1", status)
    before = await store.get_order(oid)

    with pytest.raises(NoOp):
        await coordinator.advance_status(oid, "P1", "delivered")
    with pytest.raises(IllegalTransition):
        await coordinator.advance_status(oid, "P1", "in_transit")
    with pytest.raises(IllegalTransition):
        await coordinator.cancel_order(oid, ADMIN)
    with pytest.raises(Conflict):
        await coordinator.try_claim(oid, "P2")
    assert await store.get_order(oid) == before


async def test_cancel_rules(services):
    coordinator = services[3]

    placed = await _placed(coordinator)
    with pytest.raises(Forbidden):
        await coordinator.cancel_order(placed.order_id, OTHER_CUSTOMER)
    with pytest.raises(Forbidden):
        await coordinator.cancel_order(placed.order_id, P1)
    result = await coordinator.cancel_order(placed.order_id, CUSTOMER)
    assert result.order.status == "cancelled" and result.previous == "placed"
    assert result.order.assigned_partner is None
    with pytest.raises(NoOp):
        await coordinator.cancel_order(placed.order_id, CUSTOMER)

    accepted = await _claimed(coordinator, P1)
    result = await coordinator.cancel_order(accepted, P1)
    assert result.order.status == "cancelled"
    assert result.order.assigned_partner == "P1"

    moving = await _claimed(coordinator, P2)
    await coordinator.advance_status(moving, "P2", "picked_up")
    with pytest.raises(IllegalTransition):
        await coordinator.cancel_order(moving, ADMIN)


async def test_cancel_on_stale_read_loses_to_claim(racy_services):
    store, _, _, coordinator = racy_services
    order = await _placed(coordinator)
    # cancel reads "placed", yields, the claim lands, then the cancel's write is refused
    cancel, claim = await asyncio.gather(
        coordinator.cancel_order(order.order_id, CUSTOMER),
        coordinator.try_claim(order.order_id, "P1"),
        return_exceptions=True,
    )
    assert isinstance(cancel, Conflict)
    assert cancel.claimed_by == "P1"
    assert claim.order.assigned_partner == "P1"
    stored = await store.get_order(order.order_id)
    assert stored["status"] == "accepted"
    assert "cancelled" not in stored["timestamps"]


async def test_stale_advances_resolve_to_one_write(racy_services):
    store, _, _, coordinator = racy_services
    oid = await _claimed(coordinator, P1)
    results = await asyncio.gather(
        *(coordinator.advance_status(oid, "P1", "picked_up") for _ in range(5)),
        return_exceptions=True,
    )
    # every caller read "accepted"; the store let exactly one through
    assert sum(not isinstance(r, Exception) for r in results) == 1
    assert all(isinstance(r, NoOp) for r in results if isinstance(r, Exception))
    assert (await store.get_order(oid))["status"] == "picked_up"


async def test_read_models(services):
    coordinator = services[3]
    a = await _placed(coordinator)
    b = await _claimed(coordinator, P1)
    await coordinator.create_order(order_payload(), OTHER_CUSTOMER)
    await coordinator.advance_status(b, "P1", "picked_up")

    claimable = await coordinator.list_claimable(P2)
    assert a.order_id in [o.order_id for o in claimable]
    assert b not in [o.order_id for o in claimable]
    assert len(await coordinator.list_for_customer(CUSTOMER)) == 2
    assert [o.order_id for o in await coordinator.list_assigned(P1)] == [b]
    assert len(await coordinator.list_all(ADMIN)) == 3
    assert len(await coordinator.list_all(ADMIN, "placed")) == 2

    stats = await coordinator.partner_stats(P1)
    assert stats == {"total_orders": 1, "completed_orders": 0, "active_orders": 1, "completion_rate": 0.0}

    dash = await coordinator.dashboard(ADMIN)
    assert dash["stats"]["total_orders"] == 3
    assert dash["stats"]["pending_orders"] == 2
    assert dash["stats"]["active_orders"] == 1
    assert len(dash["recent_orders"]) == 3

    with pytest.raises(Forbidden):
        await coordinator.dashboard(P1)
    with pytest.raises(Forbidden):
        await coordinator.get_order(a.order_id, OTHER_CUSTOMER)
    with pytest.raises(Forbidden):
        await coordinator.get_order(a.order_id, P1)
