# dropline/services/coordinator.py
import random
import string
import time
from typing import List, Optional

import structlog

from dropline.core.errors import Conflict, Forbidden, IllegalTransition, NotFound, from_reason
from dropline.core.guards import ensure_can_follow, ensure_role
from dropline.core.states import (
    ACCEPTED, ADVANCE_STATES, CANCELLED, DELIVERED, IN_TRANSIT, PICKED_UP, PLACED,
    is_terminal, next_state,
)
from dropline.models.order import (
    AdvanceResult, ClaimResult, Order, OrderCreate, Principal, Snapshot, utcnow,
)
from dropline.services.live_status import LiveStatusService

logger = structlog.get_logger(__name__)

ACTIVE_STATES = [ACCEPTED, PICKED_UP, IN_TRANSIT]

_B36 = string.digits + string.ascii_lowercase

def new_order_id() -> str:
    suffix = "".join(random.choices(_B36, k=9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


class AssignmentCoordinator:
    """
    Owns every mutation of an order after creation.

    Each mutation is one conditional update on the store whose predicate
    restates what the caller believed about the order. Nothing is locked
    beforehand: if the predicate no longer holds the store refuses the
    write, and the order is re-read only to explain the refusal.
    """

    def __init__(self, store, live: LiveStatusService):
        self.store = store
        self.live = live

    # ---------- creation & reads ----------
    async def create_order(self, payload: OrderCreate, principal: Principal) -> Order:
        ensure_role(principal, "customer")
        now = utcnow()
        total = round(sum(i.price * i.quantity for i in payload.items), 2)
        doc = {
            "order_id": new_order_id(),
            "customer_id": principal.id,
            "customer_email": principal.email,
            "items": [i.model_dump() for i in payload.items],
            "total": total,
            "delivery_address": payload.delivery_address.model_dump(),
            "status": PLACED,
            "assigned_partner": None,
            "partner_email": None,
            "locked": False,
            "lock_owner": None,
            "timestamps": {PLACED: now},
            "created_at": now,
            "updated_at": now,
        }
        await self.store.insert_order(doc)
        order = Order.model_validate(doc)
        logger.info("Order created", order_id=order.order_id, customer_id=principal.id, total=total)
        self.live.order_created(order)
        return order

    async def _load(self, order_id: str) -> dict:
        doc = await self.store.get_order(order_id)
        if doc is None:
            raise NotFound("Order not found", order_id=order_id)
        return doc

    async def get_order(self, order_id: str, principal: Principal) -> Order:
        doc = await self._load(order_id)
        ensure_can_follow(doc, principal)
        return Order.model_validate(doc)

    async def list_claimable(self, principal: Principal) -> List[Order]:
        # display only: may be stale, the claim itself decides
        ensure_role(principal, "partner", "admin")
        docs = await self.store.list_orders({"status": PLACED})
        return [Order.model_validate(d) for d in docs]

    async def list_for_customer(self, principal: Principal) -> List[Order]:
        ensure_role(principal, "customer")
        docs = await self.store.list_orders({"customer_id": principal.id})
        return [Order.model_validate(d) for d in docs]

    async def list_assigned(self, principal: Principal) -> List[Order]:
        ensure_role(principal, "partner")
        docs = await self.store.list_orders({"assigned_partner": principal.id})
        return [Order.model_validate(d) for d in docs]

    async def list_all(self, principal: Principal, status: Optional[str] = None) -> List[Order]:
        ensure_role(principal, "admin")
        docs = await self.store.list_orders({"status": status} if status else {})
        return [Order.model_validate(d) for d in docs]

    async def snapshot(self, order_id: str, principal: Principal) -> Snapshot:
        doc = await self._load(order_id)
        ensure_can_follow(doc, principal)
        order = Order.model_validate(doc)
        last = None if is_terminal(order.status) else self.live.current_snapshot(order_id)
        return Snapshot(order=order, last_location=last)

    # ---------- claim ----------
    async def try_claim(self, order_id: str, partner_id: str, partner_email: Optional[str] = None) -> ClaimResult:
        verdict = next_state(PLACED, ACCEPTED, actor_id=partner_id)
        if not verdict.allowed:
            raise Forbidden("A partner identity is required to claim", order_id=order_id)

        now = utcnow()
        doc = await self.store.conditional_update(
            order_id,
            {"status": PLACED, "assigned_partner": None},
            {
                "status": ACCEPTED,
                "assigned_partner": partner_id,
                "partner_email": partner_email,
                "locked": True,
                "lock_owner": partner_id,
                f"timestamps.{ACCEPTED}": now,
                "updated_at": now,
            },
        )
        if doc is None:
            current = await self._load(order_id)
            claimed_by = current.get("assigned_partner")
            logger.info("Claim conflict", order_id=order_id, partner_id=partner_id,
                        status=current["status"], claimed_by=claimed_by)
            if claimed_by:
                raise Conflict("Order already claimed by another partner",
                               status=current["status"], claimed_by=claimed_by, order_id=order_id)
            raise Conflict("Order is no longer available", status=current["status"], order_id=order_id)

        order = Order.model_validate(doc)
        logger.info("Order claimed", order_id=order_id, partner_id=partner_id)
        self.live.order_claimed(order)
        return ClaimResult(order=order)

    async def claim_order(self, order_id: str, principal: Principal) -> ClaimResult:
        ensure_role(principal, "partner")
        return await self.try_claim(order_id, principal.id, principal.email)

    # ---------- advance ----------
    async def advance_status(self, order_id: str, partner_id: str, requested: str) -> AdvanceResult:
        doc = await self._load(order_id)
        current = doc["status"]
        assigned = doc.get("assigned_partner")
        if requested not in ADVANCE_STATES:
            # claim and cancel have their own entry points
            if not assigned or assigned != partner_id:
                raise Forbidden("Only the assigned partner may update this order", order_id=order_id)
            raise IllegalTransition(f"{requested} is not reached through a status update",
                                    order_id=order_id, status=current)
        verdict = next_state(current, requested, actor_id=partner_id, assigned_partner=assigned)
        if not verdict.allowed:
            raise from_reason(verdict.reason, f"{current} -> {requested} rejected",
                              order_id=order_id, status=current)

        updated = await self._transition(
            order_id, current, requested,
            {"status": current, "assigned_partner": partner_id},
        )
        if updated is None:
            fresh = await self._load(order_id)
            verdict = next_state(fresh["status"], requested, actor_id=partner_id,
                                 assigned_partner=fresh.get("assigned_partner"))
            reason = verdict.reason if not verdict.allowed else Conflict.reason
            raise from_reason(reason, f"Order moved to {fresh['status']} concurrently",
                              order_id=order_id, status=fresh["status"])

        order = Order.model_validate(updated)
        log = logger.bind(order_id=order_id, partner_id=partner_id)
        log.info("Order status advanced", previous=current, status=requested)
        if requested == DELIVERED:
            log.info("Order delivered")
        self.live.status_changed(order, current)
        return AdvanceResult(order=order, previous=current)

    async def advance_order(self, order_id: str, principal: Principal, status: str) -> AdvanceResult:
        ensure_role(principal, "partner")
        return await self.advance_status(order_id, principal.id, status)

    # ---------- cancel ----------
    async def cancel_order(self, order_id: str, principal: Principal) -> AdvanceResult:
        doc = await self._load(order_id)
        current = doc["status"]
        assigned = doc.get("assigned_partner")
        verdict = next_state(current, CANCELLED, actor_id=principal.id, actor_role=principal.role,
                             assigned_partner=assigned, customer_id=doc.get("customer_id"))
        if not verdict.allowed:
            raise from_reason(verdict.reason, f"{current} -> {CANCELLED} rejected",
                              order_id=order_id, status=current)

        # keyed on the partner we saw too, so a claim racing the cancel wins or loses cleanly
        updated = await self._transition(
            order_id, current, CANCELLED,
            {"status": current, "assigned_partner": assigned},
        )
        if updated is None:
            fresh = await self._load(order_id)
            raise Conflict("Order changed while cancelling", status=fresh["status"],
                           claimed_by=fresh.get("assigned_partner"), order_id=order_id)

        order = Order.model_validate(updated)
        logger.info("Order cancelled", order_id=order_id, by=principal.id, role=principal.role, previous=current)
        self.live.status_changed(order, current)
        return AdvanceResult(order=order, previous=current)

    async def _transition(self, order_id: str, current: str, requested: str, expected: dict) -> Optional[dict]:
        now = utcnow()
        return await self.store.conditional_update(
            order_id,
            {**expected, f"timestamps.{requested}": None},
            {"status": requested, f"timestamps.{requested}": now, "updated_at": now},
        )

    # ---------- stats ----------
    async def partner_stats(self, principal: Principal) -> dict:
        ensure_role(principal, "partner")
        mine = {"assigned_partner": principal.id}
        total = await self.store.count_orders(mine)
        completed = await self.store.count_orders({**mine, "status": DELIVERED})
        active = await self.store.count_orders({**mine, "status": {"$in": ACTIVE_STATES}})
        return {
            "total_orders": total,
            "completed_orders": completed,
            "active_orders": active,
            "completion_rate": round(completed / total * 100, 1) if total else 0.0,
        }

    async def dashboard(self, principal: Principal) -> dict:
        ensure_role(principal, "admin")
        count = self.store.count_orders
        recent = await self.store.list_orders({}, limit=5)
        return {
            "stats": {
                "total_orders": await count({}),
                "pending_orders": await count({"status": PLACED}),
                "active_orders": await count({"status": {"$in": ACTIVE_STATES}}),
                "completed_orders": await count({"status": DELIVERED}),
                "cancelled_orders": await count({"status": CANCELLED}),
            },
            "recent_orders": [
                {
                    "order_id": d["order_id"],
                    "customer_email": d.get("customer_email"),
                    "status": d["status"],
                    "total": d["total"],
                    "placed_at": d["timestamps"].get(PLACED),
                    "partner_email": d.get("partner_email"),
                }
                for d in recent
            ],
        }
