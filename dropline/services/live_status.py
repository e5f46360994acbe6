# dropline/services/live_status.py
from datetime import timedelta
from typing import Dict, Optional

import structlog

from dropline.core.errors import NotFound, Forbidden
from dropline.core.guards import ensure_can_follow, ensure_topic_kind
from dropline.core.states import PLACED, CANCELLED, is_terminal
from dropline.models.order import Event, LocationIn, LocationSample, Order, Principal, utcnow
from dropline.services.bus import (
    ADMIN, PARTNERS, Sink, Subscription, TopicBus, customer_topic, order_topic, topic_name,
)

logger = structlog.get_logger(__name__)


class LiveStatusService:
    """
    Turns order outcomes into topic events and keeps the last known
    location of every active order for clients that join late.

    The location cache belongs to this instance: an entry appears with the
    first report for an order, is overwritten by each later report and is
    evicted when the order reaches a terminal status. A report that races
    the final transition is dropped, never published after it.
    """

    def __init__(self, store, bus: TopicBus, eta_minutes: int = 30):
        self.store = store
        self.bus = bus
        self.eta_minutes = eta_minutes
        self._locations: Dict[str, LocationSample] = {}

    # ---------- fan-out ----------
    def order_created(self, order: Order) -> None:
        data = {
            "customer_email": order.customer_email,
            "total": order.total,
            "items": [i.model_dump() for i in order.items],
            "delivery_address": order.delivery_address.model_dump(),
            "placed_at": order.timestamps.get(PLACED),
        }
        self.bus.publish(PARTNERS, Event(type="order_available", order_id=order.order_id, data=data))
        self.bus.publish(ADMIN, Event(type="order_created", order_id=order.order_id, data=data))

    def order_claimed(self, order: Order) -> None:
        at = order.timestamps.get("accepted") or utcnow()
        oid = order.order_id
        self.bus.publish(PARTNERS, Event(type="order_removed", order_id=oid))
        self.bus.publish(ADMIN, Event(type="order_assigned", order_id=oid, data={
            "partner_id": order.assigned_partner,
            "partner_email": order.partner_email,
            "customer_email": order.customer_email,
            "at": at,
        }))
        self.bus.publish(customer_topic(order.customer_id), Event(type="order_accepted", order_id=oid, data={
            "partner_id": order.assigned_partner,
            "partner_email": order.partner_email,
            "estimated_delivery": at + timedelta(minutes=self.eta_minutes),
        }))
        self.bus.publish(order_topic(oid), self._status_event(order, PLACED))

    def status_changed(self, order: Order, previous: str) -> None:
        event = self._status_event(order, previous)
        self.bus.publish(order_topic(order.order_id), event)
        self.bus.publish(customer_topic(order.customer_id), event)
        self.bus.publish(ADMIN, event)
        if order.status == CANCELLED and previous == PLACED:
            # was still on every partner's available list
            self.bus.publish(PARTNERS, Event(type="order_removed", order_id=order.order_id))
        if is_terminal(order.status):
            self.evict(order.order_id)

    def _status_event(self, order: Order, previous: str) -> Event:
        return Event(type="status_changed", order_id=order.order_id, data={
            "status": order.status,
            "previous": previous,
            "partner_id": order.assigned_partner,
            "at": order.timestamps.get(order.status),
        })

    # ---------- location ----------
    async def report_location(self, order_id: str, partner_id: str, location: LocationIn) -> LocationSample:
        doc = await self.store.get_order(order_id)
        if doc is None:
            raise NotFound("Order not found", order_id=order_id)
        if not doc.get("assigned_partner") or doc["assigned_partner"] != partner_id:
            raise Forbidden("Only the assigned partner may report location", order_id=order_id)
        if is_terminal(doc["status"]):
            raise Forbidden("Order is closed", order_id=order_id, status=doc["status"])

        sample = LocationSample(order_id=order_id, lat=location.lat, lng=location.lng,
                                status=doc["status"], observed_at=utcnow())
        self._locations[order_id] = sample
        # the order may have closed while we were reading it: confirm before anyone sees the sample
        fresh = await self.store.get_order(order_id)
        if order_id not in self._locations or fresh is None or is_terminal(fresh["status"]):
            self.evict(order_id)
            raise Forbidden("Order is closed", order_id=order_id,
                            status=fresh["status"] if fresh else None)
        event = Event(type="location_update", order_id=order_id, data=sample.model_dump())
        self.bus.publish(order_topic(order_id), event)
        self.bus.publish(customer_topic(doc["customer_id"]), event)
        return sample

    def current_snapshot(self, order_id: str) -> Optional[LocationSample]:
        return self._locations.get(order_id)

    def evict(self, order_id: str) -> None:
        if self._locations.pop(order_id, None) is not None:
            logger.debug("Location evicted", order_id=order_id)

    def tracked_orders(self) -> int:
        return len(self._locations)

    # ---------- subscriptions ----------
    async def subscribe(self, kind: str, key: Optional[str], principal: Principal, sink: Sink) -> Subscription:
        """
        customer:<id> only as that customer, order:<id> for a party to the
        order, partners/admin only with the matching role.
        """
        ensure_topic_kind(kind, principal)
        if kind == "customer" and key != principal.id:
            raise Forbidden("Customers may only follow their own topic")
        if kind == "order":
            doc = await self.store.get_order(key) if key else None
            if doc is None:
                raise NotFound("Order not found", order_id=key)
            ensure_can_follow(doc, principal)
        sub = self.bus.subscribe(topic_name(kind, key), sink)
        logger.info("Live subscription opened", topic=sub.topic, principal=principal.id, role=principal.role)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        self.bus.unsubscribe(sub)
