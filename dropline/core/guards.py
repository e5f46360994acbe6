# dropline/core/guards.py
from dropline.core.errors import Forbidden
from dropline.core.policy import can_follow_order, topic_kinds_for

def ensure_role(principal, *roles):
    if principal.role not in roles:
        raise Forbidden(f"Requires role {' or '.join(roles)}")

def ensure_can_follow(order, principal):
    if not can_follow_order(order, principal):
        raise Forbidden("Not a party to this order", order_id=order.get("order_id"))

def ensure_topic_kind(kind, principal):
    if kind not in topic_kinds_for(principal.role):
        raise Forbidden(f"Role {principal.role} cannot subscribe to {kind}")
