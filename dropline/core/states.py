# dropline/core/states.py
"""
Order status state machine.

Pure functions only: nothing here touches storage or the bus, so the
claim mechanism and the transition rules can be exercised separately.
"""
from typing import NamedTuple, Optional

PLACED = "placed"
ACCEPTED = "accepted"
PICKED_UP = "picked_up"
IN_TRANSIT = "in_transit"
DELIVERED = "delivered"
CANCELLED = "cancelled"

ORDER_STATES = [PLACED, ACCEPTED, PICKED_UP, IN_TRANSIT, DELIVERED, CANCELLED]
TERMINAL_STATES = {DELIVERED, CANCELLED}

# statuses a partner may request through advance_status
ADVANCE_STATES = [PICKED_UP, IN_TRANSIT, DELIVERED]

# who may drive each edge:
#   claimant  -> any partner identity (the claim itself)
#   assigned  -> only the order's assigned partner
#   canceller -> admin, owning customer, or the assigned partner
TRANSITIONS = {
    (PLACED,     ACCEPTED):   {"actor": "claimant"},
    (PLACED,     CANCELLED):  {"actor": "canceller"},
    (ACCEPTED,   PICKED_UP):  {"actor": "assigned"},
    (ACCEPTED,   CANCELLED):  {"actor": "canceller"},
    (PICKED_UP,  IN_TRANSIT): {"actor": "assigned"},
    (IN_TRANSIT, DELIVERED):  {"actor": "assigned"},
}

ALLOWED = "ok"
ILLEGAL_TRANSITION = "IllegalTransition"
NO_OP = "NoOp"
FORBIDDEN = "Forbidden"


class Verdict(NamedTuple):
    allowed: bool
    reason: str


def can_transition(src: str, dst: str) -> bool:
    return (src, dst) in TRANSITIONS


def allowed_next(src: str) -> list[str]:
    return [dst for (s, dst) in TRANSITIONS if s == src]


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATES


def _actor_kind(requested: str) -> str:
    if requested == ACCEPTED:
        return "claimant"
    if requested == CANCELLED:
        return "canceller"
    return "assigned"


def _identity_ok(
    kind: str,
    actor_id: Optional[str],
    actor_role: Optional[str],
    assigned_partner: Optional[str],
    customer_id: Optional[str],
) -> bool:
    if kind == "claimant":
        return bool(actor_id)
    if kind == "canceller":
        if actor_role == "admin":
            return True
        if actor_id and actor_id == customer_id:
            return True
    return bool(assigned_partner) and actor_id == assigned_partner


def next_state(
    current: str,
    requested: str,
    *,
    actor_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    assigned_partner: Optional[str] = None,
    customer_id: Optional[str] = None,
) -> Verdict:
    """
    Decide whether `current -> requested` may happen for this actor.

    Identity is checked before the NoOp / table checks, so a caller who is
    not entitled to move the order always gets Forbidden, whatever the
    order's current status.
    """
    if current not in ORDER_STATES or requested not in ORDER_STATES:
        return Verdict(False, ILLEGAL_TRANSITION)

    kind = _actor_kind(requested)
    if not _identity_ok(kind, actor_id, actor_role, assigned_partner, customer_id):
        return Verdict(False, FORBIDDEN)

    if requested == current:
        return Verdict(False, NO_OP)
    if not can_transition(current, requested):
        return Verdict(False, ILLEGAL_TRANSITION)
    return Verdict(True, ALLOWED)
