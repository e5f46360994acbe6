# dropline/core/policy.py
ROLE_TOPICS = {
    "admin": ["admin", "order"],
    "partner": ["partners", "order"],
    "customer": ["customer", "order"],
}

def topic_kinds_for(role):
    return list(ROLE_TOPICS.get(role, []))

def auto_topics(principal):
    """Topics a live connection joins on connect, before any explicit subscribe."""
    if principal.role == "partner":
        return [("partners", None)]
    if principal.role == "admin":
        return [("admin", None)]
    if principal.role == "customer":
        return [("customer", principal.id)]
    return []

def can_follow_order(order, principal) -> bool:
    """Customer who placed it, partner holding it, or any admin."""
    if principal.role == "admin":
        return True
    if principal.role == "customer":
        return order.get("customer_id") == principal.id
    if principal.role == "partner":
        return bool(order.get("assigned_partner")) and order.get("assigned_partner") == principal.id
    return False
