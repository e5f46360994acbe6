# dropline/core/errors.py
from typing import Any, Dict, Optional


class CoordinatorError(Exception):
    """Base for every decision the coordinator returns instead of a result."""

    reason = "Error"
    status_code = 400

    def __init__(self, detail: str = "", **extra: Any):
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "detail": self.detail, **self.extra}


class NotFound(CoordinatorError):
    reason = "NotFound"
    status_code = 404


class Conflict(CoordinatorError):
    """Claim predicate failed: someone else holds the order, or it is no longer claimable."""

    reason = "Conflict"
    status_code = 409

    def __init__(self, detail: str = "", *, status: Optional[str] = None,
                 claimed_by: Optional[str] = None, **extra: Any):
        super().__init__(detail, status=status, claimed_by=claimed_by, **extra)
        self.status = status
        self.claimed_by = claimed_by


class IllegalTransition(CoordinatorError):
    reason = "IllegalTransition"
    status_code = 400


class NoOp(CoordinatorError):
    reason = "NoOp"
    status_code = 409


class Forbidden(CoordinatorError):
    reason = "Forbidden"
    status_code = 403


BY_REASON = {cls.reason: cls for cls in (NotFound, Conflict, IllegalTransition, NoOp, Forbidden)}


def from_reason(reason: str, detail: str = "", **extra: Any) -> CoordinatorError:
    return BY_REASON.get(reason, CoordinatorError)(detail, **extra)
