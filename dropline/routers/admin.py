from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from dropline.core.security import require_role
from dropline.deps import get_coordinator
from dropline.models.order import Order, Principal, Status
from dropline.services.coordinator import AssignmentCoordinator

router = APIRouter(prefix="/admin", tags=["admin"])

@router.get("/orders", response_model=List[Order])
async def all_orders(
    status: Optional[Status] = Query(None),
    principal: Principal = Depends(require_role("admin")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_all(principal, status)

@router.get("/dashboard")
async def dashboard(
    principal: Principal = Depends(require_role("admin")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.dashboard(principal)
