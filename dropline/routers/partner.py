from typing import List
from fastapi import APIRouter, Depends

from dropline.core.security import require_role
from dropline.deps import get_coordinator
from dropline.models.order import Order, Principal
from dropline.services.coordinator import AssignmentCoordinator

router = APIRouter(prefix="/partner", tags=["partner"])

@router.get("/orders/available", response_model=List[Order])
async def available_orders(
    principal: Principal = Depends(require_role("partner")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_claimable(principal)

@router.get("/orders/assigned", response_model=List[Order])
async def assigned_orders(
    principal: Principal = Depends(require_role("partner")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_assigned(principal)

@router.get("/stats")
async def stats(
    principal: Principal = Depends(require_role("partner")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.partner_stats(principal)
