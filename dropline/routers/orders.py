# dropline/routers/orders.py
from typing import List
from fastapi import APIRouter, Depends

from dropline.core.security import get_current_principal, require_role
from dropline.deps import get_coordinator, get_live
from dropline.models.order import (
    AdvanceResult, ClaimResult, LocationIn, LocationSample, Order, OrderCreate,
    Principal, Snapshot, StatusIn,
)
from dropline.services.coordinator import AssignmentCoordinator
from dropline.services.live_status import LiveStatusService

router = APIRouter(prefix="/orders", tags=["orders"])

# Order creation normally arrives from the checkout flow; exposed here for it.
@router.post("/", response_model=Order, status_code=201)
async def create_order(
    data: OrderCreate,
    principal: Principal = Depends(require_role("customer")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.create_order(data, principal)

@router.get("/claimable", response_model=List[Order])
async def list_claimable(
    principal: Principal = Depends(require_role("partner", "admin")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_claimable(principal)

@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_order(order_id, principal)

@router.get("/{order_id}/snapshot", response_model=Snapshot)
async def snapshot(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.snapshot(order_id, principal)

@router.post("/{order_id}/claim", response_model=ClaimResult)
async def claim_order(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.claim_order(order_id, principal)

@router.post("/{order_id}/status", response_model=AdvanceResult)
async def advance_order(
    order_id: str,
    body: StatusIn,
    principal: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.advance_order(order_id, principal, body.status)

@router.post("/{order_id}/cancel", response_model=AdvanceResult)
async def cancel_order(
    order_id: str,
    principal: Principal = Depends(get_current_principal),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.cancel_order(order_id, principal)

@router.post("/{order_id}/location", response_model=LocationSample)
async def report_location(
    order_id: str,
    body: LocationIn,
    principal: Principal = Depends(require_role("partner")),
    live: LiveStatusService = Depends(get_live),
):
    return await live.report_location(order_id, principal.id, body)
