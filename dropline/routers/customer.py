from typing import List
from fastapi import APIRouter, Depends

from dropline.core.security import require_role
from dropline.deps import get_coordinator
from dropline.models.order import Order, Principal
from dropline.services.coordinator import AssignmentCoordinator

router = APIRouter(prefix="/customer", tags=["customer"])

@router.get("/orders", response_model=List[Order])
async def my_orders(
    principal: Principal = Depends(require_role("customer")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_for_customer(principal)

@router.get("/orders/{order_id}", response_model=Order)
async def my_order(
    order_id: str,
    principal: Principal = Depends(require_role("customer")),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
):
    return await coordinator.get_order(order_id, principal)
