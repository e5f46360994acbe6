from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime, timezone

Role = Literal["customer", "partner", "admin"]
Status = Literal["placed", "accepted", "picked_up", "in_transit", "delivered", "cancelled"]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# --------------------------
# Principal (already authenticated upstream)
# --------------------------
class Principal(BaseModel):
    id: str
    role: Role
    email: Optional[str] = None

# --------------------------
# Order payload
# --------------------------
class Item(BaseModel):
    product_id: str
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(ge=1)
    image: Optional[str] = None

class DeliveryAddress(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: str = Field(min_length=1)

class OrderCreate(BaseModel):
    items: List[Item] = Field(min_length=1)
    delivery_address: DeliveryAddress

class Order(BaseModel):
    order_id: str
    customer_id: str
    customer_email: Optional[str] = None
    items: List[Item]
    total: float
    delivery_address: DeliveryAddress
    status: Status = "placed"
    assigned_partner: Optional[str] = None
    partner_email: Optional[str] = None
    locked: bool = False
    lock_owner: Optional[str] = None
    timestamps: Dict[str, datetime] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# --------------------------
# Live tracking
# --------------------------
class LocationIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

class LocationSample(BaseModel):
    order_id: str
    lat: float
    lng: float
    status: Status
    observed_at: datetime

class Event(BaseModel):
    type: str
    order_id: Optional[str] = None
    data: Dict[str, Any] = {}
    at: datetime = Field(default_factory=utcnow)

# --------------------------
# Results
# --------------------------
class ClaimResult(BaseModel):
    order: Order

class AdvanceResult(BaseModel):
    order: Order
    previous: Status

class StatusIn(BaseModel):
    status: Status

class Snapshot(BaseModel):
    order: Order
    last_location: Optional[LocationSample] = None
