from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int = Field(..., ge=1)
    image_url: str = ""

class ShippingAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)

class OrderCreate(BaseModel):
    # Overrides the address stored on the user profile
    shipping_address: Optional[ShippingAddress] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class OrderResponse(BaseModel):
    id: str
    user_id: str
    items: List[OrderItem]
    total: float
    status: OrderStatus
    shipping_address: ShippingAddress
    created_at: datetime
    updated_at: datetime

# Views of sibling-service payloads the order workflow depends on
class CartSnapshot(BaseModel):
    items: List[OrderItem]
    total: float

class UserSnapshot(BaseModel):
    id: str
    address: Optional[dict] = None
