from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

class OrderItemDB(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    image_url: str = ""

class ShippingAddressDB(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    country: str

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[OrderItemDB]
    total: float
    status: str = "pending" # pending, processing, shipped, delivered, cancelled
    shipping_address: ShippingAddressDB
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(populate_by_name=True)
