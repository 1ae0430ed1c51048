from pydantic import BaseModel, Field
from typing import List

class CartItemAdd(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)

class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)

class CartItemResponse(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    image_url: str = ""

class CartResponse(BaseModel):
    items: List[CartItemResponse]
    total: float
