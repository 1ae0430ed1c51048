from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from storefront.shared.security_config import sanitize_input

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    image_url: str = ""
    stock: int = Field(0, ge=0)

    @field_validator('name', 'description', 'category', mode='before')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    image_url: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)

    @field_validator('name', 'description', 'category', mode='before')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class StockAdjustment(BaseModel):
    # Negative values decrement; no floor is applied
    adjustment: int

class ProductResponse(BaseModel):
    id: str
    name: str
    description: str
    price: float
    category: str
    image_url: str
    stock: int
    created_at: datetime
    updated_at: Optional[datetime] = None
