from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field

class CartItemDB(BaseModel):
    product_id: str
    name: str
    price: float # Snapshot at add time
    quantity: int = 1
    image_url: str = ""

class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartItemDB] = []
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(populate_by_name=True)
