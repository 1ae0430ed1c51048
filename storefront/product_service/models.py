from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str = ""
    price: float
    category: str
    image_url: str = ""
    stock: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(populate_by_name=True)
