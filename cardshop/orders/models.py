from typing import Optional
from pydantic import BaseModel, Field


class CreateOrderRequest(BaseModel):
    product_id: int
    quantity: int = Field(default=1)
    points: int = Field(default=0, ge=0)
    contact: Optional[str] = Field(default=None, max_length=255)
