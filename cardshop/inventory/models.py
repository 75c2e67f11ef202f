from typing import Optional
from pydantic import BaseModel, Field
from cardshop.schema.full_schema import ProductStatus


class ProductCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    # -1 = unlimited; card_mode products always get -1
    stock: int = Field(0, ge=-1)
    card_mode: bool = False
    purchase_limit: int = Field(0, ge=0)
    status: ProductStatus = ProductStatus.ON_SALE


class ProductUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=-1)
    card_mode: Optional[bool] = None
    purchase_limit: Optional[int] = Field(None, ge=0)
    status: Optional[ProductStatus] = None

    model_config = {"extra": "forbid"}


class AddCardsRequest(BaseModel):
    # one card per line
    content: str
