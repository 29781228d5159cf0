"""Order request schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from qrdine.core.sanitize import sanitize_text
from qrdine.models.order import OrderStatus
from qrdine.schemas.cart import AddOnSelection


class OrderItemCreate(BaseModel):
    menu_item_id: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1, le=99)
    variant_id: Optional[str] = None
    add_ons: List[AddOnSelection] = Field(default_factory=list)
    special_instructions: Optional[str] = Field(default=None, max_length=500)

    @field_validator("variant_id", mode="before")
    @classmethod
    def _coerce_variant(cls, v):
        return str(v) if v is not None else v

    @field_validator("special_instructions", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class OrderCreate(BaseModel):
    """Place an order. Without ``items`` the session's cart is ordered."""

    session_id: int = Field(..., gt=0)
    items: Optional[List[OrderItemCreate]] = Field(default=None, max_length=50)
    special_instructions: Optional[str] = Field(default=None, max_length=500)

    @field_validator("special_instructions", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("reason", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)
