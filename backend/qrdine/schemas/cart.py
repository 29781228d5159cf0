"""Cart request schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from qrdine.core.sanitize import sanitize_text


class AddOnSelection(BaseModel):
    add_on_id: str
    quantity: int = Field(default=1, ge=1, le=20)

    @field_validator("add_on_id", mode="before")
    @classmethod
    def _coerce_id(cls, v):
        return str(v) if v is not None else v


class CartItemCreate(BaseModel):
    """Add an item to the shared cart. Prices are never accepted from the client."""

    session_id: int = Field(..., gt=0)
    menu_item_id: int = Field(..., gt=0)
    quantity: int = Field(default=1, ge=1, le=99)
    variant_id: Optional[str] = None
    add_ons: List[AddOnSelection] = Field(default_factory=list, max_length=20)
    special_instructions: Optional[str] = Field(default=None, max_length=500)

    @field_validator("variant_id", mode="before")
    @classmethod
    def _coerce_variant(cls, v):
        return str(v) if v is not None else v

    @field_validator("special_instructions", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class CartItemUpdate(BaseModel):
    """New quantity for a cart line; zero or less removes it."""

    quantity: int = Field(..., le=99)
