"""Payment and session settlement schemas."""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from qrdine.core.sanitize import sanitize_text
from qrdine.models.billing import PaymentMethod


class PaymentCreate(BaseModel):
    session_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., max_digits=10, decimal_places=2)
    method: PaymentMethod
    transaction_id: Optional[str] = Field(default=None, max_length=100)

    @field_validator("method", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.upper() if isinstance(v, str) else v


class PaymentConfirm(BaseModel):
    """Gateway confirmation webhook body."""

    transaction_id: Optional[str] = Field(default=None, max_length=100)


class PaymentReason(BaseModel):
    """Body for failing or refunding a payment."""

    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("reason", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class CouponApply(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)

    @field_validator("code", mode="before")
    @classmethod
    def _normalize(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class SessionCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("reason", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)
