"""QR scan schemas."""

from pydantic import BaseModel, Field, field_validator


class ScanValidateRequest(BaseModel):
    """Payload encoded in a table's QR code."""

    qr_code: str = Field(..., min_length=1, max_length=100)
    table_id: int = Field(..., gt=0)
    restaurant_id: int = Field(..., gt=0)

    @field_validator("qr_code", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v
