"""Feedback schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from qrdine.core.sanitize import sanitize_text


class FeedbackCategoryRating(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    rating: int = Field(..., ge=1, le=5)
    comments: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("category", "comments", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)


class FeedbackCreate(BaseModel):
    session_id: int = Field(..., gt=0)
    rating: int = Field(..., ge=1, le=5)
    comments: Optional[str] = Field(default=None, max_length=2000)
    categories: List[FeedbackCategoryRating] = Field(default_factory=list, max_length=10)
    is_anonymous: bool = False

    @field_validator("comments", mode="before")
    @classmethod
    def _sanitize(cls, v):
        return sanitize_text(v)
