# models/review.py
from datetime import datetime

from pydantic import Field

from models.base import CamelModel


class ReviewCreate(CamelModel):
    rating: int = Field(ge=1, le=5)
    comment: str = Field(default="", max_length=1000)


class Review(CamelModel):
    id: int
    listing_id: int
    repairman_id: int  # the technician being rated
    user_id: int  # the reviewer
    rating: int
    comment: str | None = None
    created_at: datetime | None = None
