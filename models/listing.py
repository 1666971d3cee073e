# models/listing.py
from datetime import datetime
from typing import Literal

from pydantic import Field

from models.base import CamelModel

ListingStatus = Literal["open", "in_progress", "completed"]


class ListingCreate(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category: str = Field(min_length=1, max_length=100)
    image_url: str | None = None
    budget: float = Field(gt=0)


class Listing(CamelModel):
    id: int
    user_id: int
    title: str
    description: str
    category: str
    image_url: str | None = None
    budget: float
    status: ListingStatus = "open"
    created_at: datetime | None = None
