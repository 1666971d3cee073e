# models/bid.py
from datetime import datetime
from typing import Literal

from pydantic import Field

from models.base import CamelModel

BidStatus = Literal["pending", "accepted"]


class BidCreate(CamelModel):
    amount: float = Field(gt=0)
    comment: str | None = None


class Bid(CamelModel):
    id: int
    listing_id: int
    repairman_id: int
    amount: float
    comment: str | None = None
    status: BidStatus = "pending"
    created_at: datetime | None = None


class BidWithRepairman(Bid):
    repairman_name: str = "Unknown"
