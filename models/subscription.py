# models/subscription.py
from datetime import datetime
from typing import Literal

from pydantic import Field

from models.base import CamelModel

SubscriptionStatus = Literal["pending", "active", "expired"]


class SubscriptionCreate(CamelModel):
    amount: float = Field(gt=0)
    payment_proof: str = Field(min_length=1, max_length=500)  # URL returned by /api/upload


class Subscription(CamelModel):
    id: int
    user_id: int
    amount: float
    payment_proof: str
    status: SubscriptionStatus = "pending"
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_at: datetime | None = None


class PendingSubscription(Subscription):
    username: str
