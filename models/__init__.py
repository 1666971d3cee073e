# models/__init__.py
from .bid import Bid, BidCreate, BidWithRepairman
from .chat import ChatMessage
from .listing import Listing, ListingCreate
from .review import Review, ReviewCreate
from .subscription import PendingSubscription, Subscription, SubscriptionCreate
from .user import User, UserLogin, UserRegister

__all__ = [
    "Bid",
    "BidCreate",
    "BidWithRepairman",
    "ChatMessage",
    "Listing",
    "ListingCreate",
    "PendingSubscription",
    "Review",
    "ReviewCreate",
    "Subscription",
    "SubscriptionCreate",
    "User",
    "UserLogin",
    "UserRegister",
]
