# storage/base.py
from abc import ABC, abstractmethod
from datetime import datetime

from models import (
    Bid,
    BidCreate,
    BidWithRepairman,
    ChatMessage,
    Listing,
    ListingCreate,
    PendingSubscription,
    Review,
    ReviewCreate,
    Subscription,
    SubscriptionCreate,
    User,
)


class StorageError(Exception):
    """Raised when the backing store fails; the caller only sees a generic 500."""


class Storage(ABC):
    """
    Persistence contract used by routes, the marketplace rules and the chat relay.

    Implementations never enforce business rules beyond what a relational
    schema would (foreign keys, cascades, unique constraints). Who may do
    what, and when, lives in ``marketplace``.
    """

    # --- users ---
    @abstractmethod
    async def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> User | None: ...

    @abstractmethod
    async def create_user(
        self, username: str, password_hash: str, is_repairman: bool, is_admin: bool
    ) -> User: ...

    @abstractmethod
    async def get_users(self) -> list[User]: ...

    @abstractmethod
    async def get_users_by_ids(self, ids: list[int]) -> list[User]: ...

    @abstractmethod
    async def set_user_blocked(self, user_id: int, blocked: bool) -> User | None: ...

    # --- listings ---
    @abstractmethod
    async def create_listing(self, user_id: int, data: ListingCreate) -> Listing: ...

    @abstractmethod
    async def get_listing(self, listing_id: int) -> Listing | None: ...

    @abstractmethod
    async def get_listings(self) -> list[Listing]: ...

    @abstractmethod
    async def get_listings_by_category(self, category: str) -> list[Listing]: ...

    @abstractmethod
    async def update_listing_status(self, listing_id: int, status: str) -> Listing | None: ...

    @abstractmethod
    async def delete_listing(self, listing_id: int) -> bool:
        """Delete a listing with its bids, chat messages and reviews in one transaction."""

    # --- bids ---
    @abstractmethod
    async def create_bid(self, listing_id: int, repairman_id: int, data: BidCreate) -> Bid: ...

    @abstractmethod
    async def get_bid(self, bid_id: int) -> Bid | None: ...

    @abstractmethod
    async def get_bids_for_listing(self, listing_id: int) -> list[BidWithRepairman]: ...

    @abstractmethod
    async def get_bids_for_repairman(self, repairman_id: int) -> list[Bid]: ...

    @abstractmethod
    async def accept_bid(self, listing_id: int, bid_id: int) -> bool:
        """
        Move the listing from open to in_progress and the bid from pending
        to accepted, both or neither. Returns False when either row was not
        in the expected state.
        """

    # --- chat ---
    @abstractmethod
    async def create_chat_message(
        self, listing_id: int, sender_id: int, message: str
    ) -> ChatMessage: ...

    @abstractmethod
    async def get_chat_messages(self, listing_id: int) -> list[ChatMessage]: ...

    # --- reviews ---
    @abstractmethod
    async def create_review(
        self, listing_id: int, repairman_id: int, user_id: int, data: ReviewCreate
    ) -> Review: ...

    @abstractmethod
    async def get_review_by_user(self, listing_id: int, user_id: int) -> Review | None: ...

    @abstractmethod
    async def get_reviews_for_repairman(self, repairman_id: int) -> list[Review]: ...

    # --- subscriptions ---
    @abstractmethod
    async def create_subscription(self, user_id: int, data: SubscriptionCreate) -> Subscription: ...

    @abstractmethod
    async def get_subscription(self, user_id: int) -> Subscription | None:
        """Latest subscription record of a user."""

    @abstractmethod
    async def get_subscription_by_id(self, subscription_id: int) -> Subscription | None: ...

    @abstractmethod
    async def update_subscription_status(
        self,
        subscription_id: int,
        status: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Subscription | None: ...

    @abstractmethod
    async def get_pending_subscriptions(self) -> list[PendingSubscription]: ...

    # --- health ---
    @abstractmethod
    async def ping(self) -> bool: ...
