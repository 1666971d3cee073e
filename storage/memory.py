# storage/memory.py
import itertools
from datetime import datetime, timezone

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
from storage.base import Storage, StorageError


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStorage(Storage):
    """
    Dict-backed storage for local development and tests.

    Mirrors the relational schema closely enough for the marketplace rules:
    unique usernames, one review per reviewer per listing, and cascading
    listing deletes. Returned models are copies, so callers cannot mutate
    stored rows behind its back. Every method completes without awaiting,
    which keeps each call atomic on the event loop.
    """

    def __init__(self):
        self.users: dict[int, User] = {}
        self.listings: dict[int, Listing] = {}
        self.bids: dict[int, Bid] = {}
        self.messages: dict[int, ChatMessage] = {}
        self.reviews: dict[int, Review] = {}
        self.subscriptions: dict[int, Subscription] = {}
        self._ids = {
            name: itertools.count(1)
            for name in ("users", "listings", "bids", "messages", "reviews", "subscriptions")
        }

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    # --- users ---
    async def get_user(self, user_id: int) -> User | None:
        user = self.users.get(user_id)
        return user.model_copy() if user else None

    async def get_user_by_username(self, username: str) -> User | None:
        for user in self.users.values():
            if user.username == username:
                return user.model_copy()
        return None

    async def create_user(
        self, username: str, password_hash: str, is_repairman: bool, is_admin: bool
    ) -> User:
        if any(u.username == username for u in self.users.values()):
            raise StorageError("Failed to create user: username already exists")
        user = User(
            id=self._next_id("users"),
            username=username,
            password=password_hash,
            is_repairman=is_repairman,
            is_admin=is_admin,
            is_blocked=False,
            created_at=_now(),
        )
        self.users[user.id] = user
        return user.model_copy()

    async def get_users(self) -> list[User]:
        return [u.model_copy() for u in sorted(self.users.values(), key=lambda u: u.id)]

    async def get_users_by_ids(self, ids: list[int]) -> list[User]:
        return [self.users[i].model_copy() for i in dict.fromkeys(ids) if i in self.users]

    async def set_user_blocked(self, user_id: int, blocked: bool) -> User | None:
        user = self.users.get(user_id)
        if user is None:
            return None
        user.is_blocked = blocked
        return user.model_copy()

    # --- listings ---
    async def create_listing(self, user_id: int, data: ListingCreate) -> Listing:
        listing = Listing(
            id=self._next_id("listings"),
            user_id=user_id,
            status="open",
            created_at=_now(),
            **data.model_dump(),
        )
        self.listings[listing.id] = listing
        return listing.model_copy()

    async def get_listing(self, listing_id: int) -> Listing | None:
        listing = self.listings.get(listing_id)
        return listing.model_copy() if listing else None

    async def get_listings(self) -> list[Listing]:
        ordered = sorted(self.listings.values(), key=lambda item: (item.created_at, item.id), reverse=True)
        return [item.model_copy() for item in ordered]

    async def get_listings_by_category(self, category: str) -> list[Listing]:
        needle = category.lower()
        return [item for item in await self.get_listings() if needle in item.category.lower()]

    async def update_listing_status(self, listing_id: int, status: str) -> Listing | None:
        listing = self.listings.get(listing_id)
        if listing is None:
            return None
        listing.status = status
        return listing.model_copy()

    async def delete_listing(self, listing_id: int) -> bool:
        if listing_id not in self.listings:
            return False
        for table in (self.bids, self.messages, self.reviews):
            for row_id in [k for k, row in table.items() if row.listing_id == listing_id]:
                del table[row_id]
        del self.listings[listing_id]
        return True

    # --- bids ---
    async def create_bid(self, listing_id: int, repairman_id: int, data: BidCreate) -> Bid:
        if listing_id not in self.listings:
            raise StorageError("Failed to create bid: listing does not exist")
        bid = Bid(
            id=self._next_id("bids"),
            listing_id=listing_id,
            repairman_id=repairman_id,
            status="pending",
            created_at=_now(),
            **data.model_dump(),
        )
        self.bids[bid.id] = bid
        return bid.model_copy()

    async def get_bid(self, bid_id: int) -> Bid | None:
        bid = self.bids.get(bid_id)
        return bid.model_copy() if bid else None

    async def get_bids_for_listing(self, listing_id: int) -> list[BidWithRepairman]:
        result = []
        for bid in sorted(self.bids.values(), key=lambda b: (b.created_at, b.id)):
            if bid.listing_id != listing_id:
                continue
            repairman = self.users.get(bid.repairman_id)
            result.append(
                BidWithRepairman(
                    **bid.model_dump(),
                    repairman_name=repairman.username if repairman else "Unknown",
                )
            )
        return result

    async def get_bids_for_repairman(self, repairman_id: int) -> list[Bid]:
        ordered = sorted(self.bids.values(), key=lambda b: (b.created_at, b.id), reverse=True)
        return [b.model_copy() for b in ordered if b.repairman_id == repairman_id]

    async def accept_bid(self, listing_id: int, bid_id: int) -> bool:
        listing = self.listings.get(listing_id)
        bid = self.bids.get(bid_id)
        if listing is None or listing.status != "open":
            return False
        if bid is None or bid.listing_id != listing_id or bid.status != "pending":
            return False
        listing.status = "in_progress"
        bid.status = "accepted"
        return True

    # --- chat ---
    async def create_chat_message(
        self, listing_id: int, sender_id: int, message: str
    ) -> ChatMessage:
        if listing_id not in self.listings:
            raise StorageError("Failed to create chat message: listing does not exist")
        saved = ChatMessage(
            id=self._next_id("messages"),
            listing_id=listing_id,
            sender_id=sender_id,
            message=message,
            created_at=_now(),
        )
        self.messages[saved.id] = saved
        return saved.model_copy()

    async def get_chat_messages(self, listing_id: int) -> list[ChatMessage]:
        ordered = sorted(self.messages.values(), key=lambda m: (m.created_at, m.id))
        return [m.model_copy() for m in ordered if m.listing_id == listing_id]

    # --- reviews ---
    async def create_review(
        self, listing_id: int, repairman_id: int, user_id: int, data: ReviewCreate
    ) -> Review:
        if any(r.listing_id == listing_id and r.user_id == user_id for r in self.reviews.values()):
            raise StorageError("Failed to create review: already reviewed")
        review = Review(
            id=self._next_id("reviews"),
            listing_id=listing_id,
            repairman_id=repairman_id,
            user_id=user_id,
            created_at=_now(),
            **data.model_dump(),
        )
        self.reviews[review.id] = review
        return review.model_copy()

    async def get_review_by_user(self, listing_id: int, user_id: int) -> Review | None:
        for review in self.reviews.values():
            if review.listing_id == listing_id and review.user_id == user_id:
                return review.model_copy()
        return None

    async def get_reviews_for_repairman(self, repairman_id: int) -> list[Review]:
        ordered = sorted(self.reviews.values(), key=lambda r: (r.created_at, r.id), reverse=True)
        return [r.model_copy() for r in ordered if r.repairman_id == repairman_id]

    # --- subscriptions ---
    async def create_subscription(self, user_id: int, data: SubscriptionCreate) -> Subscription:
        subscription = Subscription(
            id=self._next_id("subscriptions"),
            user_id=user_id,
            status="pending",
            created_at=_now(),
            **data.model_dump(),
        )
        self.subscriptions[subscription.id] = subscription
        return subscription.model_copy()

    async def get_subscription(self, user_id: int) -> Subscription | None:
        mine = [s for s in self.subscriptions.values() if s.user_id == user_id]
        if not mine:
            return None
        return max(mine, key=lambda s: (s.created_at, s.id)).model_copy()

    async def get_subscription_by_id(self, subscription_id: int) -> Subscription | None:
        subscription = self.subscriptions.get(subscription_id)
        return subscription.model_copy() if subscription else None

    async def update_subscription_status(
        self,
        subscription_id: int,
        status: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> Subscription | None:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            return None
        subscription.status = status
        subscription.start_date = start_date
        subscription.end_date = end_date
        return subscription.model_copy()

    async def get_pending_subscriptions(self) -> list[PendingSubscription]:
        ordered = sorted(
            self.subscriptions.values(), key=lambda s: (s.created_at, s.id), reverse=True
        )
        return [
            PendingSubscription(**s.model_dump(), username=self.users[s.user_id].username)
            for s in ordered
            if s.status == "pending" and s.user_id in self.users
        ]

    async def ping(self) -> bool:
        return True
