# marketplace.py
"""
Listing / bid state machine and the subscription gate.

Listing: open -> in_progress -> completed
Bid:     pending -> accepted

Every rule about who may bid, accept, complete, chat or review lives here.
Routes and the chat relay call these functions and let ``MarketplaceError``
propagate; ``main`` turns it into an HTTP response, the relay into an
error frame.
"""
import logging
from datetime import datetime, timedelta, timezone

import config
from models import Bid, BidCreate, Listing, Review, ReviewCreate, Subscription, User
from storage import Storage

logger = logging.getLogger(__name__)

LISTING_TRANSITIONS = {
    "open": {"in_progress"},
    "in_progress": {"completed"},
    "completed": set(),
}

# Chat opens once a bid is accepted and stays open after completion
CHAT_STATUSES = ("in_progress", "completed")


class MarketplaceError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidTransition(MarketplaceError):
    status_code = 400


class PermissionDenied(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


def can_transition(current: str, target: str) -> bool:
    return target in LISTING_TRANSITIONS.get(current, set())


def find_accepted_bid(bids: list[Bid]) -> Bid | None:
    return next((b for b in bids if b.status == "accepted"), None)


async def get_listing_or_404(storage: Storage, listing_id: int) -> Listing:
    listing = await storage.get_listing(listing_id)
    if listing is None:
        raise NotFound("Listing not found")
    return listing


# =========================================================
# Subscription gate
# =========================================================
async def has_active_subscription(storage: Storage, user_id: int) -> bool:
    # Only the latest record counts; an older active one does not rescue a newer pending one
    subscription = await storage.get_subscription(user_id)
    return subscription is not None and subscription.status == "active"


async def verify_subscription(
    storage: Storage, subscription_id: int, now: datetime | None = None
) -> Subscription:
    """Admin approval: pending -> active for SUBSCRIPTION_DAYS from now."""
    subscription = await _get_pending_subscription(storage, subscription_id)
    start = now or datetime.now(timezone.utc)
    end = start + timedelta(days=config.SUBSCRIPTION_DAYS)
    updated = await storage.update_subscription_status(subscription.id, "active", start, end)
    logger.info("Subscription %s verified until %s", subscription.id, end.isoformat())
    return updated


async def reject_subscription(storage: Storage, subscription_id: int) -> Subscription:
    subscription = await _get_pending_subscription(storage, subscription_id)
    updated = await storage.update_subscription_status(subscription.id, "expired")
    logger.info("Subscription %s rejected", subscription.id)
    return updated


async def _get_pending_subscription(storage: Storage, subscription_id: int) -> Subscription:
    subscription = await storage.get_subscription_by_id(subscription_id)
    if subscription is None:
        raise NotFound("Subscription not found")
    if subscription.status != "pending":
        raise InvalidTransition(f"Subscription is already {subscription.status}")
    return subscription


# =========================================================
# Bids
# =========================================================
async def place_bid(storage: Storage, user: User, listing_id: int, data: BidCreate) -> Bid:
    if not user.is_repairman:
        raise PermissionDenied("Only repairmen can bid")

    if not await has_active_subscription(storage, user.id):
        raise PermissionDenied(
            "You need an active subscription to place bids. "
            "Please subscribe and wait for admin verification."
        )

    listing = await get_listing_or_404(storage, listing_id)
    if listing.status != "open":
        raise InvalidTransition("Listing is no longer accepting bids")

    bid = await storage.create_bid(listing.id, user.id, data)
    logger.info("Repairman %s bid %s on listing %s", user.id, bid.amount, listing.id)
    return bid


async def accept_bid(
    storage: Storage, user: User, listing_id: int, bid_id: int
) -> tuple[Listing, Bid]:
    listing = await get_listing_or_404(storage, listing_id)
    if listing.user_id != user.id:
        raise PermissionDenied("Not authorized to accept bids for this listing")
    if not can_transition(listing.status, "in_progress"):
        raise InvalidTransition("A bid has already been accepted for this listing")

    bid = await storage.get_bid(bid_id)
    if bid is None or bid.listing_id != listing.id:
        raise NotFound("Bid not found")
    if bid.status != "pending":
        raise InvalidTransition("Bid is not pending")

    # Listing and bid flip together or not at all
    if not await storage.accept_bid(listing.id, bid.id):
        raise InvalidTransition("A bid has already been accepted for this listing")

    logger.info("Listing %s accepted bid %s from repairman %s", listing.id, bid.id, bid.repairman_id)
    return (
        listing.model_copy(update={"status": "in_progress"}),
        bid.model_copy(update={"status": "accepted"}),
    )


async def complete_listing(storage: Storage, user: User, listing_id: int) -> Listing:
    listing = await get_listing_or_404(storage, listing_id)

    accepted = find_accepted_bid(await storage.get_bids_for_listing(listing.id))
    if not user.is_repairman or accepted is None or accepted.repairman_id != user.id:
        raise PermissionDenied("Not authorized to complete this repair")
    if not can_transition(listing.status, "completed"):
        raise InvalidTransition(f"Cannot complete a listing that is {listing.status}")

    updated = await storage.update_listing_status(listing.id, "completed")
    logger.info("Listing %s completed by repairman %s", listing.id, user.id)
    return updated


# =========================================================
# Reviews
# =========================================================
async def submit_review(
    storage: Storage, user: User, listing_id: int, data: ReviewCreate
) -> Review:
    listing = await get_listing_or_404(storage, listing_id)
    if listing.user_id != user.id:
        raise PermissionDenied("Only the listing owner can review this repair")
    if listing.status != "completed":
        raise InvalidTransition("Only completed repairs can be reviewed")

    accepted = find_accepted_bid(await storage.get_bids_for_listing(listing.id))
    if accepted is None:
        raise InvalidTransition("No accepted bid found for this listing")

    if await storage.get_review_by_user(listing.id, user.id) is not None:
        raise InvalidTransition("You have already reviewed this repair")

    return await storage.create_review(listing.id, accepted.repairman_id, user.id, data)


# =========================================================
# Chat
# =========================================================
async def chat_participants(storage: Storage, listing: Listing) -> set[int]:
    """Owner plus the technician holding the accepted bid, if any."""
    participants = {listing.user_id}
    accepted = find_accepted_bid(await storage.get_bids_for_listing(listing.id))
    if accepted is not None:
        participants.add(accepted.repairman_id)
    return participants


async def ensure_chat_allowed(
    storage: Storage, sender_id: int, listing_id: int, recipient_id: int | None = None
) -> Listing:
    listing = await get_listing_or_404(storage, listing_id)
    if listing.status not in CHAT_STATUSES:
        raise InvalidTransition("Chat opens once a bid has been accepted")

    participants = await chat_participants(storage, listing)
    if sender_id not in participants:
        raise PermissionDenied("Not a participant of this listing")
    if recipient_id is not None and recipient_id not in participants:
        raise PermissionDenied("Recipient is not a participant of this listing")
    return listing


async def can_read_chat(storage: Storage, user: User, listing: Listing) -> bool:
    if user.is_admin:
        return True
    return user.id in await chat_participants(storage, listing)


# =========================================================
# Listings
# =========================================================
async def delete_listing(storage: Storage, user: User, listing_id: int, as_admin: bool = False) -> None:
    listing = await get_listing_or_404(storage, listing_id)
    if not as_admin and listing.user_id != user.id:
        raise PermissionDenied("Not authorized to delete this listing")

    # Bids, chat messages and reviews go with it
    if not await storage.delete_listing(listing.id):
        raise NotFound("Listing not found")
    logger.info("Listing %s deleted by user %s (admin=%s)", listing.id, user.id, as_admin)
