import logging

from fastapi import APIRouter, Depends, HTTPException, status

import marketplace
from models import ChatMessage, Listing, ListingCreate, User
from routes.auth import require_user
from storage import Storage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/listings", tags=["listings"])


# =========================================================
# Part 1: browsing
# =========================================================

@router.get("", response_model=list[Listing])
async def get_listings(storage: Storage = Depends(get_storage)):
    listings = await storage.get_listings()
    logger.debug("Fetched %d listings", len(listings))
    return listings


@router.get("/category/{category}", response_model=list[Listing])
async def get_listings_by_category(category: str, storage: Storage = Depends(get_storage)):
    return await storage.get_listings_by_category(category)


@router.get("/{listing_id}", response_model=Listing)
async def get_listing(listing_id: int, storage: Storage = Depends(get_storage)):
    return await marketplace.get_listing_or_404(storage, listing_id)


# =========================================================
# Part 2: create and delete
# =========================================================

@router.post("", status_code=status.HTTP_201_CREATED, response_model=Listing)
async def create_listing(
    data: ListingCreate,
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    listing = await storage.create_listing(user.id, data)
    logger.info("User %s created listing %s", user.id, listing.id)
    return listing


@router.delete("/{listing_id}")
async def delete_listing(
    listing_id: int,
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    """Owner-only delete; bids, chat messages and reviews go with it."""
    await marketplace.delete_listing(storage, user, listing_id)
    return {"message": "Listing deleted successfully"}


# =========================================================
# Part 3: chat history
# =========================================================

@router.get("/{listing_id}/messages", response_model=list[ChatMessage])
async def get_chat_messages(
    listing_id: int,
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    listing = await marketplace.get_listing_or_404(storage, listing_id)
    if not await marketplace.can_read_chat(storage, user, listing):
        raise HTTPException(status_code=403, detail="Not a participant of this listing")
    return await storage.get_chat_messages(listing.id)
