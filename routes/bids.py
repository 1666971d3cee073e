from fastapi import APIRouter, Depends, status

import marketplace
from models import Bid, BidCreate, BidWithRepairman, User
from routes.auth import require_repairman, require_user
from storage import Storage, get_storage

router = APIRouter(prefix="/api", tags=["bids"])


# ---------------------------------------------------------
# 1. Place a bid (repairman with an active subscription)
# ---------------------------------------------------------
@router.post(
    "/listings/{listing_id}/bids",
    status_code=status.HTTP_201_CREATED,
    response_model=Bid,
)
async def create_bid(
    listing_id: int,
    data: BidCreate,
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    # Role, subscription and listing status are all checked in place_bid
    return await marketplace.place_bid(storage, user, listing_id, data)


# ---------------------------------------------------------
# 2. Bids on a listing, with the bidder's name
# ---------------------------------------------------------
@router.get("/listings/{listing_id}/bids", response_model=list[BidWithRepairman])
async def get_bids_for_listing(listing_id: int, storage: Storage = Depends(get_storage)):
    listing = await marketplace.get_listing_or_404(storage, listing_id)
    return await storage.get_bids_for_listing(listing.id)


# ---------------------------------------------------------
# 3. My bids (repairman dashboard)
# ---------------------------------------------------------
@router.get("/bids/repairman", response_model=list[Bid])
async def get_my_bids(
    user: User = Depends(require_repairman),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_bids_for_repairman(user.id)


# ---------------------------------------------------------
# 4. Accept a bid: open -> in_progress
# ---------------------------------------------------------
@router.post("/listings/{listing_id}/accept-bid/{bid_id}")
async def accept_bid(
    listing_id: int,
    bid_id: int,
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    listing, bid = await marketplace.accept_bid(storage, user, listing_id, bid_id)
    return {"message": "Bid accepted successfully", "listing": listing, "bid": bid}


# ---------------------------------------------------------
# 5. Mark the repair done: in_progress -> completed
# ---------------------------------------------------------
@router.post("/listings/{listing_id}/complete")
async def complete_listing(
    listing_id: int,
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    listing = await marketplace.complete_listing(storage, user, listing_id)
    return {"message": "Repair marked as completed", "listing": listing}
