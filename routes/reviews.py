from fastapi import APIRouter, Depends, status

import marketplace
from models import Review, ReviewCreate, User
from routes.auth import require_user
from storage import Storage, get_storage

router = APIRouter(prefix="/api", tags=["reviews"])


# =========================================================
# 1. Submit a review (owner, after completion)
# =========================================================
@router.post(
    "/listings/{listing_id}/reviews",
    status_code=status.HTTP_201_CREATED,
    response_model=Review,
)
async def submit_review(
    listing_id: int,
    data: ReviewCreate,
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    """
    The rated technician is never taken from the request: it is whoever
    holds the accepted bid on the listing.
    """
    return await marketplace.submit_review(storage, user, listing_id, data)


# =========================================================
# 2. Public reviews of a technician, newest first
# =========================================================
@router.get("/repairmen/{repairman_id}/reviews", response_model=list[Review])
async def get_repairman_reviews(repairman_id: int, storage: Storage = Depends(get_storage)):
    return await storage.get_reviews_for_repairman(repairman_id)
