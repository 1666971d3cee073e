import logging

from fastapi import APIRouter, Depends, HTTPException, Request

import marketplace
from models import PendingSubscription, Subscription, User
from routes.auth import require_admin
from storage import Storage, get_storage

logger = logging.getLogger(__name__)

# Every route here requires an admin session
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


# =========================================================
# Users
# =========================================================
@router.get("/users", response_model=list[User])
async def get_users(storage: Storage = Depends(get_storage)):
    return await storage.get_users()


@router.post("/users/{user_id}/toggle-block", response_model=User)
async def toggle_user_block(
    user_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Admins cannot block themselves")

    target = await storage.get_user(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")

    updated = await storage.set_user_blocked(target.id, not target.is_blocked)
    logger.info("Admin %s set user %s blocked=%s", admin.id, target.id, updated.is_blocked)

    if updated.is_blocked:
        # A live chat socket stops relaying; re-auth is refused while blocked
        registry = request.app.state.registry
        socket = registry.lookup(updated.id)
        if socket is not None:
            registry.remove(socket)
    return updated


# =========================================================
# Listings
# =========================================================
@router.delete("/listings/{listing_id}")
async def delete_listing(
    listing_id: int,
    admin: User = Depends(require_admin),
    storage: Storage = Depends(get_storage),
):
    await marketplace.delete_listing(storage, admin, listing_id, as_admin=True)
    return {"message": "Listing deleted successfully"}


# =========================================================
# Subscriptions
# =========================================================
@router.get("/subscriptions/pending", response_model=list[PendingSubscription])
async def get_pending_subscriptions(storage: Storage = Depends(get_storage)):
    return await storage.get_pending_subscriptions()


@router.post("/subscriptions/{subscription_id}/verify", response_model=Subscription)
async def verify_subscription(subscription_id: int, storage: Storage = Depends(get_storage)):
    return await marketplace.verify_subscription(storage, subscription_id)


@router.post("/subscriptions/{subscription_id}/reject", response_model=Subscription)
async def reject_subscription(subscription_id: int, storage: Storage = Depends(get_storage)):
    return await marketplace.reject_subscription(storage, subscription_id)
