import logging

from fastapi import APIRouter, Depends, status

from models import Subscription, SubscriptionCreate, User
from routes.auth import require_repairman, require_user
from storage import Storage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["subscriptions"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Subscription)
async def create_subscription(
    data: SubscriptionCreate,
    user: User = Depends(require_repairman),
    storage: Storage = Depends(get_storage),
):
    """
    Request a subscription. It stays pending until an admin checks the
    payment proof (an image uploaded through /api/upload).
    """
    subscription = await storage.create_subscription(user.id, data)
    logger.info("Repairman %s requested subscription %s", user.id, subscription.id)
    return subscription


@router.get("", response_model=Subscription | None)
async def get_my_subscription(
    user: User = Depends(require_user),
    storage: Storage = Depends(get_storage),
):
    # null when the user never subscribed
    return await storage.get_subscription(user.id)
