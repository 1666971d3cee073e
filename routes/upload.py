import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from models import User
from routes.auth import require_user
from utils import UploadRejected, save_image_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])


@router.post("/upload")
async def upload_image(
    image: UploadFile = File(...),
    user: User = Depends(require_user),
):
    """
    Store a listing photo or a subscription payment proof.

    Returns ``{"imageUrl": "/uploads/..."}`` for use in later requests.
    """
    try:
        image_url = await save_image_upload(image, field_name="image")
    except UploadRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        await image.close()

    logger.info("User %s uploaded %s", user.id, image_url)
    return {"imageUrl": image_url}
