import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from passlib.context import CryptContext

import config
from models import User, UserLogin, UserRegister
from storage import Storage, get_storage

logger = logging.getLogger(__name__)

# --- 1. Router and password hashing ---
router = APIRouter(prefix="/api", tags=["auth"])

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


# --- 2. Core dependency: the logged-in user ---
# Runs before every protected route
async def get_current_user(
    request: Request, storage: Storage = Depends(get_storage)
) -> User | None:
    """
    Return the user stored in the session cookie, or None.

    1. The browser sends the signed session cookie.
    2. SessionMiddleware decodes it and exposes ``user_id``.
    3. The id is looked up so deleted accounts fall out immediately.
    """
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        request.session.clear()  # tampered or stale cookie
        return None

    user = await storage.get_user(user_id)
    if user is None:
        request.session.clear()
        return None
    return user


# --- 3. Role guards ---
async def require_user(user: User | None = Depends(get_current_user)) -> User:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if user.is_blocked:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is blocked")
    return user


async def require_repairman(user: User = Depends(require_user)) -> User:
    if not user.is_repairman:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: User is not a repairman",
        )
    return user


async def require_admin(user: User | None = Depends(get_current_user)) -> User:
    # Same 403 for anonymous and non-admin callers
    if user is None or not user.is_admin or user.is_blocked:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")
    return user


# --- 4. Register ---
@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=User)
async def handle_registration(
    request: Request,
    data: UserRegister,
    storage: Storage = Depends(get_storage),
):
    # Step 1: reject duplicate usernames
    if await storage.get_user_by_username(data.username):
        raise HTTPException(status_code=400, detail="Username already exists")

    # Step 2: store only the hash
    user = await storage.create_user(
        username=data.username,
        password_hash=pwd_context.hash(data.password),
        is_repairman=data.is_repairman,
        is_admin=data.username in config.ADMIN_USERNAMES,
    )
    logger.info("Registered user %s (repairman=%s)", user.id, user.is_repairman)

    # Step 3: log straight in
    request.session["user_id"] = user.id
    return user


# --- 5. Login ---
@router.post("/login", response_model=User)
async def handle_login(
    request: Request,
    data: UserLogin,
    storage: Storage = Depends(get_storage),
):
    user = await storage.get_user_by_username(data.username)

    # Unknown user and wrong password look the same to the caller
    if user is None or not pwd_context.verify(data.password, user.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")

    if user.is_blocked:
        raise HTTPException(status_code=403, detail="Account is blocked")

    request.session["user_id"] = user.id
    return user


# --- 6. Logout ---
@router.post("/logout")
async def handle_logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


@router.get("/user", response_model=User)
async def read_current_user(user: User = Depends(require_user)):
    return user
