import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

import config
import db
from init_db import init_database
from marketplace import MarketplaceError
from realtime import ConnectionRegistry
from storage import Storage, StorageError, get_storage
from utils import setup_upload_directories

# --- 1. Logging ---
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# --- 2. Startup / shutdown ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create missing tables before the first request; the memory backend needs nothing
    if config.STORAGE_BACKEND == "postgres":
        init_database()
    yield
    await db.close_pool()


# --- 3. Application ---
app = FastAPI(title="EasyRepair API", lifespan=lifespan)

# Live chat sockets, one per user; handed to the chat route through app.state
app.state.registry = ConnectionRegistry()

# --- 4. Uploaded files ---
# /uploads/<name> serves what /api/upload stored
setup_upload_directories()
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_ROOT), name="uploads")

# --- 5. Session (login state) ---
# Signed cookie holding user_id; also read by the WebSocket endpoint
app.add_middleware(
    SessionMiddleware,
    secret_key=config.SECRET_KEY,
    max_age=config.SESSION_MAX_AGE,
    same_site="lax",
    https_only=config.HTTPS_ONLY,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s in %.0fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


# --- 6. Error responses ---
@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    # 400 instead of FastAPI's default 422
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(MarketplaceError)
async def handle_marketplace_error(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(StorageError)
async def handle_storage_error(request: Request, exc: StorageError):
    # Details stay in the log; the client only learns that it failed
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


# --- 7. Routers ---
from routes.admin import router as admin_router  # noqa: E402
from routes.auth import router as auth_router  # noqa: E402
from routes.bids import router as bids_router  # noqa: E402
from routes.chat import router as chat_router  # noqa: E402
from routes.listings import router as listings_router  # noqa: E402
from routes.reviews import router as reviews_router  # noqa: E402
from routes.subscriptions import router as subscriptions_router  # noqa: E402
from routes.upload import router as upload_router  # noqa: E402

app.include_router(auth_router)
app.include_router(listings_router)
app.include_router(bids_router)
app.include_router(reviews_router)
app.include_router(subscriptions_router)
app.include_router(admin_router)
app.include_router(upload_router)
app.include_router(chat_router)


# --- 8. Health ---
@app.get("/ping", response_class=PlainTextResponse)
async def ping():
    return "pong"


@app.get("/api/health")
async def health(storage: Storage = Depends(get_storage)):
    await storage.ping()
    return {"ok": True, "storage": config.STORAGE_BACKEND}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
