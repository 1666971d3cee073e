import logging

from fastapi import APIRouter, WebSocket

from realtime import ChatRelay, ConnectionRegistry
from storage import storage_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def get_registry(websocket: WebSocket) -> ConnectionRegistry:
    """The registry belongs to the application; see ``main``."""
    return websocket.app.state.registry


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    """
    One socket per browser tab.

    Identity is read from the session cookie at connect time; the client
    still sends an auth frame before chatting, as the frontend expects.
    """
    await websocket.accept()
    registry = get_registry(websocket)
    relay = ChatRelay(registry, storage_session)

    raw_user_id = websocket.session.get("user_id")
    session_user_id = int(raw_user_id) if raw_user_id else None
    logger.info("New WebSocket connection (session user %s)", session_user_id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("WebSocket closed for user %s", session_user_id)
                break
            # "text" is absent for binary frames; the relay answers those with an error frame
            await relay.dispatch(websocket, session_user_id, message.get("text"))
    finally:
        # No-op when a newer socket already took over this user's slot
        registry.remove(websocket)
