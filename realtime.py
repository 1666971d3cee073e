# realtime.py
"""
WebSocket chat: a registry of live sockets keyed by user id, and the relay
that persists chat frames and fans them out.

Frames (JSON text):
- client -> server  {"type": "auth", "data": {"userId": 1}}
- client -> server  {"type": "chat", "data": {"message", "listingId", "recipientId", "senderId"}}
- server -> client  {"type": "auth", "data": {"userId": 1}}
- server -> client  {"type": "chat", "data": <persisted message>}
- server -> client  {"type": "error", "message": "..."}

The user id always comes from the session cookie of the socket. ``userId``
and ``senderId`` in frames are only cross-checked against it.
"""
import json
import logging
from typing import Any, Callable

import psycopg
from pydantic import Field, ValidationError, field_validator
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

import marketplace
from models.base import CamelModel
from storage import StorageError

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    At most one live socket per user.

    Owned by the application (``app.state.registry``) and only touched from
    the event loop, so plain dict operations need no locking.
    """

    def __init__(self):
        self._connections: dict[int, WebSocket] = {}

    def register(self, user_id: int, socket: WebSocket) -> WebSocket | None:
        """Map ``user_id`` to ``socket``; returns the socket it replaced, if any."""
        previous = self._connections.get(user_id)
        self._connections[user_id] = socket
        return previous if previous is not socket else None

    def lookup(self, user_id: int) -> WebSocket | None:
        return self._connections.get(user_id)

    def remove(self, socket: WebSocket) -> int | None:
        """Evict whichever user currently maps to ``socket``; linear in connection count."""
        for user_id, registered in list(self._connections.items()):
            if registered is socket:
                del self._connections[user_id]
                return user_id
        return None

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, user_id: int) -> bool:
        return user_id in self._connections


class AuthFrame(CamelModel):
    user_id: int | None = None


class ChatFrame(CamelModel):
    message: str
    listing_id: int
    recipient_id: int
    sender_id: int | None = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message cannot be empty")
        return value


class Envelope(CamelModel):
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


def is_open(socket: WebSocket | None) -> bool:
    return (
        socket is not None
        and socket.client_state == WebSocketState.CONNECTED
        and socket.application_state == WebSocketState.CONNECTED
    )


def error_frame(message: str) -> dict:
    return {"type": "error", "message": message}


class ChatRelay:
    """
    Handles frames from one or many sockets.

    ``storage_factory`` returns an async context manager yielding a
    ``Storage``; one is opened per frame that needs the database.
    """

    def __init__(self, registry: ConnectionRegistry, storage_factory: Callable):
        self.registry = registry
        self.storage_factory = storage_factory

    async def deliver(self, socket: WebSocket | None, payload: dict) -> bool:
        """Send to a socket if it is open. Failures are logged and dropped, never retried."""
        if not is_open(socket):
            return False
        try:
            await socket.send_json(payload)
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            logger.warning("Dropping frame for closed socket: %s", exc)
            return False
        return True

    async def dispatch(self, socket: WebSocket, session_user_id: int | None, raw: str | None) -> None:
        """
        Process one frame. Errors go back to ``socket`` only.

        ``raw`` is None for a binary frame; the protocol is JSON text only.
        """
        try:
            if raw is None:
                raise ValueError("binary frame")
            envelope = Envelope.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            # json.JSONDecodeError is a ValueError
            await self.deliver(socket, error_frame("Invalid message format"))
            return

        if session_user_id is None:
            await self.deliver(socket, error_frame("Unauthorized"))
            return

        try:
            if envelope.type == "auth":
                await self.handle_auth(socket, session_user_id, envelope.data)
            elif envelope.type == "chat":
                await self.handle_chat(socket, session_user_id, envelope.data)
            else:
                await self.deliver(socket, error_frame(f"Unsupported message type: {envelope.type}"))
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "data"
            await self.deliver(socket, error_frame(f"Invalid {envelope.type} message: {field}: {first['msg']}"))
        except marketplace.MarketplaceError as exc:
            await self.deliver(socket, error_frame(exc.detail))
        except StorageError:
            # Already logged by the storage layer
            await self.deliver(socket, error_frame("Failed to process message"))
        except psycopg.Error:
            # Raised by a storage factory that does not wrap pool failures
            logger.exception("Database failure while handling %s frame", envelope.type)
            await self.deliver(socket, error_frame("Failed to process message"))

    async def handle_auth(self, socket: WebSocket, session_user_id: int, data: dict) -> None:
        frame = AuthFrame.model_validate(data)
        if frame.user_id is not None and frame.user_id != session_user_id:
            await self.deliver(socket, error_frame("User id does not match session"))
            return

        async with self.storage_factory() as storage:
            user = await storage.get_user(session_user_id)
        if user is None or user.is_blocked:
            await self.deliver(socket, error_frame("Unauthorized"))
            return

        replaced = self.registry.register(user.id, socket)
        if replaced is not None:
            logger.info("User %s reconnected; previous socket replaced", user.id)
        logger.info("Authenticated WebSocket for user %s", user.id)
        await self.deliver(socket, {"type": "auth", "data": {"userId": user.id}})

    async def handle_chat(self, socket: WebSocket, session_user_id: int, data: dict) -> None:
        if self.registry.lookup(session_user_id) is not socket:
            await self.deliver(socket, error_frame("Send an auth message first"))
            return

        frame = ChatFrame.model_validate(data)
        if frame.sender_id is not None and frame.sender_id != session_user_id:
            await self.deliver(socket, error_frame("Sender does not match session"))
            return

        async with self.storage_factory() as storage:
            # Blocking takes effect on sockets that authenticated earlier
            sender = await storage.get_user(session_user_id)
            if sender is None or sender.is_blocked:
                self.registry.remove(socket)
                raise marketplace.PermissionDenied("Unauthorized")
            await marketplace.ensure_chat_allowed(
                storage, session_user_id, frame.listing_id, frame.recipient_id
            )
            saved = await storage.create_chat_message(frame.listing_id, session_user_id, frame.message)

        payload = {"type": "chat", "data": saved.model_dump(mode="json", by_alias=True)}

        # Recipient first, then the sender's own echo; each only if connected
        for user_id in dict.fromkeys((frame.recipient_id, session_user_id)):
            delivered = await self.deliver(self.registry.lookup(user_id), payload)
            if not delivered:
                logger.debug("User %s not connected; message %s stored only", user_id, saved.id)
