import json
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
from psycopg_pool import PoolTimeout
from starlette.websockets import WebSocketState

from models import BidCreate, ListingCreate
from realtime import ChatRelay, ConnectionRegistry
from storage import MemoryStorage, StorageError


class FakeSocket:
    """Records what the relay sends; ``close()`` makes later sends fail."""

    def __init__(self):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent = []

    async def send_json(self, data):
        if self.client_state != WebSocketState.CONNECTED:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def close(self):
        self.client_state = WebSocketState.DISCONNECTED


class BrokenChatStorage(MemoryStorage):
    async def create_chat_message(self, listing_id, sender_id, message):
        raise StorageError("Failed to create chat message")


def frame(type_, **data):
    return json.dumps({"type": type_, "data": data})


def errors(socket):
    return [m["message"] for m in socket.sent if m["type"] == "error"]


@pytest.fixture
def store():
    return MemoryStorage()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def relay(store, registry):
    @asynccontextmanager
    async def storage_factory():
        yield store

    return ChatRelay(registry, storage_factory)


@pytest.fixture
async def deal(store):
    """A listing in progress between alice (owner) and bob (accepted repairman)."""
    alice = await store.create_user("alice", "hash", False, False)
    bob = await store.create_user("bob", "hash", True, False)
    carol = await store.create_user("carol", "hash", True, False)
    listing = await store.create_listing(
        alice.id, ListingCreate(title="Door", description="Squeaks", category="Carpentry", budget=40)
    )
    bid = await store.create_bid(listing.id, bob.id, BidCreate(amount=35))
    await store.accept_bid(listing.id, bid.id)
    return SimpleNamespace(alice=alice, bob=bob, carol=carol, listing=listing)


async def connect(relay, user):
    socket = FakeSocket()
    await relay.dispatch(socket, user.id, frame("auth", userId=user.id))
    socket.sent.clear()
    return socket


def chat(deal, recipient, message="Can you come tomorrow?", **extra):
    return frame("chat", message=message, listingId=deal.listing.id, recipientId=recipient.id, **extra)


# --- framing and auth ---
async def test_invalid_json(relay, store, deal):
    socket = FakeSocket()

    await relay.dispatch(socket, deal.alice.id, "{not json")

    assert socket.sent == [{"type": "error", "message": "Invalid message format"}]


async def test_frame_without_session(relay, registry, deal):
    socket = FakeSocket()

    await relay.dispatch(socket, None, frame("auth", userId=deal.alice.id))

    assert errors(socket) == ["Unauthorized"]
    assert len(registry) == 0


async def test_auth_registers_socket(relay, registry, deal):
    socket = FakeSocket()

    await relay.dispatch(socket, deal.alice.id, frame("auth", userId=deal.alice.id))

    assert socket.sent == [{"type": "auth", "data": {"userId": deal.alice.id}}]
    assert registry.lookup(deal.alice.id) is socket


async def test_auth_without_user_id_uses_session(relay, registry, deal):
    socket = FakeSocket()

    await relay.dispatch(socket, deal.bob.id, frame("auth"))

    assert registry.lookup(deal.bob.id) is socket


async def test_auth_user_id_must_match_session(relay, registry, deal):
    socket = FakeSocket()

    await relay.dispatch(socket, deal.alice.id, frame("auth", userId=deal.bob.id))

    assert errors(socket) == ["User id does not match session"]
    assert len(registry) == 0


async def test_blocked_user_cannot_auth(relay, registry, store, deal):
    await store.set_user_blocked(deal.alice.id, True)
    socket = FakeSocket()

    await relay.dispatch(socket, deal.alice.id, frame("auth"))

    assert errors(socket) == ["Unauthorized"]
    assert len(registry) == 0


async def test_unsupported_type(relay, deal):
    socket = await connect(relay, deal.alice)

    await relay.dispatch(socket, deal.alice.id, frame("typing"))

    assert errors(socket) == ["Unsupported message type: typing"]


# --- chat ---
async def test_chat_requires_auth_frame(relay, store, deal):
    socket = FakeSocket()

    await relay.dispatch(socket, deal.alice.id, chat(deal, deal.bob))

    assert errors(socket) == ["Send an auth message first"]
    assert await store.get_chat_messages(deal.listing.id) == []


async def test_chat_reaches_both_parties(relay, store, deal):
    alice = await connect(relay, deal.alice)
    bob = await connect(relay, deal.bob)

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.bob))

    saved = await store.get_chat_messages(deal.listing.id)
    assert len(saved) == 1
    assert saved[0].sender_id == deal.alice.id

    expected = {"type": "chat", "data": saved[0].model_dump(mode="json", by_alias=True)}
    assert bob.sent == [expected]
    assert alice.sent == [expected]
    assert expected["data"]["senderId"] == deal.alice.id
    assert expected["data"]["listingId"] == deal.listing.id


async def test_offline_recipient_still_persisted(relay, store, deal):
    alice = await connect(relay, deal.alice)

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.bob, message="Are you there?"))

    saved = await store.get_chat_messages(deal.listing.id)
    assert [m.message for m in saved] == ["Are you there?"]
    assert len(alice.sent) == 1
    assert alice.sent[0]["type"] == "chat"


async def test_closed_recipient_socket_is_skipped(relay, store, deal):
    alice = await connect(relay, deal.alice)
    bob = await connect(relay, deal.bob)
    bob.close()

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.bob))

    assert bob.sent == []
    assert len(alice.sent) == 1
    assert len(await store.get_chat_messages(deal.listing.id)) == 1


async def test_message_goes_to_latest_socket(relay, deal):
    alice = await connect(relay, deal.alice)
    old_bob = await connect(relay, deal.bob)
    new_bob = await connect(relay, deal.bob)

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.bob))

    assert old_bob.sent == []
    assert len(new_bob.sent) == 1


async def test_replaced_socket_cannot_chat(relay, store, deal):
    old_bob = await connect(relay, deal.bob)
    await connect(relay, deal.bob)

    await relay.dispatch(old_bob, deal.bob.id, chat(deal, deal.alice))

    assert errors(old_bob) == ["Send an auth message first"]


async def test_sender_id_cannot_be_spoofed(relay, store, deal):
    carol = await connect(relay, deal.carol)

    await relay.dispatch(carol, deal.carol.id, chat(deal, deal.bob, senderId=deal.alice.id))

    assert errors(carol) == ["Sender does not match session"]
    assert await store.get_chat_messages(deal.listing.id) == []


async def test_blank_message_rejected(relay, store, deal):
    alice = await connect(relay, deal.alice)

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.bob, message="   "))

    [error] = errors(alice)
    assert error.startswith("Invalid chat message: message")
    assert await store.get_chat_messages(deal.listing.id) == []


async def test_missing_field_rejected(relay, deal):
    alice = await connect(relay, deal.alice)

    await relay.dispatch(alice, deal.alice.id, frame("chat", message="hi", listingId=deal.listing.id))

    [error] = errors(alice)
    assert error.startswith("Invalid chat message: recipientId")


async def test_outsider_gets_error_only(relay, store, deal):
    alice = await connect(relay, deal.alice)
    carol = await connect(relay, deal.carol)

    await relay.dispatch(carol, deal.carol.id, chat(deal, deal.alice))

    assert errors(carol) == ["Not a participant of this listing"]
    assert alice.sent == []
    assert await store.get_chat_messages(deal.listing.id) == []


async def test_recipient_must_be_participant(relay, store, deal):
    alice = await connect(relay, deal.alice)
    carol = await connect(relay, deal.carol)

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.carol))

    assert errors(alice) == ["Recipient is not a participant of this listing"]
    assert carol.sent == []


async def test_chat_on_open_listing_rejected(relay, store, deal):
    open_listing = await store.create_listing(
        deal.alice.id, ListingCreate(title="Sink", description="Clogged", category="Plumbing", budget=20)
    )
    alice = await connect(relay, deal.alice)

    await relay.dispatch(
        alice,
        deal.alice.id,
        frame("chat", message="hi", listingId=open_listing.id, recipientId=deal.bob.id),
    )

    assert errors(alice) == ["Chat opens once a bid has been accepted"]


async def test_unknown_listing(relay, deal):
    alice = await connect(relay, deal.alice)

    await relay.dispatch(alice, deal.alice.id, frame("chat", message="hi", listingId=999, recipientId=deal.bob.id))

    assert errors(alice) == ["Listing not found"]


async def test_storage_failure_reported_to_sender(registry, deal, store):
    broken = BrokenChatStorage()
    broken.__dict__.update(store.__dict__)

    @asynccontextmanager
    async def storage_factory():
        yield broken

    relay = ChatRelay(registry, storage_factory)
    alice = await connect(relay, deal.alice)
    bob = await connect(relay, deal.bob)

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.bob))

    assert errors(alice) == ["Failed to process message"]
    assert bob.sent == []


async def test_binary_frame_then_auth(relay, registry, deal):
    socket = FakeSocket()

    await relay.dispatch(socket, deal.alice.id, None)
    await relay.dispatch(socket, deal.alice.id, frame("auth"))

    assert socket.sent == [
        {"type": "error", "message": "Invalid message format"},
        {"type": "auth", "data": {"userId": deal.alice.id}},
    ]
    assert registry.lookup(deal.alice.id) is socket


async def test_pool_timeout_reported_to_sender(registry, deal):
    @asynccontextmanager
    async def storage_factory():
        raise PoolTimeout("couldn't get a connection after 30.00 sec")
        yield

    relay = ChatRelay(registry, storage_factory)
    socket = FakeSocket()

    await relay.dispatch(socket, deal.alice.id, frame("auth"))

    assert errors(socket) == ["Failed to process message"]
    assert len(registry) == 0


async def test_blocked_after_auth_cannot_chat(relay, registry, store, deal):
    alice = await connect(relay, deal.alice)
    bob = await connect(relay, deal.bob)
    await store.set_user_blocked(deal.alice.id, True)

    await relay.dispatch(alice, deal.alice.id, chat(deal, deal.bob))

    assert errors(alice) == ["Unauthorized"]
    assert bob.sent == []
    assert await store.get_chat_messages(deal.listing.id) == []
    assert registry.lookup(deal.alice.id) is None
