import os
import tempfile
from types import SimpleNamespace

# Must be set before the application modules read their configuration
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["ADMIN_USERNAMES"] = "admin"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("UPLOAD_ROOT", tempfile.mkdtemp(prefix="easyrepair-uploads-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from realtime import ConnectionRegistry  # noqa: E402
from storage import reset_memory_storage  # noqa: E402

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def memory_storage():
    """Every test starts with an empty store and no live sockets."""
    store = reset_memory_storage()
    main.app.state.registry = ConnectionRegistry()
    return store


@pytest.fixture
def make_client():
    # One client per user, each with its own cookie jar
    clients = []

    def factory():
        client = TestClient(main.app)
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.close()


def _register(client, username, is_repairman=False):
    response = client.post(
        "/api/register",
        json={"username": username, "password": PASSWORD, "isRepairman": is_repairman},
    )
    assert response.status_code == 201, response.text
    return SimpleNamespace(client=client, user=response.json())


@pytest.fixture
def admin(make_client):
    return _register(make_client(), "admin")


@pytest.fixture
def new_user(make_client, admin):
    """
    Register a user on a fresh client and return ``(client, user)`` as a namespace.

    ``subscribed=True`` also files a subscription and has the admin verify it.
    """

    def factory(username, is_repairman=False, subscribed=False):
        session = _register(make_client(), username, is_repairman)
        if subscribed:
            sub = session.client.post(
                "/api/subscription",
                json={"amount": 99, "paymentProof": "/uploads/proof.png"},
            )
            assert sub.status_code == 201, sub.text
            verified = admin.client.post(f"/api/admin/subscriptions/{sub.json()['id']}/verify")
            assert verified.status_code == 200, verified.text
        return session

    return factory


@pytest.fixture
def new_listing():
    def factory(session, **fields):
        payload = {
            "title": "Leaking kitchen tap",
            "description": "Drips all night",
            "category": "Plumbing",
            "budget": 80,
        }
        payload.update(fields)
        response = session.client.post("/api/listings", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return factory
