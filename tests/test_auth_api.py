import main

PASSWORD = "secret123"


def test_register_logs_in(make_client):
    client = make_client()

    response = client.post(
        "/api/register",
        json={"username": "alice", "password": PASSWORD, "isRepairman": True},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["username"] == "alice"
    assert body["isRepairman"] is True
    assert body["isAdmin"] is False
    assert "password" not in body

    me = client.get("/api/user")
    assert me.status_code == 200
    assert me.json()["id"] == body["id"]


def test_duplicate_username(new_user, make_client):
    new_user("alice")

    response = make_client().post("/api/register", json={"username": "alice", "password": PASSWORD})

    assert response.status_code == 400
    assert response.json()["detail"] == "Username already exists"


def test_register_validation(make_client):
    response = make_client().post("/api/register", json={"username": "al", "password": "123"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid request"
    assert response.json()["errors"]


def test_login_and_logout(new_user, make_client):
    new_user("alice")
    client = make_client()

    assert client.post("/api/login", json={"username": "alice", "password": "wrong-pass"}).status_code == 401
    assert client.post("/api/login", json={"username": "nobody", "password": PASSWORD}).status_code == 401

    response = client.post("/api/login", json={"username": "alice", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["username"] == "alice"
    assert client.get("/api/user").status_code == 200

    assert client.post("/api/logout").json() == {"message": "Logged out"}
    assert client.get("/api/user").status_code == 401


def test_anonymous_user_endpoint(make_client):
    assert make_client().get("/api/user").status_code == 401


def test_admin_flag_from_configured_names(admin, new_user):
    assert admin.user["isAdmin"] is True
    assert new_user("alice").user["isAdmin"] is False


def test_admin_routes_reject_others(new_user, make_client):
    alice = new_user("alice")

    assert alice.client.get("/api/admin/users").status_code == 403
    assert make_client().get("/api/admin/users").status_code == 403


def test_admin_lists_users(admin, new_user):
    new_user("alice")

    response = admin.client.get("/api/admin/users")

    assert response.status_code == 200
    assert [u["username"] for u in response.json()] == ["admin", "alice"]


def test_block_and_unblock(admin, new_user, make_client):
    alice = new_user("alice")
    user_id = alice.user["id"]

    blocked = admin.client.post(f"/api/admin/users/{user_id}/toggle-block")
    assert blocked.status_code == 200
    assert blocked.json()["isBlocked"] is True

    # Existing session and fresh logins are both refused
    assert alice.client.get("/api/user").status_code == 403
    login = make_client().post("/api/login", json={"username": "alice", "password": PASSWORD})
    assert login.status_code == 403

    unblocked = admin.client.post(f"/api/admin/users/{user_id}/toggle-block")
    assert unblocked.json()["isBlocked"] is False
    assert alice.client.get("/api/user").status_code == 200


def test_admin_cannot_block_self(admin):
    response = admin.client.post(f"/api/admin/users/{admin.user['id']}/toggle-block")

    assert response.status_code == 400


def test_block_unknown_user(admin):
    assert admin.client.post("/api/admin/users/999/toggle-block").status_code == 404


def test_ping_and_health(make_client):
    client = make_client()

    ping = client.get("/ping")
    assert ping.status_code == 200
    assert ping.text == "pong"

    assert client.get("/api/health").json() == {"ok": True, "storage": "memory"}


def test_blocking_drops_live_chat_socket(admin, new_user):
    alice = new_user("alice")
    registry = main.app.state.registry
    registry.register(alice.user["id"], object())

    admin.client.post(f"/api/admin/users/{alice.user['id']}/toggle-block")

    assert registry.lookup(alice.user["id"]) is None
