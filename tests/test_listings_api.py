def test_create_requires_login(make_client):
    response = make_client().post(
        "/api/listings",
        json={"title": "Tap", "description": "Drips", "category": "Plumbing", "budget": 10},
    )

    assert response.status_code == 401


def test_create_and_fetch(new_user, new_listing):
    alice = new_user("alice")

    listing = new_listing(alice, imageUrl="/uploads/tap.png")

    assert listing["status"] == "open"
    assert listing["userId"] == alice.user["id"]
    assert listing["imageUrl"] == "/uploads/tap.png"

    fetched = alice.client.get(f"/api/listings/{listing['id']}")
    assert fetched.status_code == 200
    assert fetched.json() == listing


def test_invalid_budget(new_user):
    alice = new_user("alice")

    response = alice.client.post(
        "/api/listings",
        json={"title": "Tap", "description": "Drips", "category": "Plumbing", "budget": 0},
    )

    assert response.status_code == 400


def test_browse_and_filter(new_user, new_listing, make_client):
    alice = new_user("alice")
    tap = new_listing(alice, category="Plumbing")
    lamp = new_listing(alice, title="Lamp flickers", category="Electrical")

    everyone = make_client()
    assert [item["id"] for item in everyone.get("/api/listings").json()] == [lamp["id"], tap["id"]]

    filtered = everyone.get("/api/listings/category/plumb").json()
    assert [item["id"] for item in filtered] == [tap["id"]]


def test_missing_listing(make_client):
    response = make_client().get("/api/listings/999")

    assert response.status_code == 404
    assert response.json() == {"detail": "Listing not found"}


def test_only_owner_deletes(new_user, new_listing):
    alice = new_user("alice")
    bob = new_user("bob")
    listing = new_listing(alice)

    assert bob.client.delete(f"/api/listings/{listing['id']}").status_code == 403

    response = alice.client.delete(f"/api/listings/{listing['id']}")
    assert response.status_code == 200
    assert response.json() == {"message": "Listing deleted successfully"}
    assert alice.client.get(f"/api/listings/{listing['id']}").status_code == 404


def test_admin_deletes_listing(admin, new_user, new_listing):
    listing = new_listing(new_user("alice"))

    assert admin.client.delete(f"/api/admin/listings/{listing['id']}").status_code == 200
    assert admin.client.get(f"/api/listings/{listing['id']}").status_code == 404
    assert admin.client.delete(f"/api/admin/listings/{listing['id']}").status_code == 404


def test_chat_history_limited_to_participants(new_user, new_listing, admin):
    alice = new_user("alice")
    carol = new_user("carol")
    listing = new_listing(alice)

    assert alice.client.get(f"/api/listings/{listing['id']}/messages").json() == []
    assert carol.client.get(f"/api/listings/{listing['id']}/messages").status_code == 403
    assert admin.client.get(f"/api/listings/{listing['id']}/messages").status_code == 200
