from bson import ObjectId

from conftest import auth_headers


def _signup(client, **overrides):
    body = {"name": "Meera Iyer", "email": "meera@example.com", "password": "s3cret-pass", "phone": "9000000001"}
    body.update(overrides)
    return client.post("/auth/signup", json=body)


def test_signup_and_login(client):
    resp = _signup(client)
    assert resp.status_code == 201
    user = resp.json()
    assert user["role"] == "customer"
    assert "password_hash" not in user

    login = client.post("/auth/login", json={"email": "meera@example.com", "password": "s3cret-pass"})
    assert login.status_code == 200
    assert login.json()["_id"] == user["_id"]

    profile = client.get("/users/profile", headers={"X-User-Id": user["_id"]})
    assert profile.json()["email"] == "meera@example.com"


def test_duplicate_email(client):
    _signup(client)
    assert _signup(client, name="Someone Else").status_code == 409


def test_bad_credentials_and_role_mismatch(client):
    _signup(client)
    assert client.post("/auth/login", json={"email": "meera@example.com", "password": "nope"}).status_code == 401
    resp = client.post("/auth/login", json={"email": "meera@example.com", "password": "s3cret-pass", "role": "delivery"})
    assert resp.status_code == 401


def test_admin_role_comes_from_configured_email(monkeypatch, client):
    assert _signup(client, role="admin").status_code == 403
    monkeypatch.setenv("ADMIN_EMAIL", "boss@example.com")
    resp = _signup(client, email="boss@example.com")
    assert resp.json()["role"] == "admin"
    assert resp.json()["is_admin"] is True


def test_unknown_or_missing_user_header(client):
    assert client.get("/users/profile").status_code == 401
    assert client.get("/users/profile", headers={"X-User-Id": str(ObjectId())}).status_code == 401
    assert client.get("/users/profile", headers={"X-User-Id": "garbage"}).status_code == 401


def test_admin_only_endpoints(client, customer, admin):
    assert client.get("/orders/all", headers=auth_headers(customer)).status_code == 403
    assert client.get("/orders/all", headers=auth_headers(admin)).status_code == 200
    stats = client.get("/users/stats", headers=auth_headers(admin)).json()
    assert stats["total_users"] == 2


def test_profile_update_keeps_blank_fields(client, customer):
    resp = client.put("/users/profile", json={"name": "Asha R."}, headers=auth_headers(customer))
    assert resp.status_code == 200
    assert resp.json()["name"] == "Asha R."
    assert resp.json()["email"] == customer["email"]


def test_admin_creates_restaurant_for_owner(client, admin, make_user):
    future_owner = make_user(name="Kiran")
    resp = client.post("/admin/restaurants", json={"ownerId": future_owner["_id"], "name": "Dosa Corner"},
                       headers=auth_headers(admin))
    assert resp.status_code == 201
    restaurant = resp.json()
    assert restaurant["total_orders"] == 0

    profile = client.get("/restaurants/profile", headers=auth_headers(future_owner)).json()
    assert profile["_id"] == restaurant["_id"]
    me = client.get("/users/profile", headers=auth_headers(future_owner)).json()
    assert me["role"] == "restaurant"
    assert me["restaurant_name"] == "Dosa Corner"
