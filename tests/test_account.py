from conftest import ADMIN_PASSWORD, order_json


def login(client, email, password) -> dict:
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


def user_headers(client, email="member@example.com", password="secret1") -> dict:
    r = client.post("/api/auth/signup", json={"email": email, "password": password, "name": "Member"})
    assert r.status_code == 201
    return login(client, email, password)


def test_profile_requires_token(client):
    assert client.get("/api/account/profile").status_code == 401
    r = client.get("/api/account/profile", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_profile_and_update(client):
    headers = user_headers(client)
    r = client.get("/api/account/profile", headers=headers)
    assert r.status_code == 200
    assert r.json()["email"] == "member@example.com"

    r = client.patch("/api/account/profile", json={"name": "Renamed"}, headers=headers)
    assert r.json()["user"]["name"] == "Renamed"

    r = client.patch("/api/account/profile", json={"newPassword": "changed1"}, headers=headers)
    assert r.status_code == 401
    r = client.patch("/api/account/profile", json={"currentPassword": "wrong", "newPassword": "changed1"}, headers=headers)
    assert r.status_code == 401
    r = client.patch("/api/account/profile", json={"currentPassword": "secret1", "newPassword": "changed1"}, headers=headers)
    assert r.status_code == 200
    login(client, "member@example.com", "changed1")


def test_change_email(client, store):
    headers = user_headers(client)
    r = client.post("/api/account/change-email", json={"newEmail": "member@example.com"}, headers=headers)
    assert r.status_code == 400

    r = client.post("/api/account/change-email", json={"newEmail": "moved@example.com"}, headers=headers)
    assert r.status_code == 200
    code = store.active.otps[("moved@example.com", "email_change")].code

    r = client.post("/api/account/verify-email-change", json={"newEmail": "moved@example.com", "code": code}, headers=headers)
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "moved@example.com"
    login(client, "moved@example.com", "secret1")


def test_my_orders(client):
    headers = user_headers(client)
    product = client.get("/api/products/1").json()
    client.post("/api/orders", json=order_json(product, email="Member@Example.com"))
    client.post("/api/orders", json=order_json(product, email="someone@example.com"))

    r = client.get("/api/user/orders", headers=headers)
    assert r.status_code == 200
    assert [o["customerEmail"].lower() for o in r.json()] == ["member@example.com"]


def test_delete_account(client, store):
    headers = user_headers(client)
    r = client.request("DELETE", "/api/account/delete", json={"password": "wrong"}, headers=headers)
    assert r.status_code == 401

    r = client.request("DELETE", "/api/account/delete", json={"password": "secret1"}, headers=headers)
    assert r.status_code == 200
    assert client.get("/api/account/profile", headers=headers).status_code == 401
    assert not [k for k in store.active.otps if k[0] == "member@example.com"]


def test_last_admin_cannot_be_deleted(client, admin_headers):
    r = client.request("DELETE", "/api/account/delete", json={"password": ADMIN_PASSWORD}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()["detail"] == "Cannot delete the only admin account"


def test_backup_requires_admin(client):
    assert client.get("/api/admin/backup").status_code == 401
    headers = user_headers(client)
    r = client.get("/api/admin/backup", headers=headers)
    assert r.status_code == 403
    assert r.json()["detail"] == "Admin access required"


def test_backup_contents(client, admin_headers):
    product = client.get("/api/products/1").json()
    order = client.post("/api/orders", json=order_json(product)).json()

    r = client.get("/api/admin/backup", headers=admin_headers)
    assert r.status_code == 200
    assert r.headers["Content-Disposition"].startswith("attachment; filename=database-backup-")
    backup = r.json()
    assert backup["version"] == "1.0.0"
    assert len(backup["data"]["products"]) == 5
    assert [o["id"] for o in backup["data"]["orders"]] == [order["id"]]
    assert "users" not in backup["data"]


def test_restore_keeps_ids_and_stock(client, admin_headers, store):
    product = client.get("/api/products/1").json()
    order = client.post("/api/orders", json=order_json(product, quantity=2)).json()
    backup = client.get("/api/admin/backup", headers=admin_headers).json()

    client.delete("/api/products/1")
    store.active.orders.clear()
    backup["data"]["orders"][0]["status"] = "cancelled"

    r = client.post("/api/admin/restore", json=backup, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["stats"] == {"products": 5, "orders": 1}

    assert client.get("/api/products/1").json()["stock"] == product["stock"]
    assert client.get(f"/api/orders/{order['id']}").json()["status"] == "cancelled"

    r = client.post("/api/products", json={
        "name": "After restore", "description": "d", "image": "/i.png",
        "price": 1, "category": "c", "stock": 1,
    })
    assert r.json()["id"] == 6
