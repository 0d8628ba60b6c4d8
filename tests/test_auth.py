import pytest
from pymongo.errors import DuplicateKeyError

import auth
import database


def staff_fields():
    return {
        "first_name": "Budi",
        "last_name": "Santoso",
        "nickname": "Budi",
        "ktp_address": "Jl. Merdeka 1, Jakarta",
        "relative_phone": "081200000001",
        "ktp_number": "3171000000000001",
        "sim_number": "SIM-123",
        "selfie_url": "https://files.carrental.id/selfie.jpg",
        "kk_url": "https://files.carrental.id/kk.jpg",
        "ktp_url": "https://files.carrental.id/ktp.jpg",
        "skck_url": "https://files.carrental.id/skck.jpg",
    }


def register_body(**overrides):
    body = {
        "name": "Siti Customer",
        "email": "siti@carrental.id",
        "password": "secret123",
        "phone": "081234567890",
        "role": "Customer",
    }
    body.update(overrides)
    return body


def test_register_customer_creates_customer_profile(client, db):
    res = client.post("/api/auth/register", json=register_body())
    assert res.status_code == 201
    user = res.json()
    assert user["role"] == "Customer"
    assert "password_hash" not in user

    customer = db["customer"].find_one({"email": "siti@carrental.id"})
    assert customer is not None
    assert str(customer["_id"]) == user["id"]


def test_register_duplicate_email(client):
    assert client.post("/api/auth/register", json=register_body()).status_code == 201
    res = client.post("/api/auth/register", json=register_body(email="SITI@carrental.id"))
    assert res.status_code == 409


def test_register_privileged_role_refused(client):
    res = client.post("/api/auth/register", json=register_body(role="Admin"))
    assert res.status_code == 400


def test_register_unknown_role(client):
    res = client.post("/api/auth/register", json=register_body(role="Pilot"))
    assert res.status_code == 400


def test_register_staff_requires_identity_documents(client):
    res = client.post("/api/auth/register", json=register_body(role="Staff", email="staff@carrental.id"))
    assert res.status_code == 422
    assert "All fields are required for this role" in res.text


def test_register_staff_with_documents(client, db):
    body = register_body(role="Staff", email="budi@carrental.id", **staff_fields())
    res = client.post("/api/auth/register", json=body)
    assert res.status_code == 201
    staff = db["staff"].find_one({"email": "budi@carrental.id"})
    assert staff["name"] == "Budi Santoso"
    assert staff["ktp_url"].endswith("ktp.jpg")


def test_register_driver_perusahaan_creates_active_driver(client, db):
    body = register_body(
        role="Driver Perusahaan",
        email="driver@carrental.id",
        sim_expiry="2028-01-01",
        sim_url="https://files.carrental.id/sim.jpg",
        **staff_fields(),
    )
    res = client.post("/api/auth/register", json=body)
    assert res.status_code == 201
    driver = db["driver"].find_one({"email": "driver@carrental.id"})
    assert driver["status"] == "active"
    assert driver["vehicle"] is None


def test_register_driver_mitra_requires_vehicle(client):
    body = register_body(
        role="Driver Mitra",
        email="mitra@carrental.id",
        sim_expiry="2028-01-01",
        sim_url="https://files.carrental.id/sim.jpg",
        **staff_fields(),
    )
    res = client.post("/api/auth/register", json=body)
    assert res.status_code == 422


def test_login_and_me(client):
    client.post("/api/auth/register", json=register_body())
    res = client.post("/api/auth/login", json={"email": "siti@carrental.id", "password": "secret123"})
    assert res.status_code == 200
    token = res.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "siti@carrental.id"


def test_login_wrong_password(client):
    client.post("/api/auth/register", json=register_body())
    res = client.post("/api/auth/login", json={"email": "siti@carrental.id", "password": "wrong-pass"})
    assert res.status_code == 401


def test_suspended_driver_cannot_login(client, make_user, db):
    user, _ = make_user("Driver", email="pak.driver@carrental.id", password="secret123")
    db["driver"].insert_one({"_id": user["_id"], "name": "Pak Driver", "email": user["email"], "status": "suspended"})

    res = client.post("/api/auth/login", json={"email": "pak.driver@carrental.id", "password": "secret123"})
    assert res.status_code == 403
    assert "suspended" in res.json()["detail"]


def test_missing_and_bad_tokens(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_roles_seeded_and_reset(client, make_user, db):
    roles = client.get("/api/roles").json()
    assert [r["name"] for r in roles][:2] == ["Admin", "Manager"]
    assert len(roles) == len(auth.DEFAULT_ROLES)

    db["role"].delete_one({"name": "Mechanic"})
    _, headers = make_user("Admin")
    res = client.post("/api/roles/reset", headers=headers)
    assert res.status_code == 200
    assert len(res.json()["data"]) == len(auth.DEFAULT_ROLES)


def test_roles_reset_needs_admin(client, make_user):
    _, headers = make_user("Staff")
    assert client.post("/api/roles/reset", headers=headers).status_code == 403


def test_assign_role(client, make_user, admin_headers):
    user, _ = make_user("Customer")
    res = client.post(f"/api/users/{user['_id']}/role", json={"role": "Finance"}, headers=admin_headers)
    assert res.status_code == 200
    assert database.get_document("user", user["_id"])["role"] == "Finance"


def test_ensure_admin_user(monkeypatch, db):
    monkeypatch.setattr(auth.Config, "ADMIN_EMAIL", "Boss@carrental.id")
    monkeypatch.setattr(auth.Config, "ADMIN_PASSWORD", "admin123")
    auth.ensure_admin_user()
    auth.ensure_admin_user()
    admins = list(db["user"].find({"email": "boss@carrental.id"}))
    assert len(admins) == 1
    assert admins[0]["role"] == "Admin"


def test_email_unique_index(db):
    database.ensure_indexes()
    db["user"].insert_one({"email": "dup@carrental.id", "role": "Customer"})
    with pytest.raises(DuplicateKeyError):
        db["user"].insert_one({"email": "dup@carrental.id", "role": "Customer"})
