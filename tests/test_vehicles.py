import database
import main


def test_add_vehicle_defaults(client, admin_headers):
    res = client.post("/api/vehicles", json={"make": "Toyota", "model": "Innova", "price": 500000}, headers=admin_headers)
    assert res.status_code == 201
    car = res.json()
    assert car["status"] == "available"
    assert car["available"] is True
    assert car["seats"] == 4
    assert car["year"] >= 2024


def test_add_vehicle_requires_admin(client, make_user):
    _, headers = make_user("Customer")
    res = client.post("/api/vehicles", json={"make": "Toyota", "model": "Innova"}, headers=headers)
    assert res.status_code == 403


def test_add_vehicle_requires_make_and_model(client, admin_headers):
    res = client.post("/api/vehicles", json={"make": "", "model": "Innova"}, headers=admin_headers)
    assert res.status_code == 422


def test_duplicate_plate_rejected(client, admin_headers):
    body = {"make": "Honda", "model": "Brio", "license_plate": "B 1234 XYZ"}
    assert client.post("/api/vehicles", json=body, headers=admin_headers).status_code == 201
    assert client.post("/api/vehicles", json=body, headers=admin_headers).status_code == 409


def test_list_vehicles_filters_and_type_name(client, admin_headers, make_vehicle):
    type_res = client.post("/api/vehicle-types", json={"name": "  MPV "}, headers=admin_headers)
    type_id = type_res.json()["_id"]
    assert type_res.json()["name"] == "MPV"

    make_vehicle(vehicle_type_id=type_id)
    make_vehicle(make="Suzuki", model="Ertiga", available=False, status="maintenance")

    available = client.get("/api/vehicles", params={"available": "true"}).json()
    assert [v["model"] for v in available] == ["Avanza"]
    assert available[0]["vehicle_type_name"] == "MPV"

    found = client.get("/api/vehicles", params={"q": "ertig"}).json()
    assert [v["make"] for v in found] == ["Suzuki"]


def test_toggle_active_suspends_and_restores(client, admin_headers, make_vehicle):
    vehicle_id = make_vehicle()
    suspended = client.post(f"/api/vehicles/{vehicle_id}/toggle-active", headers=admin_headers).json()
    assert suspended["is_active"] is False
    assert suspended["status"] == "suspended"
    assert suspended["available"] is False

    restored = client.post(f"/api/vehicles/{vehicle_id}/toggle-active", headers=admin_headers).json()
    assert restored["is_active"] is True
    assert restored["status"] == "available"
    assert restored["available"] is True


def test_status_change(client, admin_headers, make_vehicle):
    vehicle_id = make_vehicle()
    res = client.post(f"/api/vehicles/{vehicle_id}/status", json={"status": "Maintenance"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "maintenance"
    assert res.json()["available"] is False
    assert res.json()["is_active"] is True

    res = client.post(f"/api/vehicles/{vehicle_id}/status", json={"status": "suspended"}, headers=admin_headers)
    assert res.json()["is_active"] is False

    res = client.post(f"/api/vehicles/{vehicle_id}/status", json={"status": "flying"}, headers=admin_headers)
    assert res.status_code == 422


def test_edit_and_delete_vehicle(client, admin_headers, make_vehicle):
    vehicle_id = make_vehicle()
    res = client.put(f"/api/vehicles/{vehicle_id}", json={"price": 400000, "color": "Silver"}, headers=admin_headers)
    assert res.json()["price"] == 400000
    assert res.json()["color"] == "Silver"

    assert client.delete(f"/api/vehicles/{vehicle_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/vehicles/{vehicle_id}").status_code == 404


def test_invalid_vehicle_id(client):
    assert client.get("/api/vehicles/not-an-id").status_code == 400


def test_vehicle_type_in_use_cannot_be_deleted(client, admin_headers, make_vehicle):
    type_id = client.post("/api/vehicle-types", json={"name": "SUV"}, headers=admin_headers).json()["_id"]
    vehicle_id = make_vehicle(vehicle_type_id=type_id)

    res = client.delete(f"/api/vehicle-types/{type_id}", headers=admin_headers)
    assert res.status_code == 409
    assert "used by 1 car(s)" in res.json()["detail"]

    database.delete_document("vehicle", vehicle_id)
    assert client.delete(f"/api/vehicle-types/{type_id}", headers=admin_headers).status_code == 200


def test_vehicle_type_blank_name(client, admin_headers):
    assert client.post("/api/vehicle-types", json={"name": "   "}, headers=admin_headers).status_code == 422


def test_rename_vehicle_type(client, admin_headers):
    type_id = client.post("/api/vehicle-types", json={"name": "Sedan"}, headers=admin_headers).json()["_id"]
    res = client.put(f"/api/vehicle-types/{type_id}", json={"name": "Luxury Sedan"}, headers=admin_headers)
    assert res.json()["name"] == "Luxury Sedan"


def test_vehicle_year_out_of_range(client, admin_headers):
    res = client.post("/api/vehicles", json={"make": "Honda", "model": "Brio", "year": 1800}, headers=admin_headers)
    assert res.status_code == 422


def test_plate_unique_index_maps_to_conflict(client, admin_headers, db, monkeypatch):
    database.ensure_indexes()
    # Both requests passed the plate lookup before either insert landed
    monkeypatch.setattr(main, "_check_unique_plate", lambda plate, exclude_id=None: None)
    body = {"make": "Honda", "model": "Brio", "license_plate": "B 9999 ZZ"}

    assert client.post("/api/vehicles", json=body, headers=admin_headers).status_code == 201
    res = client.post("/api/vehicles", json=body, headers=admin_headers)
    assert res.status_code == 409
    assert db["vehicle"].count_documents({"license_plate": "B 9999 ZZ"}) == 1


def test_vehicles_without_plate_do_not_collide(client, admin_headers, db):
    database.ensure_indexes()
    body = {"make": "Toyota", "model": "Avanza"}
    assert client.post("/api/vehicles", json=body, headers=admin_headers).status_code == 201
    assert client.post("/api/vehicles", json=body, headers=admin_headers).status_code == 201
