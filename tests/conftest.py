from datetime import datetime

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
from main import app
from schemas import User, Vehicle


@pytest.fixture(autouse=True)
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["car_rental_test"]
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user():
    def _make_user(role="Customer", email=None, full_name="Test User", password=None):
        email = email or f"{role.lower().replace(' ', '.')}@carrental.id"
        user = User(
            email=email,
            full_name=full_name,
            password_hash=auth.get_password_hash(password) if password else "not-a-hash",
            role=role,
        )
        user_id = database.create_document("user", user)
        doc = database.get_document("user", user_id)
        headers = {"Authorization": f"Bearer {auth.create_access_token(doc)}"}
        return doc, headers

    return _make_user


@pytest.fixture
def admin_headers(make_user):
    return make_user("Admin")[1]


@pytest.fixture
def make_vehicle():
    def _make_vehicle(**overrides):
        data = dict(make="Toyota", model="Avanza", year=2022, price=350000, license_plate=None)
        data.update(overrides)
        return database.create_document("vehicle", Vehicle(**data))

    return _make_vehicle


@pytest.fixture
def booking_payload():
    def _payload(vehicle_id, **overrides):
        data = {
            "vehicle_id": vehicle_id,
            "start_date": datetime(2026, 3, 1, 10, 0).isoformat(),
            "end_date": datetime(2026, 3, 4, 10, 0).isoformat(),
            "pickup_time": "10:00",
            "return_time": "10:00",
        }
        data.update(overrides)
        return data

    return _payload
