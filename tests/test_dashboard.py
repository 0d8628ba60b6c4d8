from datetime import datetime

import dashboard
from config import Config


def seed(db):
    db["vehicle"].insert_many([
        {"make": "Toyota", "model": "Avanza", "status": "available", "available": True},
        {"make": "Toyota", "model": "Innova", "status": "onride", "available": False},
        {"make": "Honda", "model": "Brio", "status": "Maintenance", "available": False},
        {"make": "Suzuki", "model": "Ertiga", "status": "ready", "available": False},
        {"make": "Daihatsu", "model": "Xenia", "status": "suspended", "available": False},
    ])
    db["booking"].insert_many([
        {"status": "pending", "created_at": datetime(2026, 1, 10)},
        {"status": "onride", "created_at": datetime(2026, 2, 10)},
        {"status": "completed", "created_at": datetime(2026, 2, 20)},
    ])
    db["payment"].insert_many([
        {"amount": 100, "status": "completed", "created_at": datetime(2026, 1, 15)},
        {"amount": 250, "status": "completed", "created_at": datetime(2026, 2, 15)},
        {"amount": 40, "status": "pending", "created_at": datetime(2026, 2, 16)},
    ])
    db["user"].insert_many([{"email": "a@carrental.id"}, {"email": "b@carrental.id"}])


def test_dashboard_stats(db):
    seed(db)
    stats = dashboard.dashboard_stats()

    assert stats["total_users"] == 2
    assert stats["total_vehicles"] == 3
    assert stats["total_bookings"] == 3
    assert stats["active_bookings"] == 2
    assert stats["total_revenue"] == 350
    assert {"name": "onride", "value": 1} in stats["bookings_by_status"]
    assert stats["revenue_by_month"][0] == {"name": "Jan", "revenue": 100}
    assert stats["revenue_by_month"][1] == {"name": "Feb", "revenue": 250}
    assert len(stats["revenue_by_month"]) == 12
    assert {"name": "In Use", "value": 1} in stats["vehicle_utilization"]
    assert stats["maintenance_count"] == 1
    assert stats["ready_count"] == 1


def test_dashboard_stats_date_range(db):
    seed(db)
    stats = dashboard.dashboard_stats(datetime(2026, 2, 1), datetime(2026, 2, 28))
    assert stats["total_bookings"] == 2
    assert stats["active_bookings"] == 1
    assert stats["total_revenue"] == 250


def test_dashboard_summary(db):
    seed(db)
    summary = dashboard.dashboard_summary(now=datetime(2026, 2, 28))
    assert summary["total_vehicles"] == 5
    assert summary["booked_vehicles"] == 4
    assert summary["onride_vehicles"] == 1
    assert summary["maintenance_vehicles"] == 1
    assert summary["available_vehicles"] == 1
    assert summary["paid_amount"] == 350
    assert summary["unpaid_amount"] == 40
    assert summary["monthly_paid_amount"] == 250
    assert summary["currency"] == Config.CURRENCY


def test_dashboard_endpoints_are_role_gated(client, make_user, db):
    seed(db)
    _, customer_headers = make_user("Customer")
    _, finance_headers = make_user("Finance")

    assert client.get("/api/dashboard/stats", headers=customer_headers).status_code == 403

    res = client.get(
        "/api/dashboard/stats",
        params={"date_from": "2026-02-01T00:00:00Z", "date_to": "2026-02-28T23:59:59Z"},
        headers=finance_headers,
    )
    assert res.status_code == 200
    assert res.json()["total_revenue"] == 250

    assert client.get("/api/dashboard/summary", headers=finance_headers).status_code == 200
