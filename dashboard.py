"""
Aggregations backing the admin dashboard charts and summary cards.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import database
from config import Config

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

PAID_PAYMENT_STATUSES = ("completed", "paid")
UNPAID_PAYMENT_STATUSES = ("unpaid", "partial", "pending")


def _created_between(date_from: Optional[datetime], date_to: Optional[datetime]) -> Dict[str, Any]:
    if not date_from:
        return {}
    bounds = {"$gte": date_from}
    if date_to:
        bounds["$lte"] = date_to
    return {"created_at": bounds}


def _lower(value) -> str:
    return str(value or "").lower()


def revenue_by_month(payments: List[dict]) -> List[dict]:
    totals = {month: 0.0 for month in MONTHS}
    for payment in payments:
        created = payment.get("created_at")
        if isinstance(created, datetime):
            totals[MONTHS[created.month - 1]] += float(payment.get("amount") or 0)
    return [{"name": name, "revenue": round(revenue, 2)} for name, revenue in totals.items()]


def vehicle_utilization(vehicles: List[dict]) -> Dict[str, int]:
    counts = {"In Use": 0, "Available": 0, "Maintenance": 0, "Ready": 0}
    for vehicle in vehicles:
        state = _lower(vehicle.get("status")).replace(" ", "")
        if state == "onride":
            counts["In Use"] += 1
        elif state == "available":
            counts["Available"] += 1
        elif state == "maintenance":
            counts["Maintenance"] += 1
        elif state == "ready":
            counts["Ready"] += 1
    return counts


def dashboard_stats(date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> Dict[str, Any]:
    """Figures for the dashboard overview, bookings and revenue limited to the optional date range."""
    in_range = _created_between(database.naive_utc(date_from), database.naive_utc(date_to))

    vehicles = database.get_documents("vehicle")
    bookings = database.get_documents("booking", in_range)
    all_bookings = database.get_documents("booking")
    completed_payments = database.get_documents("payment", {"status": "completed", **in_range})

    status_counts: Dict[str, int] = {}
    for booking in all_bookings:
        status_counts[booking.get("status")] = status_counts.get(booking.get("status"), 0) + 1

    utilization = vehicle_utilization(vehicles)

    return {
        "total_users": database.collection("user").count_documents({}),
        "total_vehicles": len([v for v in vehicles if _lower(v.get("status")) not in ("maintenance", "suspended")]),
        "total_bookings": len(bookings),
        "active_bookings": len([b for b in bookings if _lower(b.get("status")) != "completed"]),
        "total_revenue": round(sum(float(p.get("amount") or 0) for p in completed_payments), 2),
        "bookings_by_status": [{"name": name, "value": value} for name, value in status_counts.items()],
        "revenue_by_month": revenue_by_month(database.get_documents("payment", {"status": "completed"})),
        "vehicle_utilization": [{"name": name, "value": value} for name, value in utilization.items()],
        "maintenance_count": utilization["Maintenance"],
        "ready_count": utilization["Ready"],
    }


def dashboard_summary(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or database.utcnow()
    vehicles = database.get_documents("vehicle")
    bookings = database.get_documents("booking")
    payments = database.get_documents("payment")

    paid = [p for p in payments if _lower(p.get("status")) in PAID_PAYMENT_STATUSES]
    unpaid = [p for p in payments if _lower(p.get("status")) in UNPAID_PAYMENT_STATUSES]

    this_month = [
        p for p in paid
        if isinstance(p.get("created_at"), datetime)
        and p["created_at"].year == now.year
        and p["created_at"].month == now.month
    ]

    return {
        "currency": Config.CURRENCY,
        "total_vehicles": len(vehicles),
        "booked_vehicles": len([v for v in vehicles if _lower(v.get("status")) != "available"]),
        "onride_vehicles": len([b for b in bookings if _lower(b.get("status")) == "onride"]),
        "maintenance_vehicles": len([v for v in vehicles if _lower(v.get("status")) == "maintenance"]),
        "available_vehicles": len([v for v in vehicles if v.get("available") is True]),
        "active_bookings": len([b for b in bookings if _lower(b.get("status")) != "completed"]),
        "paid_amount": round(sum(float(p.get("amount") or 0) for p in paid), 2),
        "unpaid_amount": round(sum(float(p.get("amount") or 0) for p in unpaid), 2),
        "monthly_paid_amount": round(sum(float(p.get("amount") or 0) for p in this_month), 2),
    }
