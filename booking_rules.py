"""
Pricing, payment-status derivation and booking status transitions.

Pure functions over plain values and documents; nothing here touches the database.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from config import Config
from errors import InvalidTransitionError

PENDING = "pending"
CONFIRMED = "confirmed"
ONRIDE = "onride"
COMPLETED = "completed"
CANCELLED = "cancelled"

# Older records and the booking form use "booked" for a booking awaiting approval.
STATUS_ALIASES = {"booked": PENDING}

TRANSITIONS: Dict[str, Set[str]] = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {ONRIDE, CANCELLED},
    ONRIDE: {COMPLETED},
    COMPLETED: set(),
    CANCELLED: set(),
}

UNPAID = "unpaid"
PARTIAL = "partial"
PAID = "paid"


def normalize_status(status: Optional[str]) -> str:
    value = (status or "").strip().lower().replace("-", "").replace(" ", "")
    return STATUS_ALIASES.get(value, value)


def can_transition(current: str, target: str) -> bool:
    return normalize_status(target) in TRANSITIONS.get(normalize_status(current), set())


def check_transition(current: str, target: str) -> str:
    """Return the normalized target status or raise InvalidTransitionError."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    return normalize_status(target)


def status_filter_values(status: str) -> List[str]:
    """Stored status values that match a filter; "booked" covers pending and booked."""
    value = normalize_status(status)
    if value == PENDING:
        return [PENDING, "booked"]
    return [value]


def rental_days(start: datetime, end: datetime) -> int:
    # Partial days round up; a same-day rental is one day
    duration = abs(end - start)
    return max(1, duration.days + (1 if duration.seconds > 0 or duration.microseconds > 0 else 0))


def booking_total(daily_price: float, days: int, driver_option: str = "self") -> float:
    total = float(daily_price or 0) * days
    if driver_option == "provided":
        total += Config.DRIVER_FEE_PER_DAY * days
    return round(total, 2)


def deposit_amount(total: float) -> float:
    return round(total * Config.DEPOSIT_RATE, 2)


def total_paid(payments: Iterable[dict]) -> float:
    return round(sum(float(p.get("amount") or 0) for p in payments), 2)


def remaining_amount(total: float, payments: Iterable[dict]) -> float:
    return max(0.0, round(float(total or 0) - total_paid(payments), 2))


def derive_payment_status(total: float, payments: Iterable[dict]) -> str:
    paid = total_paid(payments)
    if paid >= float(total or 0):
        return PAID
    if paid > 0:
        return PARTIAL
    return UNPAID
