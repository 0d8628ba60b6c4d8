"""
Booking lifecycle and payments.

Each operation reads the current documents, applies the rules from
booking_rules and writes the booking and its vehicle back.
"""

import logging
from datetime import datetime
from typing import List, Optional

from bson import ObjectId

import booking_rules
import database
from errors import ConflictError, NotFoundError, PaymentError
from schemas import Booking, Payment

logger = logging.getLogger(__name__)

# Vehicle status each booking status leaves the car in.
VEHICLE_STATUS_FOR = {
    booking_rules.CONFIRMED: "booked",
    booking_rules.ONRIDE: "onride",
    booking_rules.COMPLETED: "available",
    booking_rules.CANCELLED: "available",
}


def get_booking(booking_id: str) -> dict:
    booking = database.get_document("booking", booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def get_vehicle(vehicle_id: str) -> dict:
    vehicle = database.get_document("vehicle", vehicle_id)
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    return vehicle


def set_vehicle_status(vehicle_id: str, status: str) -> None:
    if not ObjectId.is_valid(vehicle_id):
        logger.warning("Booking references invalid vehicle id %s", vehicle_id)
        return
    updated = database.update_document("vehicle", vehicle_id, {"status": status, "available": status == "available"})
    if updated is None:
        logger.warning("Vehicle %s not found while setting status %s", vehicle_id, status)


def claim_vehicle(vehicle_oid: ObjectId) -> dict:
    """Atomically flip an active, available vehicle to booked; ConflictError if someone got there first."""
    claimed = database.collection("vehicle").find_one_and_update(
        {"_id": vehicle_oid, "is_active": {"$ne": False}, "status": {"$in": ["available", None]}},
        {"$set": {"status": "booked", "available": False, "updated_at": database.utcnow()}},
    )
    if claimed is None:
        raise ConflictError("Vehicle is not available")
    return claimed


def create_booking(
    user: dict,
    vehicle_id: str,
    start_date: datetime,
    end_date: datetime,
    pickup_time: str,
    return_time: str,
    driver_option: str = "self",
    payment_method: str = "cash",
    payment_type: str = "full",
    additional_notes: Optional[str] = None,
    staff_id: Optional[str] = None,
    tenant_type: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> dict:
    """Price and insert a pending booking, then mark the vehicle booked."""
    vehicle = get_vehicle(vehicle_id)
    if not vehicle.get("is_active", True) or str(vehicle.get("status") or "available").lower() != "available":
        raise ConflictError("Vehicle is not available")

    start_date = database.naive_utc(start_date)
    end_date = database.naive_utc(end_date)
    days = booking_rules.rental_days(start_date, end_date)
    total = booking_rules.booking_total(vehicle.get("price", 0), days, driver_option)

    driver_name = ""
    if staff_id:
        driver = database.get_document("driver", staff_id)
        if not driver:
            raise NotFoundError("Driver not found")
        driver_name = driver.get("name", "")

    booking = Booking(
        user_id=str(user["_id"]),
        vehicle_id=str(vehicle["_id"]),
        start_date=start_date,
        end_date=end_date,
        pickup_time=pickup_time,
        return_time=return_time,
        driver_option=driver_option,
        payment_method=payment_method,
        payment_type=payment_type,
        days=days,
        total_amount=total,
        deposit_amount=booking_rules.deposit_amount(total) if payment_type == "partial" else 0,
        additional_notes=additional_notes,
        driver_name=driver_name,
        tenant_type=tenant_type,
    )

    # A driver booking on behalf of a tenant
    if staff_id and tenant_type and tenant_id:
        if tenant_type == "customer":
            if not database.get_document("customer", tenant_id):
                raise NotFoundError("Customer not found")
            booking.user_id = tenant_id
            booking.customer_id = tenant_id
        booking.driver_id = staff_id

    claim_vehicle(vehicle["_id"])
    try:
        booking_id = database.create_document("booking", booking)
    except Exception:
        set_vehicle_status(booking.vehicle_id, "available")
        raise
    logger.info("Booking %s created for vehicle %s (%d days, total %.2f)", booking_id, booking.vehicle_id, days, total)
    return database.get_document("booking", booking_id)


def transition_booking(booking_id: str, target: str, **fields) -> dict:
    booking = get_booking(booking_id)
    status = booking_rules.check_transition(booking.get("status"), target)
    fields["status"] = status
    updated = database.update_document("booking", booking_id, fields)
    if status in VEHICLE_STATUS_FOR:
        set_vehicle_status(booking["vehicle_id"], VEHICLE_STATUS_FOR[status])
    logger.info("Booking %s moved %s -> %s", booking_id, booking.get("status"), status)
    return updated


def approve_booking(booking_id: str) -> dict:
    return transition_booking(booking_id, booking_rules.CONFIRMED)


def pickup_booking(booking_id: str) -> dict:
    return transition_booking(booking_id, booking_rules.ONRIDE, picked_up_at=database.utcnow())


def return_booking(booking_id: str, mileage: Optional[int] = None, notes: Optional[str] = None) -> dict:
    booking = transition_booking(
        booking_id,
        booking_rules.COMPLETED,
        returned_at=database.utcnow(),
        return_mileage=mileage,
        return_notes=notes,
    )
    if mileage is not None and ObjectId.is_valid(booking["vehicle_id"]):
        database.update_document("vehicle", booking["vehicle_id"], {"mileage": mileage})
    return booking


def cancel_booking(booking_id: str) -> dict:
    return transition_booking(booking_id, booking_rules.CANCELLED)


def booking_payments(booking_id: str) -> List[dict]:
    cursor = database.collection("payment").find({"booking_id": str(booking_id)}).sort([("created_at", -1), ("_id", -1)])
    return list(cursor)


def refresh_payment_status(booking_id: str) -> dict:
    """Recompute payment_status from the stored payments and save it on the booking."""
    booking = get_booking(booking_id)
    completed = [p for p in booking_payments(booking_id) if p.get("status") == "completed"]
    payment_status = booking_rules.derive_payment_status(booking.get("total_amount", 0), completed)
    if payment_status != booking.get("payment_status"):
        logger.info("Booking %s payment status %s -> %s", booking_id, booking.get("payment_status"), payment_status)
    return database.update_document("booking", booking_id, {"payment_status": payment_status})


def record_payment(booking_id: str, amount: float, payment_method: str = "cash", confirm_overpayment: bool = False) -> dict:
    booking = get_booking(booking_id)
    if booking.get("status") == booking_rules.CANCELLED:
        raise ConflictError("Cannot take payment for a cancelled booking")
    if amount is None or amount <= 0:
        raise PaymentError("Payment amount must be greater than zero.")

    completed = [p for p in booking_payments(booking_id) if p.get("status") == "completed"]
    remaining = booking_rules.remaining_amount(booking.get("total_amount", 0), completed)
    if remaining > 0 and amount > remaining and not confirm_overpayment:
        raise PaymentError(
            f"The remaining amount is {remaining:.2f}. Set confirm_overpayment to pay {amount:.2f}."
        )

    payment = Payment(
        booking_id=str(booking["_id"]),
        user_id=booking["user_id"],
        amount=amount,
        payment_method=payment_method.lower(),
    )
    payment_id = database.create_document("payment", payment)
    logger.info("Payment %s of %.2f recorded for booking %s", payment_id, amount, booking_id)
    refresh_payment_status(booking_id)
    return database.get_document("payment", payment_id)
