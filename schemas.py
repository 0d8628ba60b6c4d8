"""
Database Schemas

Car Rental Management schemas using Pydantic models.
Each Pydantic model maps to a MongoDB collection:
- Role -> "role"
- User -> "user"
- Customer -> "customer"
- Driver -> "driver"
- StaffMember -> "staff"
- VehicleType -> "vehicle_type"
- Vehicle -> "vehicle"
- Booking -> "booking"
- Payment -> "payment"
- UserLocation -> "user_location"

Customer, Driver and StaffMember documents share their _id with the owning user.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

BookingStatus = Literal["pending", "confirmed", "onride", "completed", "cancelled"]
PaymentStatus = Literal["unpaid", "partial", "paid"]
VehicleStatus = Literal["available", "booked", "onride", "rented", "maintenance", "ready", "suspended"]
DriverStatus = Literal["active", "suspended"]


class Role(BaseModel):
    """
    Access roles
    Collection: "role"
    """
    id: int = Field(..., description="Stable numeric role id")
    name: str
    role_name: str


class User(BaseModel):
    """
    Accounts able to sign in
    Collection: "user"
    """
    email: str
    full_name: str
    password_hash: str
    role: str = Field("Customer", description="Role name, see the role collection")
    phone: Optional[str] = None
    is_active: bool = True


class Customer(BaseModel):
    """
    Collection: "customer"
    """
    name: str
    email: str
    phone: Optional[str] = None
    selfie_url: Optional[str] = None


class IdentityDocuments(BaseModel):
    first_name: str
    last_name: str
    nickname: str
    ktp_address: str
    relative_phone: str
    ktp_number: str
    sim_number: str
    selfie_url: str
    kk_url: str
    ktp_url: str
    skck_url: str


class StaffMember(IdentityDocuments):
    """
    Staff profile filled in at registration
    Collection: "staff"
    """
    name: str
    email: str
    phone: str


class DriverVehicle(BaseModel):
    """Own vehicle declared by partner drivers (Driver Mitra)."""
    name: str
    type: str
    brand: str
    license_plate: str
    year: str
    color: str
    status: str
    front_image_url: str
    back_image_url: str
    side_image_url: str
    interior_image_url: str
    stnk_url: str
    bpkb_url: str


class Driver(BaseModel):
    """
    Drivers, both company and partner
    Collection: "driver"
    """
    name: str
    email: str
    phone: Optional[str] = None
    role: str = "Driver"
    status: DriverStatus = "active"
    nickname: Optional[str] = None
    ktp_address: Optional[str] = None
    relative_phone: Optional[str] = None
    ktp_number: Optional[str] = None
    sim_number: Optional[str] = None
    sim_expiry: Optional[str] = None
    selfie_url: Optional[str] = None
    sim_url: Optional[str] = None
    kk_url: Optional[str] = None
    ktp_url: Optional[str] = None
    skck_url: Optional[str] = None
    vehicle: Optional[DriverVehicle] = None


class VehicleType(BaseModel):
    """
    Collection: "vehicle_type"
    """
    name: str = Field(..., min_length=1)


class Vehicle(BaseModel):
    """
    Fleet cars
    Collection: "vehicle"
    """
    make: str
    model: str
    year: int = Field(..., ge=1900, le=2100)
    license_plate: Optional[str] = None
    color: Optional[str] = None
    status: VehicleStatus = "available"
    price: float = Field(0, ge=0, allow_inf_nan=False, description="Daily rental rate")
    mileage: Optional[int] = Field(None, ge=0)
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    category: Optional[str] = None
    seats: int = Field(4, ge=1)
    image_url: Optional[str] = None
    stnk_url: Optional[str] = None
    stnk_expiry: Optional[str] = None
    tax_expiry: Optional[str] = None
    is_active: bool = True
    available: bool = True
    vehicle_type_id: Optional[str] = None


class Booking(BaseModel):
    """
    Rental bookings
    Collection: "booking"
    """
    user_id: str
    vehicle_id: str
    start_date: datetime
    end_date: datetime
    pickup_time: str
    return_time: str
    driver_option: Literal["self", "provided"] = "self"
    payment_method: Literal["cash", "bank", "card"] = "cash"
    payment_type: Literal["full", "partial"] = "full"
    days: int = Field(..., ge=1)
    total_amount: float = Field(..., ge=0)
    deposit_amount: float = Field(0, ge=0)
    payment_status: PaymentStatus = "unpaid"
    status: BookingStatus = "pending"
    additional_notes: Optional[str] = None
    customer_id: Optional[str] = None
    driver_id: Optional[str] = None
    driver_name: str = ""
    tenant_type: Optional[Literal["customer", "driver"]] = None
    picked_up_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    return_mileage: Optional[int] = None
    return_notes: Optional[str] = None


class Payment(BaseModel):
    """
    Payments recorded against a booking
    Collection: "payment"
    """
    booking_id: str
    user_id: str
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    payment_method: Literal["cash", "bank", "card", "transfer"] = "cash"
    status: Literal["completed", "pending", "failed"] = "completed"


class UserLocation(BaseModel):
    """
    Last known position per user, one document per user_id
    Collection: "user_location"
    """
    user_id: str
    user_email: str
    full_name: str
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    device_id: Optional[str] = None
