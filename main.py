import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Literal, Optional, get_args

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from pymongo.errors import DuplicateKeyError

import auth
import booking_rules
import dashboard
import database
import rentals
from auth import (
    ADMIN_ROLES,
    DRIVER_ROLES,
    FINANCE_ROLES,
    NON_REGISTRABLE_ROLES,
    OPERATOR_ROLES,
    STAFF_MANAGER_ROLES,
    STAFF_ROLES,
    get_current_user,
    require_roles,
)
from config import Config
from database import collection, create_document, get_document, get_documents, update_document
from errors import ConflictError, InvalidTransitionError, NotFoundError, PaymentError
from schemas import (
    Customer as CustomerSchema,
    Driver as DriverSchema,
    DriverVehicle,
    StaffMember as StaffSchema,
    User as UserSchema,
    UserLocation as UserLocationSchema,
    Vehicle as VehicleSchema,
    VehicleStatus,
    VehicleType as VehicleTypeSchema,
)

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VEHICLE_STATUSES = get_args(VehicleStatus)


# Utilities to serialize MongoDB documents
def serialize_value(v):
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc).isoformat()
    if isinstance(v, dict):
        return serialize_doc(v)
    if isinstance(v, list):
        return [serialize_value(i) for i in v]
    return v


def serialize_doc(doc: dict):
    return {k: serialize_value(v) for k, v in doc.items()}


def parse_id(value: str, name: str = "id") -> str:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=400, detail=f"Invalid {name}")
    return value


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
        auth.list_roles()
        auth.ensure_admin_user()
    else:
        logger.warning("Starting without a database; data endpoints will fail")
    yield


app = FastAPI(title="Car Rental Management API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(PaymentError)
async def payment_handler(request: Request, exc: PaymentError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    key = ", ".join((exc.details or {}).get("keyValue", {}).keys()) or "value"
    return JSONResponse(status_code=409, content={"detail": f"Duplicate {key}"})


@app.get("/")
def read_root():
    return {"message": "Car Rental Management API is running"}


# Auth Endpoints
PERSONAL_FIELDS = (
    "first_name", "last_name", "nickname", "ktp_address", "relative_phone",
    "ktp_number", "sim_number", "selfie_url", "kk_url", "ktp_url", "skck_url",
)
DRIVER_FIELDS = PERSONAL_FIELDS + ("sim_expiry", "sim_url")
VEHICLE_FIELDS = (
    "vehicle_name", "vehicle_type", "vehicle_brand", "license_plate", "vehicle_year",
    "vehicle_color", "vehicle_status", "vehicle_front_image_url", "vehicle_back_image_url",
    "vehicle_side_image_url", "vehicle_interior_image_url", "stnk_url", "bpkb_url",
)


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: str = Field(..., min_length=10)
    role: str = "Customer"
    selfie_url: Optional[str] = None
    # Identity documents for drivers and staff
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None
    ktp_address: Optional[str] = None
    relative_phone: Optional[str] = None
    ktp_number: Optional[str] = None
    sim_number: Optional[str] = None
    sim_expiry: Optional[str] = None
    sim_url: Optional[str] = None
    kk_url: Optional[str] = None
    ktp_url: Optional[str] = None
    skck_url: Optional[str] = None
    # Own vehicle, Driver Mitra only
    vehicle_name: Optional[str] = None
    vehicle_type: Optional[str] = None
    vehicle_brand: Optional[str] = None
    license_plate: Optional[str] = None
    vehicle_year: Optional[str] = None
    vehicle_color: Optional[str] = None
    vehicle_status: Optional[str] = None
    vehicle_front_image_url: Optional[str] = None
    vehicle_back_image_url: Optional[str] = None
    vehicle_side_image_url: Optional[str] = None
    vehicle_interior_image_url: Optional[str] = None
    stnk_url: Optional[str] = None
    bpkb_url: Optional[str] = None

    @model_validator(mode="after")
    def check_role_fields(self):
        if self.role == "Driver Mitra":
            required = DRIVER_FIELDS + VEHICLE_FIELDS
        elif self.role == "Driver Perusahaan":
            required = DRIVER_FIELDS
        elif self.role in STAFF_ROLES:
            required = PERSONAL_FIELDS
        else:
            required = ()
        if any(not getattr(self, f) for f in required):
            raise ValueError("All fields are required for this role")
        return self


class LoginRequest(BaseModel):
    email: str
    password: str


def _register_profile(user_id: ObjectId, payload: RegisterRequest) -> None:
    """Create the role-specific profile document sharing the user's _id."""
    if payload.role == "Customer":
        customer = CustomerSchema(name=payload.name, email=payload.email, phone=payload.phone, selfie_url=payload.selfie_url)
        collection("customer").replace_one({"_id": user_id}, {**customer.model_dump(), "_id": user_id}, upsert=True)
    elif payload.role in STAFF_ROLES:
        staff = StaffSchema(
            name=f"{payload.first_name} {payload.last_name}",
            email=payload.email,
            phone=payload.phone,
            **{f: getattr(payload, f) for f in PERSONAL_FIELDS},
        )
        collection("staff").replace_one({"_id": user_id}, {**staff.model_dump(), "_id": user_id}, upsert=True)
    elif payload.role in DRIVER_ROLES:
        vehicle = None
        if payload.role == "Driver Mitra":
            vehicle = DriverVehicle(
                name=payload.vehicle_name,
                type=payload.vehicle_type,
                brand=payload.vehicle_brand,
                license_plate=payload.license_plate,
                year=payload.vehicle_year,
                color=payload.vehicle_color,
                status=payload.vehicle_status,
                front_image_url=payload.vehicle_front_image_url,
                back_image_url=payload.vehicle_back_image_url,
                side_image_url=payload.vehicle_side_image_url,
                interior_image_url=payload.vehicle_interior_image_url,
                stnk_url=payload.stnk_url,
                bpkb_url=payload.bpkb_url,
            )
        name = payload.name
        if payload.first_name and payload.last_name:
            name = f"{payload.first_name} {payload.last_name}"
        driver = DriverSchema(
            name=name,
            email=payload.email,
            phone=payload.phone,
            role=payload.role,
            nickname=payload.nickname,
            ktp_address=payload.ktp_address,
            relative_phone=payload.relative_phone,
            ktp_number=payload.ktp_number,
            sim_number=payload.sim_number,
            sim_expiry=payload.sim_expiry,
            selfie_url=payload.selfie_url,
            sim_url=payload.sim_url,
            kk_url=payload.kk_url,
            ktp_url=payload.ktp_url,
            skck_url=payload.skck_url,
            vehicle=vehicle,
        )
        collection("driver").replace_one({"_id": user_id}, {**driver.model_dump(), "_id": user_id}, upsert=True)


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest):
    if payload.role in NON_REGISTRABLE_ROLES:
        raise HTTPException(status_code=400, detail=f"Role {payload.role} cannot be self-registered")
    if not auth.role_exists(payload.role):
        raise HTTPException(status_code=400, detail=f"No role found with name: {payload.role}")

    email = payload.email.lower()
    if collection("user").find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")

    user = UserSchema(
        email=email,
        full_name=payload.name,
        password_hash=auth.get_password_hash(payload.password),
        role=payload.role,
        phone=payload.phone,
    )
    user_id = create_document("user", user)
    _register_profile(ObjectId(user_id), payload.model_copy(update={"email": email}))
    logger.info("Registered %s with role %s", email, payload.role)
    return auth.public_user(get_document("user", user_id))


@app.post("/api/auth/login")
def login(payload: LoginRequest):
    user = auth.authenticate_user(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid login credentials")

    if user.get("role") in DRIVER_ROLES:
        driver = collection("driver").find_one({"_id": user["_id"]})
        if driver and driver.get("status") == "suspended":
            logger.warning("Suspended driver %s tried to log in", user.get("email"))
            raise HTTPException(
                status_code=403,
                detail="Your account has been suspended. Please contact an administrator.",
            )

    logger.info("User %s logged in with role %s", user.get("email"), user.get("role"))
    return {
        "access_token": auth.create_access_token(user),
        "token_type": "bearer",
        "user": auth.public_user(user),
    }


@app.get("/api/auth/me")
def read_me(user: dict = Depends(get_current_user)):
    return auth.public_user(user)


# Roles Endpoints
@app.get("/api/roles")
def list_roles():
    return auth.list_roles()


@app.post("/api/roles/reset")
def reset_roles(user: dict = Depends(require_roles("Admin"))):
    return {"success": True, "data": auth.reset_roles()}


class AssignRoleRequest(BaseModel):
    role: str


@app.post("/api/users/{user_id}/role")
def assign_role(user_id: str, payload: AssignRoleRequest, admin: dict = Depends(require_roles("Admin"))):
    parse_id(user_id, "user_id")
    if not auth.role_exists(payload.role):
        raise HTTPException(status_code=400, detail=f"No role found with name: {payload.role}")
    updated = update_document("user", user_id, {"role": payload.role})
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("%s assigned role %s to user %s", admin.get("email"), payload.role, user_id)
    return auth.public_user(updated)


# Staff Endpoints
class CreateStaffRequest(BaseModel):
    email: EmailStr
    full_name: str = Field(..., min_length=2)
    password: str = Field(..., min_length=6)
    role: Optional[str] = None


class UpdateStaffRequest(BaseModel):
    full_name: Optional[str] = Field(None, min_length=2)
    role: Optional[str] = None


@app.get("/api/staff")
def list_staff(include_all: bool = Query(False, alias="all"), user: dict = Depends(require_roles(*STAFF_MANAGER_ROLES))):
    query = {} if include_all else {"role": "Staff"}
    return [auth.public_user(u) for u in get_documents("user", query)]


@app.post("/api/staff", status_code=201)
def create_staff(payload: CreateStaffRequest, user: dict = Depends(require_roles(*STAFF_MANAGER_ROLES))):
    role = payload.role or "Staff"
    if not auth.role_exists(role):
        raise HTTPException(status_code=400, detail=f"No role found with name: {role}")
    email = payload.email.lower()
    if collection("user").find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")

    staff = UserSchema(
        email=email,
        full_name=payload.full_name,
        password_hash=auth.get_password_hash(payload.password),
        role=role,
    )
    staff_id = create_document("user", staff)
    logger.info("Staff %s created by %s", email, user.get("email"))
    return auth.public_user(get_document("user", staff_id))


@app.put("/api/staff/{staff_id}")
def update_staff(staff_id: str, payload: UpdateStaffRequest, user: dict = Depends(require_roles(*STAFF_MANAGER_ROLES))):
    parse_id(staff_id, "staff_id")
    current = get_document("user", staff_id)
    if not current:
        raise HTTPException(status_code=404, detail="Staff member not found")

    fields = payload.model_dump(exclude_none=True)
    if "role" in fields and not auth.role_exists(fields["role"]):
        raise HTTPException(status_code=400, detail=f"No role found with name: {fields['role']}")
    if not fields:
        return auth.public_user(current)

    updated = update_document("user", staff_id, fields)
    if fields.get("role") and fields["role"] != current.get("role"):
        logger.info("Staff %s role changed %s -> %s", staff_id, current.get("role"), fields["role"])
    return auth.public_user(updated)


@app.delete("/api/staff/{staff_id}")
def delete_staff(staff_id: str, user: dict = Depends(require_roles(*STAFF_MANAGER_ROLES))):
    parse_id(staff_id, "staff_id")
    if not database.delete_document("user", staff_id):
        raise HTTPException(status_code=404, detail="Staff member not found")
    collection("staff").delete_one({"_id": ObjectId(staff_id)})
    logger.info("Staff %s deleted by %s", staff_id, user.get("email"))
    return {"success": True}


# Drivers & Customers Endpoints
@app.get("/api/drivers")
def list_drivers(user: dict = Depends(require_roles(*OPERATOR_ROLES, *DRIVER_ROLES))):
    return [
        {"id": str(d["_id"]), "name": d.get("name"), "status": d.get("status", "active")}
        for d in get_documents("driver")
    ]


@app.get("/api/customers")
def list_customers(user: dict = Depends(require_roles(*OPERATOR_ROLES, *DRIVER_ROLES))):
    return [{"id": str(c["_id"]), "name": c.get("name")} for c in get_documents("customer")]


def _set_driver_status(driver_id: str, driver_status: str) -> dict:
    parse_id(driver_id, "driver_id")
    updated = update_document("driver", driver_id, {"status": driver_status})
    if not updated:
        raise HTTPException(status_code=404, detail="Driver not found")
    logger.info("Driver %s is now %s", driver_id, driver_status)
    return serialize_doc(updated)


@app.post("/api/drivers/{driver_id}/suspend")
def suspend_driver(driver_id: str, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    return _set_driver_status(driver_id, "suspended")


@app.post("/api/drivers/{driver_id}/activate")
def activate_driver(driver_id: str, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    return _set_driver_status(driver_id, "active")


# Vehicle Types Endpoints
class VehicleTypeRequest(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Vehicle type name is required")
        return v


@app.get("/api/vehicle-types")
def list_vehicle_types():
    return [serialize_doc(t) for t in get_documents("vehicle_type")]


@app.post("/api/vehicle-types", status_code=201)
def add_vehicle_type(payload: VehicleTypeRequest, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    type_id = create_document("vehicle_type", VehicleTypeSchema(name=payload.name))
    return serialize_doc(get_document("vehicle_type", type_id))


@app.put("/api/vehicle-types/{type_id}")
def rename_vehicle_type(type_id: str, payload: VehicleTypeRequest, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    parse_id(type_id, "type_id")
    updated = update_document("vehicle_type", type_id, {"name": payload.name})
    if not updated:
        raise HTTPException(status_code=404, detail="Vehicle type not found")
    return serialize_doc(updated)


@app.delete("/api/vehicle-types/{type_id}")
def delete_vehicle_type(type_id: str, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    parse_id(type_id, "type_id")
    in_use = collection("vehicle").count_documents({"vehicle_type_id": type_id})
    if in_use:
        raise HTTPException(
            status_code=409,
            detail=f"Cannot delete this vehicle type because it is used by {in_use} car(s). "
                   "Please reassign those cars to another type first.",
        )
    if not database.delete_document("vehicle_type", type_id):
        raise HTTPException(status_code=404, detail="Vehicle type not found")
    return {"success": True}


# Vehicles Endpoints
def _normalize_vehicle_status(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().lower()
    if v not in VEHICLE_STATUSES:
        raise ValueError(f"Unknown vehicle status: {v}")
    return v


class CreateVehicleRequest(BaseModel):
    make: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    year: Optional[int] = Field(None, ge=1900, le=2100)
    license_plate: Optional[str] = None
    color: Optional[str] = None
    status: Optional[str] = "available"
    price: float = Field(0, ge=0, allow_inf_nan=False)
    mileage: Optional[int] = Field(None, ge=0)
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    category: Optional[str] = None
    seats: Optional[int] = Field(None, ge=1)
    image_url: Optional[str] = None
    stnk_url: Optional[str] = None
    stnk_expiry: Optional[str] = None
    tax_expiry: Optional[str] = None
    is_active: bool = True
    vehicle_type_id: Optional[str] = None

    @field_validator("status")
    @classmethod
    def known_status(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_vehicle_status(v)


class UpdateVehicleRequest(BaseModel):
    make: Optional[str] = Field(None, min_length=1)
    model: Optional[str] = Field(None, min_length=1)
    year: Optional[int] = Field(None, ge=1900, le=2100)
    license_plate: Optional[str] = None
    color: Optional[str] = None
    status: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    mileage: Optional[int] = Field(None, ge=0)
    fuel_type: Optional[str] = None
    transmission: Optional[str] = None
    category: Optional[str] = None
    seats: Optional[int] = Field(None, ge=1)
    image_url: Optional[str] = None
    stnk_url: Optional[str] = None
    stnk_expiry: Optional[str] = None
    tax_expiry: Optional[str] = None
    is_active: Optional[bool] = None
    vehicle_type_id: Optional[str] = None

    @field_validator("status")
    @classmethod
    def known_status(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_vehicle_status(v)


class VehicleStatusRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def known_status(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_vehicle_status(v)


def _check_vehicle_type(type_id: Optional[str]) -> None:
    if type_id and not (ObjectId.is_valid(type_id) and get_document("vehicle_type", type_id)):
        raise HTTPException(status_code=400, detail="Unknown vehicle_type_id")


def _check_unique_plate(plate: Optional[str], exclude_id: Optional[ObjectId] = None) -> None:
    if not plate:
        return
    query = {"license_plate": plate}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if collection("vehicle").find_one(query):
        raise HTTPException(status_code=409, detail="License plate already exists")


def _with_type_name(vehicle: dict, type_names: dict) -> dict:
    out = serialize_doc(vehicle)
    if vehicle.get("vehicle_type_id") in type_names:
        out["vehicle_type_name"] = type_names[vehicle["vehicle_type_id"]]
    return out


@app.get("/api/vehicles")
def list_vehicles(
    available: Optional[bool] = None,
    category: Optional[str] = None,
    vehicle_type_id: Optional[str] = None,
    q: Optional[str] = None,
):
    query = {}
    if available is not None:
        query["available"] = available
    if category:
        query["category"] = category
    if vehicle_type_id:
        query["vehicle_type_id"] = vehicle_type_id
    vehicles = get_documents("vehicle", query)

    if q:
        needle = q.lower()
        vehicles = [
            v for v in vehicles
            if any(needle in str(v.get(k) or "").lower() for k in ("make", "model", "license_plate"))
        ]

    type_names = {str(t["_id"]): t["name"] for t in get_documents("vehicle_type")}
    return [_with_type_name(v, type_names) for v in vehicles]


@app.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: str):
    parse_id(vehicle_id, "vehicle_id")
    vehicle = rentals.get_vehicle(vehicle_id)
    type_names = {str(t["_id"]): t["name"] for t in get_documents("vehicle_type")}
    return _with_type_name(vehicle, type_names)


@app.post("/api/vehicles", status_code=201)
def add_vehicle(payload: CreateVehicleRequest, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    _check_unique_plate(payload.license_plate)
    _check_vehicle_type(payload.vehicle_type_id)

    status = payload.status or "available"
    vehicle = VehicleSchema(
        **payload.model_dump(exclude={"year", "seats", "status"}),
        year=payload.year or datetime.now().year,
        seats=payload.seats or 4,
        status=status,
        available=payload.is_active and status == "available",
    )
    vehicle_id = create_document("vehicle", vehicle)
    logger.info("Vehicle %s %s added as %s", vehicle.make, vehicle.model, vehicle_id)
    return serialize_doc(get_document("vehicle", vehicle_id))


@app.put("/api/vehicles/{vehicle_id}")
def edit_vehicle(vehicle_id: str, payload: UpdateVehicleRequest, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    parse_id(vehicle_id, "vehicle_id")
    current = rentals.get_vehicle(vehicle_id)
    fields = payload.model_dump(exclude_unset=True)
    _check_unique_plate(fields.get("license_plate"), exclude_id=current["_id"])
    _check_vehicle_type(fields.get("vehicle_type_id"))

    if "status" in fields or "is_active" in fields:
        status = fields.get("status") or current.get("status") or "available"
        is_active = fields.get("is_active", current.get("is_active", True))
        fields["available"] = bool(is_active) and status == "available"
    return serialize_doc(update_document("vehicle", vehicle_id, fields))


@app.delete("/api/vehicles/{vehicle_id}")
def delete_vehicle(vehicle_id: str, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    parse_id(vehicle_id, "vehicle_id")
    if not database.delete_document("vehicle", vehicle_id):
        raise HTTPException(status_code=404, detail="Vehicle not found")
    logger.info("Vehicle %s deleted by %s", vehicle_id, user.get("email"))
    return {"success": True}


@app.post("/api/vehicles/{vehicle_id}/toggle-active")
def toggle_vehicle_active(vehicle_id: str, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    parse_id(vehicle_id, "vehicle_id")
    vehicle = rentals.get_vehicle(vehicle_id)
    is_active = not vehicle.get("is_active", True)
    status = "available" if is_active else "suspended"
    updated = update_document("vehicle", vehicle_id, {"is_active": is_active, "status": status, "available": is_active})
    logger.info("Vehicle %s %s", vehicle_id, "activated" if is_active else "suspended")
    return serialize_doc(updated)


@app.post("/api/vehicles/{vehicle_id}/status")
def change_vehicle_status(vehicle_id: str, payload: VehicleStatusRequest, user: dict = Depends(require_roles(*ADMIN_ROLES))):
    parse_id(vehicle_id, "vehicle_id")
    vehicle = rentals.get_vehicle(vehicle_id)
    fields = {
        "status": payload.status,
        "available": payload.status == "available",
        "is_active": False if payload.status == "suspended" else vehicle.get("is_active", True),
    }
    logger.info("Vehicle %s status %s -> %s", vehicle_id, vehicle.get("status"), payload.status)
    return serialize_doc(update_document("vehicle", vehicle_id, fields))


# Bookings Endpoints
class CreateBookingRequest(BaseModel):
    vehicle_id: str
    start_date: datetime
    end_date: datetime
    pickup_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    return_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    driver_option: Literal["self", "provided"] = "self"
    payment_method: Literal["cash", "bank", "card"] = "cash"
    payment_type: Literal["full", "partial"] = "full"
    additional_notes: Optional[str] = None
    staff_id: Optional[str] = None
    tenant_type: Optional[Literal["customer", "driver"]] = None
    tenant_id: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if database.naive_utc(self.end_date) < database.naive_utc(self.start_date):
            raise ValueError("End date must not be before start date")
        return self


class ReturnRequest(BaseModel):
    mileage: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


BOOKING_VIEWER_ROLES = OPERATOR_ROLES + ("Finance",)


def _attach_users(bookings: List[dict]) -> List[dict]:
    user_ids = {ObjectId(b["user_id"]) for b in bookings if ObjectId.is_valid(b.get("user_id", ""))}
    users = {str(u["_id"]): u for u in collection("user").find({"_id": {"$in": list(user_ids)}})}
    out = []
    for b in bookings:
        u = users.get(b.get("user_id"))
        doc = serialize_doc(b)
        doc["user"] = {"full_name": u.get("full_name"), "email": u.get("email")} if u else None
        out.append(doc)
    return out


def _matches_search(booking: dict, needle: str) -> bool:
    user = booking.get("user") or {}
    haystack = (
        user.get("full_name"),
        user.get("email"),
        booking.get("_id"),
        booking.get("vehicle_id"),
        booking.get("status"),
        booking.get("payment_status"),
    )
    return any(needle in str(v or "").lower() for v in haystack)


def _booking_for(user: dict, booking_id: str) -> dict:
    """Load a booking the caller may act on: their own, or any for operators and finance."""
    parse_id(booking_id, "booking_id")
    booking = rentals.get_booking(booking_id)
    if user.get("role") not in BOOKING_VIEWER_ROLES and booking.get("user_id") != str(user["_id"]):
        raise HTTPException(status_code=403, detail="Not enough permissions")
    return booking


@app.post("/api/bookings", status_code=201)
def create_booking(payload: CreateBookingRequest, user: dict = Depends(get_current_user)):
    parse_id(payload.vehicle_id, "vehicle_id")
    if payload.staff_id or payload.tenant_id:
        # Booking on behalf of a tenant: drivers for themselves, operators for any driver
        role = user.get("role")
        own_driver = role in DRIVER_ROLES and payload.staff_id == str(user["_id"])
        if not (own_driver or role in OPERATOR_ROLES):
            logger.warning("User %s with role %s tried to book on behalf of %s", user.get("email"), role, payload.tenant_id)
            raise HTTPException(status_code=403, detail="Not enough permissions")
    if payload.staff_id:
        parse_id(payload.staff_id, "staff_id")
    if payload.tenant_id:
        parse_id(payload.tenant_id, "tenant_id")
    booking = rentals.create_booking(user, **payload.model_dump())
    return serialize_doc(booking)


@app.get("/api/bookings")
def list_bookings(
    status: Optional[str] = None,
    q: Optional[str] = None,
    user: dict = Depends(require_roles(*BOOKING_VIEWER_ROLES)),
):
    bookings = list(collection("booking").find({}).sort([("created_at", -1), ("_id", -1)]))
    items = _attach_users(bookings)
    total = len(items)

    if status:
        wanted = booking_rules.status_filter_values(status)
        items = [b for b in items if str(b.get("status", "")).lower() in wanted]
    if q and q.strip():
        needle = q.strip().lower()
        items = [b for b in items if _matches_search(b, needle)]

    return {"total": total, "count": len(items), "items": items}


@app.get("/api/bookings/mine")
def list_my_bookings(user: dict = Depends(get_current_user)):
    bookings = collection("booking").find({"user_id": str(user["_id"])}).sort([("created_at", -1), ("_id", -1)])
    return [serialize_doc(b) for b in bookings]


@app.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str, user: dict = Depends(get_current_user)):
    booking = _booking_for(user, booking_id)
    payments = rentals.booking_payments(booking_id)
    completed = [p for p in payments if p.get("status") == "completed"]
    doc = _attach_users([booking])[0]
    doc["payments"] = [serialize_doc(p) for p in payments]
    doc["total_paid"] = booking_rules.total_paid(completed)
    doc["remaining_amount"] = booking_rules.remaining_amount(booking.get("total_amount", 0), completed)
    return doc


@app.post("/api/bookings/{booking_id}/approve")
def approve_booking(booking_id: str, user: dict = Depends(require_roles(*OPERATOR_ROLES))):
    parse_id(booking_id, "booking_id")
    return serialize_doc(rentals.approve_booking(booking_id))


@app.post("/api/bookings/{booking_id}/pickup")
def pickup_booking(booking_id: str, user: dict = Depends(require_roles(*OPERATOR_ROLES))):
    parse_id(booking_id, "booking_id")
    return serialize_doc(rentals.pickup_booking(booking_id))


@app.post("/api/bookings/{booking_id}/return")
def return_booking(
    booking_id: str,
    payload: Optional[ReturnRequest] = None,
    user: dict = Depends(require_roles(*OPERATOR_ROLES)),
):
    parse_id(booking_id, "booking_id")
    payload = payload or ReturnRequest()
    return serialize_doc(rentals.return_booking(booking_id, mileage=payload.mileage, notes=payload.notes))


@app.post("/api/bookings/{booking_id}/cancel")
def cancel_booking(booking_id: str, user: dict = Depends(get_current_user)):
    _booking_for(user, booking_id)
    return serialize_doc(rentals.cancel_booking(booking_id))


# Payments Endpoints
class PaymentRequest(BaseModel):
    amount: float = Field(..., allow_inf_nan=False)
    payment_method: str = "cash"
    confirm_overpayment: bool = False

    @field_validator("payment_method")
    @classmethod
    def known_method(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("cash", "bank", "card", "transfer"):
            raise ValueError("Unknown payment method")
        return v


@app.post("/api/bookings/{booking_id}/payments", status_code=201)
def process_payment(booking_id: str, payload: PaymentRequest, user: dict = Depends(get_current_user)):
    _booking_for(user, booking_id)
    payment = rentals.record_payment(
        booking_id,
        payload.amount,
        payment_method=payload.payment_method,
        confirm_overpayment=payload.confirm_overpayment,
    )
    booking = rentals.get_booking(booking_id)
    return {"payment": serialize_doc(payment), "booking": serialize_doc(booking)}


@app.get("/api/bookings/{booking_id}/payments")
def list_payments(booking_id: str, user: dict = Depends(get_current_user)):
    _booking_for(user, booking_id)
    return [serialize_doc(p) for p in rentals.booking_payments(booking_id)]


@app.post("/api/bookings/{booking_id}/payments/recompute")
def recompute_payment_status(booking_id: str, user: dict = Depends(require_roles(*FINANCE_ROLES, *OPERATOR_ROLES))):
    parse_id(booking_id, "booking_id")
    return serialize_doc(rentals.refresh_payment_status(booking_id))


# Dashboard Endpoints
@app.get("/api/dashboard/stats")
def get_dashboard_stats(
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    user: dict = Depends(require_roles(*FINANCE_ROLES)),
):
    return dashboard.dashboard_stats(date_from, date_to)


@app.get("/api/dashboard/summary")
def get_dashboard_summary(user: dict = Depends(require_roles(*FINANCE_ROLES))):
    return dashboard.dashboard_summary()


# Locations Endpoints
class LocationRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    device_id: Optional[str] = None


@app.put("/api/locations/me")
def store_location(payload: LocationRequest, user: dict = Depends(get_current_user)):
    location = UserLocationSchema(
        user_id=str(user["_id"]),
        user_email=user.get("email", ""),
        full_name=user.get("full_name", ""),
        **payload.model_dump(),
    )
    collection("user_location").update_one(
        {"user_id": location.user_id},
        {"$set": {**location.model_dump(), "updated_at": database.utcnow()}},
        upsert=True,
    )
    logger.debug("Location stored for user %s", location.user_id)
    return serialize_doc(collection("user_location").find_one({"user_id": location.user_id}))


@app.get("/api/locations")
def list_locations(user: dict = Depends(require_roles(*OPERATOR_ROLES))):
    return [serialize_doc(loc) for loc in get_documents("user_location")]


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }

    try:
        db = database.db
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Configured"
            response["database_name"] = db.name if hasattr(db, "name") else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    # Check environment variables
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"

    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
