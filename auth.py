"""
Roles, password hashing, JWT issuing and the FastAPI auth dependencies.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

import database
from config import Config
from schemas import Role, User

logger = logging.getLogger(__name__)

DEFAULT_ROLES = [
    (1, "Admin"),
    (2, "Manager"),
    (3, "Supervisor"),
    (4, "Staff Traffic"),
    (5, "HRD"),
    (6, "Customer"),
    (7, "user"),
    (11, "Driver"),
    (12, "Mechanic"),
    (13, "Finance"),
    (25, "Staff"),
    (30, "Driver Mitra"),
    (31, "Driver Perusahaan"),
]

ADMIN_ROLES = ("Admin", "Manager", "Supervisor")
FINANCE_ROLES = ADMIN_ROLES + ("Finance",)
OPERATOR_ROLES = ADMIN_ROLES + ("Staff", "Staff Traffic")
STAFF_MANAGER_ROLES = ADMIN_ROLES + ("HRD",)
STAFF_ROLES = ("Staff", "Staff Traffic")
DRIVER_ROLES = ("Driver", "Driver Mitra", "Driver Perusahaan")
NON_REGISTRABLE_ROLES = ("Admin", "Manager", "Supervisor", "HRD", "Finance")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# Roles

def reset_roles() -> List[dict]:
    """Replace the whole role collection with the default catalogue."""
    roles = database.collection("role")
    roles.delete_many({})
    docs = [Role(id=role_id, name=name, role_name=name).model_dump() for role_id, name in DEFAULT_ROLES]
    roles.insert_many(docs)
    logger.info("Role catalogue reset to %d default roles", len(docs))
    return list(roles.find({}, {"_id": 0}).sort("id", 1))


def list_roles() -> List[dict]:
    roles = list(database.collection("role").find({}, {"_id": 0}).sort("id", 1))
    if not roles:
        return reset_roles()
    return roles


def role_exists(name: str) -> bool:
    list_roles()
    return database.collection("role").find_one({"name": name}) is not None


# Passwords and tokens

def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (UnknownHashError, ValueError):
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=Config.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(user["_id"]), "role": user.get("role"), "exp": expire}
    return jwt.encode(claims, Config.SECRET_KEY, algorithm=Config.ALGORITHM)


def authenticate_user(email: str, password: str) -> Optional[dict]:
    user = database.collection("user").find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        return None
    if not user.get("is_active", True):
        return None
    return user


def public_user(user: dict) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "email": user.get("email"),
        "full_name": user.get("full_name"),
        "role": user.get("role"),
        "phone": user.get("phone"),
        "is_active": user.get("is_active", True),
    }


def ensure_admin_user() -> None:
    """Create the bootstrap admin from ADMIN_EMAIL/ADMIN_PASSWORD if it does not exist yet."""
    if not (Config.ADMIN_EMAIL and Config.ADMIN_PASSWORD):
        return
    email = Config.ADMIN_EMAIL.strip().lower()
    if database.collection("user").find_one({"email": email}):
        return
    user = User(
        email=email,
        full_name="Administrator",
        password_hash=get_password_hash(Config.ADMIN_PASSWORD),
        role="Admin",
    )
    database.create_document("user", user)
    logger.info("Bootstrap admin %s created", email)


# Dependencies

def get_current_user(token: str = Depends(oauth2_scheme)) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, Config.SECRET_KEY, algorithms=[Config.ALGORITHM])
    except JWTError:
        raise credentials_exception
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise credentials_exception
    user = database.get_document("user", user_id)
    if not user or not user.get("is_active", True):
        raise credentials_exception
    return user


def require_roles(*roles: str):
    """Dependency factory allowing only users whose role is one of `roles`."""

    def checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            logger.warning("User %s with role %s denied; needs one of %s", user.get("email"), user.get("role"), roles)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")
        return user

    return checker
