"""
Application configuration

All settings are read from environment variables once at import time.
"""

import os
import secrets


class Config:
    # Database
    DATABASE_URL = os.getenv("DATABASE_URL")
    DATABASE_NAME = os.getenv("DATABASE_NAME")

    # Auth
    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
    ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

    # HTTP
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    PORT = int(os.getenv("PORT", 8000))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Pricing
    DRIVER_FEE_PER_DAY = float(os.getenv("DRIVER_FEE_PER_DAY", 150000))
    DEPOSIT_RATE = float(os.getenv("DEPOSIT_RATE", 0.3))
    CURRENCY = os.getenv("CURRENCY", "IDR")
