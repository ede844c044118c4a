"""Application configuration module."""

import os
from datetime import timedelta
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y"}


class Config:
    """Base configuration for the Flask application."""

    # Core
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", SECRET_KEY)
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(
        seconds=int(os.getenv("JWT_EXPIRES_SECONDS", 7 * 24 * 3600))
    )
    # The preview iframe cannot send headers, so it passes the token in the URL.
    JWT_TOKEN_LOCATION = ["headers", "query_string"]
    JWT_QUERY_STRING_NAME = "userToken"
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///prowriter.db")
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", str(Path("workspace") / "uploads"))
    PREVIEW_DIR = os.getenv("PREVIEW_DIR")  # defaults to <UPLOAD_DIR>/previews
    MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", 20 * 1024 * 1024))
    APP_ORIGIN = os.getenv("APP_ORIGIN", "http://localhost:5000")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # CORS
    _raw_origins = os.getenv("ORIGINS", "*")
    if _raw_origins.strip() == "*":
        CORS_ORIGINS = "*"
    else:
        CORS_ORIGINS = [o.strip() for o in _raw_origins.split(",") if o.strip()]

    # Rate limiting
    RATE_LIMIT = os.getenv("RATE_LIMIT", "120 per minute")
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_KEY_PREFIX = os.getenv("RATELIMIT_KEY_PREFIX", "")

    # Accounts / mail
    VERIFICATION_CODE_TTL = int(os.getenv("VERIFICATION_CODE_TTL", 15 * 60))
    EMAIL_CHECK_DELIVERABILITY = _env_bool("EMAIL_CHECK_DELIVERABILITY", True)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", 10))
    EMAIL_FROM = os.getenv("EMAIL_FROM", "no-reply@prowriters.local")

    # M-Pesa / payments (simulated when MPESA_CONSUMER_KEY is unset)
    MPESA_CONSUMER_KEY = os.getenv("MPESA_CONSUMER_KEY")
    MPESA_CONSUMER_SECRET = os.getenv("MPESA_CONSUMER_SECRET")
    MPESA_SHORTCODE = os.getenv("MPESA_SHORTCODE")
    MPESA_PASSKEY = os.getenv("MPESA_PASSKEY")
    MPESA_CALLBACK_URL = os.getenv("MPESA_CALLBACK_URL")
    MPESA_ENV = os.getenv("MPESA_ENV", "sandbox").lower()
    PAYMENT_GATEWAY_TIMEOUT = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", 15))
    PAYMENT_SIMULATION_DELAY = float(os.getenv("PAYMENT_SIMULATION_DELAY", 4))
    PAYMENT_CONFIRMATION_DELIVERS = _env_bool("PAYMENT_CONFIRMATION_DELIVERS", True)

    # Document previews
    SOFFICE_BINARY = os.getenv("SOFFICE_BINARY", "soffice")
    PREVIEW_CONVERSION_TIMEOUT = float(os.getenv("PREVIEW_CONVERSION_TIMEOUT", 120))
    PREVIEW_WORKERS = int(os.getenv("PREVIEW_WORKERS", 2))
