"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final, List

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)

KNOWN_PAYMENT_METHODS: Final[tuple[str, ...]] = ("cod", "razorpay", "square")


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are absent or malformed."""


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _csv(value: str | None, default: str) -> tuple[str, ...]:
    raw = value if value is not None else default
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    fallback_path = BASE_DIR / "db" / "customtees.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "CustomTees")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str | None] = os.getenv("SECRET_KEY")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "8000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")

    # Pricing (all money is in minor currency units)
    STORE_CURRENCY: Final[str] = os.getenv("STORE_CURRENCY", "USD").upper()
    DESIGN_PIXELS_PER_INCH: Final[float] = float(os.getenv("DESIGN_PIXELS_PER_INCH", "40"))
    CUSTOMIZATION_RATE_PER_SQ_INCH: Final[float] = float(os.getenv("CUSTOMIZATION_RATE_PER_SQ_INCH", "10"))
    MAX_DESIGN_PAYLOAD_BYTES: Final[int] = int(os.getenv("MAX_DESIGN_PAYLOAD_BYTES", str(15 * 1024 * 1024)))
    MAX_CART_ITEM_QUANTITY: Final[int] = int(os.getenv("MAX_CART_ITEM_QUANTITY", "100"))

    # Coupons
    COUPON_USAGE_TRACKING_ENABLED: Final[bool] = _str_to_bool(
        os.getenv("COUPON_USAGE_TRACKING_ENABLED"), default=False
    )

    # Payments
    PAYMENT_METHODS: Final[tuple[str, ...]] = _csv(os.getenv("PAYMENT_METHODS"), "cod")
    GATEWAY_TIMEOUT_SECONDS: Final[float] = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

    SQUARE_ACCESS_TOKEN: Final[str | None] = os.getenv("SQUARE_ACCESS_TOKEN")
    SQUARE_LOCATION_ID: Final[str | None] = os.getenv("SQUARE_LOCATION_ID")
    SQUARE_ENVIRONMENT: Final[str] = os.getenv("SQUARE_ENVIRONMENT", "sandbox").lower()
    SQUARE_API_VERSION: Final[str] = os.getenv("SQUARE_API_VERSION", "2024-10-17")

    RAZORPAY_KEY_ID: Final[str | None] = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET: Final[str | None] = os.getenv("RAZORPAY_KEY_SECRET")

    # Shipping
    SHIPPING_ENABLED: Final[bool] = _str_to_bool(os.getenv("SHIPPING_ENABLED"), default=False)
    CARRIER_TIMEOUT_SECONDS: Final[float] = float(os.getenv("CARRIER_TIMEOUT_SECONDS", "20"))
    UPS_CLIENT_ID: Final[str | None] = os.getenv("UPS_CLIENT_ID")
    UPS_CLIENT_SECRET: Final[str | None] = os.getenv("UPS_CLIENT_SECRET")
    UPS_ACCOUNT_NUMBER: Final[str | None] = os.getenv("UPS_ACCOUNT_NUMBER")
    UPS_ENVIRONMENT: Final[str] = os.getenv("UPS_ENVIRONMENT", "sandbox").lower()
    UPS_SERVICE_CODE: Final[str] = os.getenv("UPS_SERVICE_CODE", "03")
    UPS_WEIGHT_UNIT: Final[str] = os.getenv("UPS_WEIGHT_UNIT", "LBS")
    UPS_DIMENSION_UNIT: Final[str] = os.getenv("UPS_DIMENSION_UNIT", "IN")
    SHIPPER_NAME: Final[str] = os.getenv("SHIPPER_NAME", "CustomTees")
    SHIPPER_PHONE: Final[str | None] = os.getenv("SHIPPER_PHONE")
    SHIPPER_ADDRESS_LINE1: Final[str | None] = os.getenv("SHIPPER_ADDRESS_LINE1")
    SHIPPER_CITY: Final[str | None] = os.getenv("SHIPPER_CITY")
    SHIPPER_STATE: Final[str | None] = os.getenv("SHIPPER_STATE")
    SHIPPER_POSTAL_CODE: Final[str | None] = os.getenv("SHIPPER_POSTAL_CODE")
    SHIPPER_COUNTRY: Final[str] = os.getenv("SHIPPER_COUNTRY", "US")

    # Image store
    CLOUDINARY_CLOUD_NAME: Final[str | None] = os.getenv("CLOUDINARY_CLOUD_NAME")
    CLOUDINARY_API_KEY: Final[str | None] = os.getenv("CLOUDINARY_API_KEY")
    CLOUDINARY_API_SECRET: Final[str | None] = os.getenv("CLOUDINARY_API_SECRET")
    LABEL_UPLOAD_FOLDER: Final[str] = os.getenv("LABEL_UPLOAD_FOLDER", "customtees/labels")

    @classmethod
    def missing_settings(cls) -> List[str]:
        """Names of settings required by the enabled integrations but not set."""
        required = ["SECRET_KEY"]
        unknown = [m for m in cls.PAYMENT_METHODS if m not in KNOWN_PAYMENT_METHODS]
        if unknown:
            raise ConfigurationError(f"Unknown payment methods in PAYMENT_METHODS: {', '.join(unknown)}")
        if "square" in cls.PAYMENT_METHODS:
            required += ["SQUARE_ACCESS_TOKEN", "SQUARE_LOCATION_ID"]
        if "razorpay" in cls.PAYMENT_METHODS:
            required += ["RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET"]
        if cls.SHIPPING_ENABLED:
            required += [
                "UPS_CLIENT_ID",
                "UPS_CLIENT_SECRET",
                "UPS_ACCOUNT_NUMBER",
                "SHIPPER_ADDRESS_LINE1",
                "SHIPPER_CITY",
                "SHIPPER_STATE",
                "SHIPPER_POSTAL_CODE",
                "CLOUDINARY_CLOUD_NAME",
                "CLOUDINARY_API_KEY",
                "CLOUDINARY_API_SECRET",
            ]
        return [name for name in required if not getattr(cls, name)]

    @classmethod
    def validate(cls) -> None:
        """Fail fast instead of running with embedded defaults for secrets."""
        missing = cls.missing_settings()
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        cls.validate()
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        # Design payloads can be large; leave headroom over the per-item limit.
        app.config["MAX_CONTENT_LENGTH"] = cls.MAX_DESIGN_PAYLOAD_BYTES * 2 + 1024 * 1024
