from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from customtees.config import Config
from customtees.database import engine


def check_database_health() -> Dict[str, str]:
    """Attempt a lightweight DB query to ensure connectivity."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "UP"}
    except OperationalError as exc:
        return {"status": "DOWN", "detail": str(exc)}


def integration_summary() -> Dict[str, Any]:
    """Which outbound integrations this process was started with."""
    return {
        "payment_methods": list(Config.PAYMENT_METHODS),
        "shipping_enabled": Config.SHIPPING_ENABLED,
        "coupon_usage_tracking": Config.COUPON_USAGE_TRACKING_ENABLED,
    }
