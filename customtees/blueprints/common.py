"""Request helpers shared by the JSON blueprints."""
from __future__ import annotations

from typing import Any, Dict, Optional

from flask import current_app, g, request, session

from customtees.database import get_db
from customtees.errors import AuthenticationError, ForbiddenError, ValidationError
from customtees.models import User


def current_user() -> Optional[User]:
    if "current_user" in g:
        return g.current_user
    user_id = session.get("user_id")
    g.current_user = get_db().get(User, user_id) if user_id else None
    return g.current_user


def require_user() -> User:
    user = current_user()
    if user is None:
        raise AuthenticationError("Not authenticated")
    return user


def require_admin() -> User:
    user = require_user()
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


def json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def int_field(payload: Dict[str, Any], name: str, required: bool = True) -> Optional[int]:
    value = payload.get(name)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"{name} must be an integer") from exc


def payment_gateways() -> Dict[str, Any]:
    return current_app.extensions.get("customtees.payment_gateways", {})


def carrier():
    return current_app.extensions.get("customtees.carrier")


def image_store():
    return current_app.extensions.get("customtees.image_store")
