from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify

from customtees.blueprints.common import int_field, json_body, require_admin, require_user
from customtees.blueprints.serializers import serialize_coupon
from customtees.config import _str_to_bool
from customtees.database import get_db
from customtees.errors import ValidationError
from customtees.services.cart_service import CartService
from customtees.services.coupon_service import CouponService

coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


def _get_coupon_service() -> CouponService:
    return CouponService(get_db())


@coupons_bp.route("/active", methods=["GET"])
def active_coupons():
    coupons = _get_coupon_service().list_active()
    return jsonify({"success": True, "coupons": [serialize_coupon(c) for c in coupons]})


@coupons_bp.route("/apply", methods=["POST"])
def apply_coupon():
    """Preview a coupon against the caller's cart; the order re-validates at checkout."""
    user = require_user()
    payload = json_body()
    cart = CartService(get_db()).get_cart(user.userID)
    quote = _get_coupon_service().validate(payload.get("code"), cart.subtotal)
    return jsonify(
        {
            "success": True,
            "coupon": serialize_coupon(quote.coupon),
            "subtotal": quote.subtotal,
            "discountAmount": quote.discount_amount,
            "total": quote.total,
        }
    )


@coupons_bp.route("", methods=["POST"])
def create_coupon():
    require_admin()
    payload = json_body()
    coupon = _get_coupon_service().create_coupon(
        code=payload.get("code"),
        discount_type=payload.get("discountType"),
        discount_value=payload.get("discountValue"),
        description=payload.get("description"),
        min_purchase=int_field(payload, "minPurchase", required=False) or 0,
        max_discount=int_field(payload, "maxDiscount", required=False),
        valid_from=_parse_dt(payload.get("validFrom"), "validFrom"),
        valid_until=_parse_dt(payload.get("validUntil"), "validUntil"),
        max_uses=int_field(payload, "maxUses", required=False),
        is_active=_str_to_bool(payload.get("isActive"), default=True),
    )
    return jsonify({"success": True, "coupon": serialize_coupon(coupon, admin=True)}), 201


def _parse_dt(value, name: str):
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp") from exc
