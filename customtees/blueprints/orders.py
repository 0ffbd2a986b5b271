from __future__ import annotations

from flask import Blueprint, jsonify, request

from customtees.blueprints.common import int_field, json_body, require_admin, require_user
from customtees.blueprints.serializers import serialize_order
from customtees.database import get_db
from customtees.errors import ValidationError
from customtees.services.order_service import OrderService

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _get_order_service() -> OrderService:
    return OrderService(get_db())


@orders_bp.route("/from-cart", methods=["POST"])
def create_order_from_cart():
    user = require_user()
    payload = json_body()
    coupon = payload.get("coupon")
    coupon_code = coupon.get("code") if isinstance(coupon, dict) else payload.get("couponCode")
    client_discount = coupon.get("discountAmount") if isinstance(coupon, dict) else None

    order, created = _get_order_service().create_from_cart(
        user.userID,
        payment_method=payload.get("paymentMethod") or "",
        shipping_address=payload.get("shippingAddress"),
        address_id=int_field(payload, "addressId", required=False),
        coupon_code=coupon_code,
        checkout_key=request.headers.get("Idempotency-Key") or payload.get("checkoutKey"),
        client_discount=client_discount,
    )
    return (
        jsonify({"success": True, "created": created, "order": serialize_order(order)}),
        201 if created else 200,
    )


@orders_bp.route("/mine", methods=["GET"])
def my_orders():
    user = require_user()
    orders = _get_order_service().list_for_user(user.userID)
    return jsonify({"success": True, "orders": [serialize_order(order) for order in orders]})


@orders_bp.route("/<int:order_id>", methods=["GET"])
def get_order(order_id: int):
    user = require_user()
    order = _get_order_service().get_for_user(order_id, user)
    return jsonify({"success": True, "order": serialize_order(order, include_events=True)})


@orders_bp.route("", methods=["GET"])
def list_orders():
    require_admin()
    orders = _get_order_service().list_all(status=request.args.get("status"))
    return jsonify({"success": True, "orders": [serialize_order(order) for order in orders]})


@orders_bp.route("/<int:order_id>/status", methods=["PUT"])
def update_order_status(order_id: int):
    admin = require_admin()
    payload = json_body()
    status = payload.get("status")
    if not status:
        raise ValidationError("status is required")
    order = _get_order_service().update_status(
        order_id,
        status,
        actor=f"admin:{admin.userID}",
        note=payload.get("note"),
    )
    return jsonify({"success": True, "order": serialize_order(order, include_events=True)})
