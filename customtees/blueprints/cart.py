from __future__ import annotations

from flask import Blueprint, jsonify

from customtees.blueprints.common import json_body, require_user
from customtees.blueprints.serializers import serialize_cart, serialize_cart_item
from customtees.database import get_db
from customtees.errors import ValidationError
from customtees.services.cart_service import CartService

cart_bp = Blueprint("cart", __name__, url_prefix="/api/me/cart")


def _get_cart_service() -> CartService:
    return CartService(get_db())


@cart_bp.route("", methods=["GET"])
def view_cart():
    user = require_user()
    cart = _get_cart_service().get_cart(user.userID)
    return jsonify({"success": True, "cart": serialize_cart(cart)})


@cart_bp.route("", methods=["POST"])
def add_to_cart():
    user = require_user()
    service = _get_cart_service()
    item = service.add_item(user.userID, json_body())
    cart = service.get_cart(user.userID)
    return (
        jsonify({"success": True, "message": "Added to cart", "item": serialize_cart_item(item), "cart": serialize_cart(cart)}),
        201,
    )


@cart_bp.route("", methods=["DELETE"])
def clear_cart():
    user = require_user()
    cart = _get_cart_service().clear(user.userID)
    return jsonify({"success": True, "message": "Cart cleared", "cart": serialize_cart(cart)})


@cart_bp.route("/<int:item_id>", methods=["PUT"])
def update_cart_item(item_id: int):
    user = require_user()
    payload = json_body()
    if "quantity" not in payload:
        raise ValidationError("quantity is required")
    service = _get_cart_service()
    service.update_quantity(user.userID, item_id, payload["quantity"])
    return jsonify({"success": True, "cart": serialize_cart(service.get_cart(user.userID))})


@cart_bp.route("/<int:item_id>", methods=["DELETE"])
def remove_cart_item(item_id: int):
    user = require_user()
    service = _get_cart_service()
    service.remove_item(user.userID, item_id)
    return jsonify({"success": True, "message": "Item removed", "cart": serialize_cart(service.get_cart(user.userID))})
