from __future__ import annotations

from flask import Blueprint, jsonify

from customtees.blueprints.common import json_body, require_user
from customtees.blueprints.serializers import serialize_address
from customtees.database import get_db
from customtees.errors import NotFoundError
from customtees.models import Address
from customtees.services.order_service import clean_address

account_bp = Blueprint("account", __name__, url_prefix="/api/me")


@account_bp.route("/addresses", methods=["GET"])
def list_addresses():
    user = require_user()
    addresses = (
        get_db()
        .query(Address)
        .filter(Address.userID == user.userID)
        .order_by(Address.is_default.desc(), Address.addressID)
        .all()
    )
    return jsonify({"success": True, "addresses": [serialize_address(a) for a in addresses]})


@account_bp.route("/addresses", methods=["POST"])
def add_address():
    user = require_user()
    payload = json_body()
    cleaned = clean_address(payload)
    db = get_db()

    existing = db.query(Address).filter(Address.userID == user.userID).all()
    make_default = bool(payload.get("isDefault")) or not existing
    if make_default:
        for address in existing:
            address.is_default = False

    address = Address(
        userID=user.userID,
        full_name=cleaned["fullName"],
        phone=cleaned["phone"],
        line1=cleaned["line1"],
        line2=cleaned["line2"],
        city=cleaned["city"],
        state=cleaned["state"],
        postal_code=cleaned["postalCode"],
        country=cleaned["country"],
        is_default=make_default,
    )
    db.add(address)
    db.commit()
    return jsonify({"success": True, "address": serialize_address(address)}), 201


@account_bp.route("/addresses/<int:address_id>", methods=["DELETE"])
def delete_address(address_id: int):
    user = require_user()
    db = get_db()
    address = db.query(Address).filter(Address.addressID == address_id, Address.userID == user.userID).first()
    if address is None:
        raise NotFoundError("Address not found")
    db.delete(address)
    db.commit()
    return jsonify({"success": True, "message": "Address removed"})
