from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from customtees.blueprints.common import carrier, image_store, json_body, require_admin
from customtees.config import _str_to_bool
from customtees.database import get_db
from customtees.services.shipment_service import ShipmentService

shipments_bp = Blueprint("shipments", __name__, url_prefix="/api/shipments")
logger = logging.getLogger(__name__)


@shipments_bp.route("/create-label/<int:order_id>", methods=["POST"])
def create_label(order_id: int):
    admin = require_admin()
    payload = json_body()
    force = _str_to_bool(request.args.get("force"))
    logger.info("Incoming label request for order %s", order_id, extra={"force": force})

    result = ShipmentService(get_db(), carrier=carrier(), image_store=image_store()).create_label(
        order_id,
        payload,
        force=force,
        actor=f"admin:{admin.userID}",
    )
    return jsonify({"success": True, **result.to_dict()})
