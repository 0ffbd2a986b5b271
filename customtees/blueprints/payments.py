from __future__ import annotations

from flask import Blueprint, jsonify

from customtees.blueprints.common import int_field, json_body, payment_gateways, require_user
from customtees.blueprints.serializers import _enum_value, serialize_order
from customtees.database import get_db
from customtees.services.payment_service import PaymentService, ReconcileResult

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _get_payment_service() -> PaymentService:
    return PaymentService(get_db(), gateways=payment_gateways())


def _reconcile_response(result: ReconcileResult):
    return jsonify(
        {
            "success": True,
            "data": {
                "order": serialize_order(result.order),
                "paymentStatus": _enum_value(result.payment_status),
                "gatewayStatus": result.gateway_status,
                "changed": result.changed,
            },
        }
    )


@payments_bp.route("/<provider>/checkout", methods=["POST"])
def start_checkout(provider: str):
    user = require_user()
    payload = json_body()
    checkout = _get_payment_service().initiate(
        int_field(payload, "orderId"),
        user.userID,
        provider,
        redirect_url=payload.get("redirectUrl"),
        buyer_email=user.email,
    )
    return jsonify({"success": True, "data": checkout})


@payments_bp.route("/square/verify", methods=["POST"])
def verify_square_payment():
    user = require_user()
    payload = json_body()
    result = _get_payment_service().verify(
        int_field(payload, "orderId"),
        user.userID,
        "square",
        transaction_id=payload.get("transactionId"),
        client_status=payload.get("status"),
        provider_order_id=payload.get("squareOrderId"),
    )
    return _reconcile_response(result)


@payments_bp.route("/razorpay/verify", methods=["POST"])
def verify_razorpay_payment():
    user = require_user()
    payload = json_body()
    result = _get_payment_service().verify(
        int_field(payload, "orderId"),
        user.userID,
        "razorpay",
        transaction_id=payload.get("razorpay_payment_id") or payload.get("transactionId"),
        client_status=payload.get("status"),
        provider_order_id=payload.get("razorpay_order_id"),
        signature=payload.get("razorpay_signature"),
    )
    return _reconcile_response(result)
