from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Optional

import requests

from customtees.config import Config
from customtees.gateways.base import GatewayPayment, JsonHttpClient

RAZORPAY_API = "https://api.razorpay.com/v1"


class RazorpayClient(JsonHttpClient):
    """Razorpay Orders and Payments REST APIs (HTTP basic auth)."""

    provider = "razorpay"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        base_url: str = RAZORPAY_API,
    ) -> None:
        super().__init__(base_url, timeout or Config.GATEWAY_TIMEOUT_SECONDS, session)
        self.key_id = key_id
        self.key_secret = key_secret
        self.session.auth = (key_id, key_secret)

    @classmethod
    def from_config(cls, config: type[Config] = Config) -> "RazorpayClient":
        return cls(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET, timeout=config.GATEWAY_TIMEOUT_SECONDS)

    def retrieve_payment(self, payment_id: str) -> GatewayPayment:
        payment = self._request("GET", f"/payments/{payment_id}", not_found_message="Razorpay payment not found")
        return GatewayPayment(
            id=payment.get("id", payment_id),
            status=(payment.get("status") or "").lower(),
            amount=payment.get("amount"),
            currency=payment.get("currency"),
            order_reference=payment.get("order_id"),
            failure_detail=payment.get("error_description") or payment.get("error_reason"),
        )

    def create_order(self, order) -> Dict[str, Any]:
        payload = self._request(
            "POST",
            "/orders",
            json={
                "amount": order.total,
                "currency": order.currency,
                "receipt": f"order_{order.orderID}",
                "notes": {"orderId": str(order.orderID)},
            },
        )
        return {
            "providerOrderId": payload.get("id"),
            "keyId": self.key_id,
            "amount": payload.get("amount", order.total),
            "currency": payload.get("currency", order.currency),
        }

    def verify_signature(self, provider_order_id: str, payment_id: str, signature: str) -> bool:
        """Checkout callback signature: HMAC-SHA256 of ``order_id|payment_id``."""
        if not (provider_order_id and payment_id and signature):
            return False
        expected = hmac.new(
            self.key_secret.encode("utf-8"),
            f"{provider_order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)
