from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

import requests

from customtees.config import Config
from customtees.errors import GatewayError
from customtees.gateways.base import GatewayPayment, JsonHttpClient

SQUARE_HOSTS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}


class SquareClient(JsonHttpClient):
    """Square Payments and Checkout REST APIs."""

    provider = "square"

    def __init__(
        self,
        access_token: str,
        location_id: str,
        environment: str = "sandbox",
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(
            SQUARE_HOSTS.get(environment, SQUARE_HOSTS["sandbox"]),
            timeout or Config.GATEWAY_TIMEOUT_SECONDS,
            session,
        )
        self.location_id = location_id
        self.session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Square-Version": api_version or Config.SQUARE_API_VERSION,
                "Content-Type": "application/json",
            }
        )

    @classmethod
    def from_config(cls, config: type[Config] = Config) -> "SquareClient":
        return cls(
            config.SQUARE_ACCESS_TOKEN,
            config.SQUARE_LOCATION_ID,
            environment=config.SQUARE_ENVIRONMENT,
            api_version=config.SQUARE_API_VERSION,
            timeout=config.GATEWAY_TIMEOUT_SECONDS,
        )

    def retrieve_payment(self, payment_id: str) -> GatewayPayment:
        payload = self._request("GET", f"/v2/payments/{payment_id}", not_found_message="Square payment not found")
        payment = payload.get("payment") or {}
        money = payment.get("amount_money") or {}
        card = payment.get("card_details") or {}
        return GatewayPayment(
            id=payment.get("id", payment_id),
            status=(payment.get("status") or "").upper(),
            amount=money.get("amount"),
            currency=money.get("currency"),
            order_reference=payment.get("order_id"),
            failure_detail=card.get("status"),
        )

    def create_payment_link(self, order, redirect_url: Optional[str] = None, buyer_email: Optional[str] = None) -> Dict[str, Any]:
        """Create a hosted checkout page for ``order``; amounts are already minor units."""
        currency = order.currency
        line_items = [
            {
                "name": (item.product_name or "Custom Tee")[:255],
                "quantity": str(item.quantity),
                "note": "Custom design" if item.custom_design else "Catalog item",
                "base_price_money": {"amount": item.price, "currency": currency},
            }
            for item in order.items
        ]
        square_order: Dict[str, Any] = {
            "location_id": self.location_id,
            "reference_id": str(order.orderID),
            "line_items": line_items,
        }
        if order.discount_amount:
            square_order["discounts"] = [
                {
                    "name": order.coupon_code or "Discount",
                    "scope": "ORDER",
                    "type": "FIXED_AMOUNT",
                    "amount_money": {"amount": order.discount_amount, "currency": currency},
                }
            ]

        address = order.shipping_address or {}
        full_name = address.get("fullName") or ""
        first_name, _, last_name = full_name.partition(" ")
        body = {
            "idempotency_key": str(uuid.uuid4()),
            "description": f"CustomTees order {order.orderID}",
            "order": square_order,
            "checkout_options": {"redirect_url": redirect_url, "ask_for_shipping_address": False},
            "pre_populated_data": {
                "buyer_email": buyer_email,
                "buyer_phone_number": address.get("phone"),
                "buyer_address": {
                    "address_line_1": address.get("line1"),
                    "address_line_2": address.get("line2"),
                    "locality": address.get("city"),
                    "administrative_district_level_1": address.get("state"),
                    "postal_code": address.get("postalCode"),
                    "country": (address.get("country") or "US").upper()[:2],
                    "first_name": first_name,
                    "last_name": last_name or first_name,
                },
            },
        }
        payload = self._request("POST", "/v2/online-checkout/payment-links", json=body)
        link = payload.get("payment_link") or {}
        if not link.get("url"):
            raise GatewayError(self.provider, "Failed to create Square checkout session")
        return {
            "checkoutId": link.get("id"),
            "checkoutUrl": link["url"],
            "providerOrderId": link.get("order_id"),
        }
