"""
UPS carrier client.

Authenticates with OAuth client credentials, books a shipment through the
Ship API and pushes the returned label image to the image store so the
order can reference a stable URL.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import requests

from customtees.config import Config
from customtees.errors import GatewayError
from customtees.gateways.base import JsonHttpClient

UPS_HOSTS = {
    "production": "https://onlinetools.ups.com",
    "sandbox": "https://wwwcie.ups.com",
}
SHIP_API_VERSION = "v2409"


@dataclass(frozen=True)
class ShipmentLabel:
    tracking_number: str
    label_url: str
    label_public_id: Optional[str]


class UpsClient(JsonHttpClient):
    provider = "ups"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        account_number: str,
        image_store,
        config: type[Config] = Config,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(
            UPS_HOSTS.get(config.UPS_ENVIRONMENT, UPS_HOSTS["sandbox"]),
            timeout or config.CARRIER_TIMEOUT_SECONDS,
            session,
        )
        self.client_id = client_id
        self.client_secret = client_secret
        self.account_number = account_number
        self.image_store = image_store
        self.config = config
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    @classmethod
    def from_config(cls, image_store, config: type[Config] = Config) -> "UpsClient":
        return cls(
            config.UPS_CLIENT_ID,
            config.UPS_CLIENT_SECRET,
            config.UPS_ACCOUNT_NUMBER,
            image_store,
            config=config,
        )

    def create_shipment(self, order, package: Mapping[str, Any]) -> ShipmentLabel:
        body = self._shipment_request(order, package)
        payload = self._request(
            "POST",
            f"/api/shipments/{SHIP_API_VERSION}/ship",
            json=body,
            headers={
                "Authorization": f"Bearer {self._access_token()}",
                "transId": uuid.uuid4().hex[:32],
                "transactionSrc": self.config.APP_NAME,
            },
        )
        results = (payload.get("ShipmentResponse") or {}).get("ShipmentResults") or {}
        package_results = results.get("PackageResults") or {}
        if isinstance(package_results, list):
            package_results = package_results[0] if package_results else {}
        tracking_number = package_results.get("TrackingNumber") or results.get("ShipmentIdentificationNumber")
        label = (package_results.get("ShippingLabel") or {})
        image = label.get("GraphicImage")
        if not tracking_number or not image:
            raise GatewayError(self.provider, "UPS response did not include a tracking number and label")

        image_format = ((label.get("ImageFormat") or {}).get("Code") or "GIF").lower()
        uploaded = self.image_store.upload(f"data:image/{image_format};base64,{image}", folder=self.config.LABEL_UPLOAD_FOLDER)
        self.logger.info("UPS label created for order %s", order.orderID, extra={"tracking_number": tracking_number})
        return ShipmentLabel(tracking_number=tracking_number, label_url=uploaded["url"], label_public_id=uploaded.get("id"))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        payload = self._request(
            "POST",
            "/security/v1/oauth/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
            headers={"x-merchant-id": self.account_number},
        )
        token = payload.get("access_token")
        if not token:
            raise GatewayError(self.provider, "UPS did not issue an access token")
        # Refresh a minute early.
        self._token = token
        self._token_expires_at = time.monotonic() + max(0, int(payload.get("expires_in", 0)) - 60)
        return token

    def _shipment_request(self, order, package: Mapping[str, Any]) -> Dict[str, Any]:
        cfg = self.config
        address = order.shipping_address or {}
        shipper_address = {
            "AddressLine": [cfg.SHIPPER_ADDRESS_LINE1],
            "City": cfg.SHIPPER_CITY,
            "StateProvinceCode": cfg.SHIPPER_STATE,
            "PostalCode": cfg.SHIPPER_POSTAL_CODE,
            "CountryCode": cfg.SHIPPER_COUNTRY,
        }
        return {
            "ShipmentRequest": {
                "Request": {"RequestOption": "nonvalidate"},
                "Shipment": {
                    "Description": f"CustomTees order {order.orderID}",
                    "Shipper": {
                        "Name": cfg.SHIPPER_NAME,
                        "ShipperNumber": self.account_number,
                        "Phone": {"Number": cfg.SHIPPER_PHONE or ""},
                        "Address": shipper_address,
                    },
                    "ShipTo": {
                        "Name": address.get("fullName"),
                        "Phone": {"Number": address.get("phone")},
                        "Address": {
                            "AddressLine": [line for line in (address.get("line1"), address.get("line2")) if line],
                            "City": address.get("city"),
                            "StateProvinceCode": address.get("state"),
                            "PostalCode": address.get("postalCode"),
                            "CountryCode": (address.get("country") or "US").upper()[:2],
                        },
                    },
                    "ShipFrom": {"Name": cfg.SHIPPER_NAME, "Address": shipper_address},
                    "PaymentInformation": {
                        "ShipmentCharge": {"Type": "01", "BillShipper": {"AccountNumber": self.account_number}}
                    },
                    "Service": {"Code": cfg.UPS_SERVICE_CODE},
                    "Package": {
                        "Packaging": {"Code": "02"},
                        "Dimensions": {
                            "UnitOfMeasurement": {"Code": cfg.UPS_DIMENSION_UNIT},
                            "Length": str(package["length"]),
                            "Width": str(package["width"]),
                            "Height": str(package["height"]),
                        },
                        "PackageWeight": {
                            "UnitOfMeasurement": {"Code": cfg.UPS_WEIGHT_UNIT},
                            "Weight": str(package["weight"]),
                        },
                    },
                },
                "LabelSpecification": {"LabelImageFormat": {"Code": "GIF"}},
            }
        }
