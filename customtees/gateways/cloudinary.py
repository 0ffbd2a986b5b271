from __future__ import annotations

import hashlib
import time
from typing import Any, Dict, Optional

import requests

from customtees.config import Config
from customtees.gateways.base import JsonHttpClient

CLOUDINARY_API = "https://api.cloudinary.com/v1_1"


def sign_params(params: Dict[str, Any], api_secret: str) -> str:
    """Cloudinary request signature: sorted ``k=v`` pairs joined by ``&``, then the secret, SHA-1."""
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryImageStore(JsonHttpClient):
    """Image store used for shipping labels: ``upload`` and ``destroy`` only."""

    provider = "cloudinary"

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(f"{CLOUDINARY_API}/{cloud_name}", timeout or Config.CARRIER_TIMEOUT_SECONDS, session)
        self.api_key = api_key
        self.api_secret = api_secret

    @classmethod
    def from_config(cls, config: type[Config] = Config) -> "CloudinaryImageStore":
        return cls(
            config.CLOUDINARY_CLOUD_NAME,
            config.CLOUDINARY_API_KEY,
            config.CLOUDINARY_API_SECRET,
            timeout=config.CARRIER_TIMEOUT_SECONDS,
        )

    def upload(self, file: str, folder: Optional[str] = None) -> Dict[str, str]:
        """Upload a file (URL, data URI or path) and return ``{"url", "id"}``."""
        params = self._signed({"folder": folder or Config.LABEL_UPLOAD_FOLDER})
        payload = self._request("POST", "/image/upload", data={**params, "file": file})
        return {"url": payload.get("secure_url") or payload.get("url"), "id": payload.get("public_id")}

    def destroy(self, public_id: str) -> None:
        params = self._signed({"public_id": public_id})
        self._request("POST", "/image/destroy", data=params, not_found_message="Image not found")

    def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {**params, "timestamp": int(time.time())}
        return {**params, "api_key": self.api_key, "signature": sign_params(params, self.api_secret)}
