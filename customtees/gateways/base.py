from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from customtees.errors import GatewayError, NotFoundError


@dataclass(frozen=True)
class GatewayPayment:
    """Authoritative payment record as reported by a provider."""

    id: str
    status: str
    amount: Optional[int]
    currency: Optional[str]
    order_reference: Optional[str] = None
    failure_detail: Optional[str] = None


class JsonHttpClient:
    """
    Thin JSON-over-HTTPS helper shared by the provider clients.

    Every call carries a timeout. Transport failures and 5xx responses raise
    ``GatewayError``; a 404 raises ``NotFoundError``; other 4xx responses are
    treated as gateway rejections and also raise ``GatewayError``.
    """

    provider = "gateway"

    def __init__(self, base_url: str, timeout: float, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logging.getLogger(self.__class__.__module__)

    def _request(
        self,
        method: str,
        path: str,
        *,
        not_found_message: str = "Resource not found",
        **kwargs: Any,
    ) -> Dict[str, Any]:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            self.logger.error("%s request failed: %s", self.provider, exc, extra={"url": url})
            raise GatewayError(self.provider, f"{self.provider} is unreachable") from exc

        if response.status_code == 404:
            raise NotFoundError(not_found_message)
        if response.status_code >= 400:
            body = _safe_json(response)
            self.logger.error(
                "%s responded with status %s",
                self.provider,
                response.status_code,
                extra={"url": url, "body": body},
            )
            raise GatewayError(
                self.provider,
                f"{self.provider} request failed with status {response.status_code}",
                details={"status": response.status_code},
            )
        payload = _safe_json(response)
        if payload is None:
            raise GatewayError(self.provider, f"{self.provider} returned an unreadable response")
        return payload


def _safe_json(response: requests.Response) -> Optional[Dict[str, Any]]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None
