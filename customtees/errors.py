"""Domain errors raised by services and translated to JSON at the request boundary."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, Optional

from customtees.config import ConfigurationError


class CheckoutError(Exception):
    status_code = 500
    kind = "SERVER_ERROR"
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "message": self.message,
            "error": self.kind,
        }
        if self.retryable:
            payload["retryable"] = True
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CheckoutError):
    status_code = 400
    kind = "VALIDATION_ERROR"


class InvalidAddressError(ValidationError):
    kind = "INVALID_ADDRESS"

    def __init__(self, missing: Iterable[str]) -> None:
        self.fields = list(missing)
        super().__init__(
            f"Shipping address is missing required fields: {', '.join(self.fields)}",
            details={"fields": self.fields},
        )


class InvalidPackageError(ValidationError):
    kind = "INVALID_PACKAGE"

    def __init__(self, message: str, fields: Iterable[str]) -> None:
        self.fields = list(fields)
        super().__init__(message, details={"fields": self.fields})


class AuthenticationError(CheckoutError):
    status_code = 401
    kind = "NOT_AUTHENTICATED"


class NotFoundError(CheckoutError):
    status_code = 404
    kind = "NOT_FOUND"


class ForbiddenError(CheckoutError):
    status_code = 403
    kind = "FORBIDDEN"


class WrongPaymentMethodError(ForbiddenError):
    kind = "WRONG_PAYMENT_METHOD"


class ConflictError(CheckoutError):
    status_code = 409
    kind = "CONFLICT"


class EmptyCartError(ConflictError):
    status_code = 400
    kind = "EMPTY_CART"

    def __init__(self, message: str = "Your cart is empty") -> None:
        super().__init__(message)


class MissingAddressError(ConflictError):
    status_code = 400
    kind = "MISSING_ADDRESS"

    def __init__(self, message: str = "Order is missing a shipping address") -> None:
        super().__init__(message)


class CouponErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    NOT_YET_VALID = "NOT_YET_VALID"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"


class CouponError(ConflictError):
    status_code = 400
    kind = "COUPON_ERROR"

    def __init__(self, reason: CouponErrorKind, message: str) -> None:
        self.reason = reason
        super().__init__(message, details={"reason": reason.value})


class CouponInvalidError(CouponError):
    """The coupon failed revalidation while the order was being assembled."""

    kind = "COUPON_INVALID"

    @classmethod
    def from_coupon_error(cls, error: CouponError) -> "CouponInvalidError":
        return cls(error.reason, error.message)


class GatewayError(CheckoutError):
    status_code = 502
    kind = "GATEWAY_ERROR"
    retryable = True

    def __init__(self, provider: str, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        self.provider = provider
        super().__init__(message, details={"provider": provider, **(details or {})})


__all__ = [
    "CheckoutError",
    "ConfigurationError",
    "ValidationError",
    "InvalidAddressError",
    "InvalidPackageError",
    "AuthenticationError",
    "NotFoundError",
    "ForbiddenError",
    "WrongPaymentMethodError",
    "ConflictError",
    "EmptyCartError",
    "MissingAddressError",
    "CouponErrorKind",
    "CouponError",
    "CouponInvalidError",
    "GatewayError",
]
