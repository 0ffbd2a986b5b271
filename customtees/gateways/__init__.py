"""Outbound clients for payment providers, the carrier and the image store."""

from .base import GatewayPayment, JsonHttpClient
from .cloudinary import CloudinaryImageStore
from .razorpay import RazorpayClient
from .square import SquareClient
from .ups import ShipmentLabel, UpsClient

__all__ = [
    "GatewayPayment",
    "JsonHttpClient",
    "CloudinaryImageStore",
    "RazorpayClient",
    "SquareClient",
    "ShipmentLabel",
    "UpsClient",
]
