from .pricing_service import PricingService, PriceQuote
from .coupon_service import CouponService, CouponQuote
from .cart_service import CartService
from .order_service import OrderService
from .payment_service import PaymentService, ReconcileResult
from .shipment_service import ShipmentService, LabelResult

__all__ = [
    "PricingService",
    "PriceQuote",
    "CouponService",
    "CouponQuote",
    "CartService",
    "OrderService",
    "PaymentService",
    "ReconcileResult",
    "ShipmentService",
    "LabelResult",
]
