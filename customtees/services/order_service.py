from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Tuple

import bleach
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from customtees.config import Config
from customtees.errors import (
    ConflictError,
    CouponError,
    CouponInvalidError,
    EmptyCartError,
    ForbiddenError,
    InvalidAddressError,
    NotFoundError,
    ValidationError,
)
from customtees.models import (
    ADDRESS_FIELDS,
    REQUIRED_ADDRESS_FIELDS,
    Address,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShipmentStatus,
    User,
)
from customtees.observability import increment_counter, record_event
from customtees.services.cart_service import CartService
from customtees.services.coupon_service import CouponService


def clean_address(raw: Optional[Mapping[str, Any]]) -> dict:
    """Sanitize and validate a shipping address; returns a new dict."""
    if raw is not None and not isinstance(raw, Mapping):
        raise ValidationError("shippingAddress must be an object")
    raw = raw or {}
    address = {}
    for field_name in ADDRESS_FIELDS:
        value = raw.get(field_name)
        if value is None:
            address[field_name] = None
            continue
        address[field_name] = bleach.clean(str(value), tags=[], strip=True).strip() or None
    missing = [name for name in REQUIRED_ADDRESS_FIELDS if not address.get(name)]
    if missing:
        raise InvalidAddressError(missing)
    return address


class OrderService:
    """Turns a cart into an immutable order and manages the order afterwards."""

    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        cart_service: Optional[CartService] = None,
        coupon_service: Optional[CouponService] = None,
    ) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.cart_service = cart_service or CartService(db_session)
        self.coupon_service = coupon_service or CouponService(db_session)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def create_from_cart(
        self,
        user_id: int,
        payment_method: PaymentMethod | str,
        shipping_address: Optional[Mapping[str, Any]] = None,
        address_id: Optional[int] = None,
        coupon_code: Optional[str] = None,
        checkout_key: Optional[str] = None,
        client_discount: Optional[int] = None,
    ) -> Tuple[Order, bool]:
        """
        Build an order from the user's cart.

        Returns ``(order, created)``. When ``checkout_key`` was already used by
        this user the existing order is returned with ``created=False`` and
        nothing else happens. The order, its items, the audit event and the
        emptied cart are committed together or not at all.
        """
        checkout_key = (checkout_key or "").strip() or None
        if checkout_key:
            existing = self._find_by_checkout_key(user_id, checkout_key)
            if existing is not None:
                self.logger.info("Replayed checkout key for order %s", existing.orderID)
                return existing, False

        method = self._resolve_method(payment_method)

        cart = self.cart_service.get_or_create_cart(user_id, for_update=True)
        if not cart.items:
            raise EmptyCartError()

        address = self._resolve_address(user_id, shipping_address, address_id)

        subtotal = cart.subtotal
        discount = 0
        coupon = None
        if coupon_code and coupon_code.strip():
            try:
                quote = self.coupon_service.validate(coupon_code, subtotal)
            except CouponError as exc:
                self.db.rollback()
                raise CouponInvalidError.from_coupon_error(exc) from exc
            coupon, discount = quote.coupon, quote.discount_amount

        if client_discount is not None and client_discount != discount:
            self.logger.info(
                "Ignoring client-supplied discount for user %s",
                user_id,
                extra={"client_discount": client_discount, "server_discount": discount},
            )

        order = Order(
            userID=user_id,
            subtotal=subtotal,
            discount_amount=discount,
            coupon_code=coupon.code if coupon else None,
            couponID=coupon.couponID if coupon else None,
            total=subtotal - discount,
            currency=self.config.STORE_CURRENCY,
            payment_method=method,
            payment_status=None if method == PaymentMethod.COD else PaymentStatus.PENDING,
            shipping_address=address,
            status=OrderStatus.PLACED,
            checkout_key=checkout_key,
        )
        for cart_item in cart.items:
            order.items.append(
                OrderItem(
                    productID=cart_item.productID,
                    product_name=cart_item.product_name,
                    quantity=cart_item.quantity,
                    price=cart_item.total_price,
                    custom_design={
                        "frontDesign": cart_item.front_design,
                        "backDesign": cart_item.back_design,
                        "selectedColor": cart_item.selected_color,
                        "selectedSize": cart_item.selected_size,
                        "productSlug": cart_item.product_slug,
                    },
                    instruction=cart_item.instruction,
                )
            )
        order.log_event("order_created", None, OrderStatus.PLACED, detail=f"method={method.value}", actor=f"user:{user_id}")
        if method == PaymentMethod.COD:
            self.coupon_service.record_usage(coupon)

        self.db.add(order)
        self.cart_service.empty(cart)

        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            increment_counter("cart_conflicts_total")
            raise ConflictError("Your cart changed while checking out; review it and try again") from exc
        except IntegrityError as exc:
            self.db.rollback()
            if checkout_key:
                existing = self._find_by_checkout_key(user_id, checkout_key)
                if existing is not None:
                    return existing, False
            raise ConflictError("Order could not be created; please retry") from exc

        increment_counter("orders_created_total", labels={"payment_method": method.value})
        record_event(
            "order_created",
            {"order_id": order.orderID, "user_id": user_id, "total": order.total, "payment_method": method.value},
        )
        self.logger.info(
            "Order %s created from cart",
            order.orderID,
            extra={
                "user_id": user_id,
                "subtotal": subtotal,
                "discount": discount,
                "coupon_code": order.coupon_code,
                "item_count": len(order.items),
            },
        )
        return order, True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_for_user(self, user_id: int) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.userID == user_id)
            .order_by(Order.created_at.desc(), Order.orderID.desc())
            .all()
        )

    def get_for_user(self, order_id: int, user: User) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        if order.userID != user.userID and not user.is_admin:
            raise ForbiddenError("You do not have access to this order")
        return order

    def list_all(self, status: Optional[str] = None) -> List[Order]:
        query = self.db.query(Order)
        if status:
            try:
                query = query.filter(Order.status == OrderStatus(status))
            except ValueError as exc:
                raise ValidationError(f"Unknown order status '{status}'") from exc
        return query.order_by(Order.created_at.desc(), Order.orderID.desc()).all()

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def update_status(self, order_id: int, new_status: str, actor: str = "admin", note: Optional[str] = None) -> Order:
        try:
            target = OrderStatus(new_status)
        except ValueError as exc:
            raise ValidationError(f"Unknown order status '{new_status}'") from exc

        order = self.db.query(Order).filter(Order.orderID == order_id).with_for_update().first()
        if order is None:
            raise NotFoundError("Order not found")
        try:
            order.transition_to(target, actor=actor, detail=note)
        except ValueError as exc:
            self.db.rollback()
            raise ConflictError(str(exc)) from exc
        if target == OrderStatus.DELIVERED and order.shipment_status == ShipmentStatus.LABEL_GENERATED:
            order.transition_shipment(ShipmentStatus.DELIVERED)
        self.db.commit()

        increment_counter("order_status_transition_total", labels={"status": target.value})
        self.logger.info("Order %s moved to %s", order_id, target.value, extra={"actor": actor})
        return order

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _find_by_checkout_key(self, user_id: int, checkout_key: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(Order.userID == user_id, Order.checkout_key == checkout_key)
            .first()
        )

    def _resolve_method(self, payment_method: PaymentMethod | str) -> PaymentMethod:
        try:
            method = PaymentMethod(str(getattr(payment_method, "value", payment_method) or "").lower())
        except ValueError as exc:
            raise ValidationError(f"Unsupported payment method '{payment_method}'") from exc
        if method.value not in self.config.PAYMENT_METHODS:
            raise ValidationError(f"Payment method '{method.value}' is not enabled")
        return method

    def _resolve_address(
        self,
        user_id: int,
        shipping_address: Optional[Mapping[str, Any]],
        address_id: Optional[int],
    ) -> dict:
        if address_id is not None:
            entry = (
                self.db.query(Address)
                .filter(Address.addressID == address_id, Address.userID == user_id)
                .first()
            )
            if entry is None:
                raise NotFoundError("Address not found")
            shipping_address = entry.to_shipping_address()
        return clean_address(shipping_address)
