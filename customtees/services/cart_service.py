from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from customtees.config import Config
from customtees.errors import ConflictError, NotFoundError, ValidationError
from customtees.models import Cart, CartItem, Product
from customtees.observability import increment_counter
from customtees.services.pricing_service import PricingService


def coerce_quantity(value: Any, maximum: Optional[int] = None) -> int:
    """Quantities below 1 are rejected rather than clamped."""
    maximum = maximum or Config.MAX_CART_ITEM_QUANTITY
    if isinstance(value, bool):
        raise ValidationError("Quantity must be a whole number")
    try:
        quantity = int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("Quantity must be a whole number") from exc
    if quantity != value and not (isinstance(value, str) and value.strip().isdigit()):
        raise ValidationError("Quantity must be a whole number")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    if quantity > maximum:
        raise ValidationError(f"Quantity cannot exceed {maximum}")
    return quantity


class CartService:
    """
    Per-user cart of customized items.

    Each add creates a distinct line, even for an identical product, color
    and size, because two customizations can differ only in their design.
    Prices are always computed here from the catalog and the design layers;
    price fields sent by the client are ignored.
    """

    def __init__(self, db_session: Session, pricing_service: Optional[PricingService] = None) -> None:
        self.db = db_session
        self.logger = logging.getLogger(__name__)
        self.pricing = pricing_service or PricingService()

    def get_or_create_cart(self, user_id: int, for_update: bool = False) -> Cart:
        query = self.db.query(Cart).filter_by(userID=user_id)
        if for_update:
            query = query.with_for_update()
        cart = query.first()
        if cart is None:
            cart = Cart(userID=user_id, created_at=datetime.now(timezone.utc))
            self.db.add(cart)
            self.db.flush()
        return cart

    def get_cart(self, user_id: int) -> Cart:
        cart = self.get_or_create_cart(user_id)
        self.db.commit()
        return cart

    def add_item(self, user_id: int, payload: Mapping[str, Any]) -> CartItem:
        product_id = payload.get("productId")
        if product_id in (None, ""):
            raise ValidationError("productId is required")
        try:
            product_id = int(product_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError("productId must be an integer") from exc
        product = self.db.query(Product).filter_by(productID=product_id).first()
        if product is None:
            raise NotFoundError("Product not found")

        color = (payload.get("selectedColor") or "").strip()
        size = (payload.get("selectedSize") or "").strip()
        if not color or not size:
            raise ValidationError("selectedColor and selectedSize are required")
        if not product.offers_color(color):
            raise ValidationError(f"Color '{color}' is not available for {product.name}")
        if not product.offers_size(size):
            raise ValidationError(f"Size '{size}' is not available for {product.name}")

        quantity = coerce_quantity(payload.get("quantity", 1))
        front_design = payload.get("frontDesign")
        back_design = payload.get("backDesign")
        self.pricing.ensure_payload_size(front_design, "front")
        self.pricing.ensure_payload_size(back_design, "back")

        quote = self.pricing.price(product, front_design, back_design)
        if (quote.front_cost or quote.back_cost) and not product.customizable:
            raise ValidationError(f"{product.name} cannot be customized")

        client_total = payload.get("totalPrice")
        if client_total is not None and client_total != quote.total:
            self.logger.info(
                "Client price for %s differs from server quote",
                product.slug,
                extra={"client_total": client_total, "server_total": quote.total},
            )

        cart = self.get_or_create_cart(user_id)
        item = CartItem(
            productID=product.productID,
            product_name=product.name,
            product_slug=product.slug,
            selected_color=color,
            selected_size=size,
            front_design=self.pricing.snapshot_design(front_design, quote.front_metrics),
            back_design=self.pricing.snapshot_design(back_design, quote.back_metrics),
            quantity=quantity,
            instruction=(payload.get("instruction") or None),
            added_at=datetime.now(timezone.utc),
        )
        item.apply_quote(quote)
        cart.items.append(item)
        cart.touch()
        self._commit(user_id)

        increment_counter("cart_items_added_total")
        self.logger.info(
            "Added %s (%s/%s) to cart of user %s",
            product.slug,
            color,
            size,
            user_id,
            extra={
                "base_price": quote.base_price,
                "front_cost": quote.front_cost,
                "back_cost": quote.back_cost,
                "total_price": quote.total,
                "front_area_sq_in": round(quote.front_metrics.area_sq_in, 2),
                "back_area_sq_in": round(quote.back_metrics.area_sq_in, 2),
            },
        )
        return item

    def update_quantity(self, user_id: int, item_id: int, quantity: Any) -> CartItem:
        quantity = coerce_quantity(quantity)
        cart = self.get_or_create_cart(user_id)
        item = self._find_item(cart, item_id)
        item.quantity = quantity
        cart.touch()
        self._commit(user_id)
        return item

    def remove_item(self, user_id: int, item_id: int) -> None:
        cart = self.get_or_create_cart(user_id)
        item = self._find_item(cart, item_id)
        cart.items.remove(item)
        cart.touch()
        self._commit(user_id)

    def clear(self, user_id: int) -> Cart:
        cart = self.get_or_create_cart(user_id)
        self.empty(cart)
        self._commit(user_id)
        return cart

    def empty(self, cart: Cart) -> None:
        """Remove every line without committing; used inside checkout."""
        cart.items.clear()
        cart.touch()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _find_item(cart: Cart, item_id: int) -> CartItem:
        for item in cart.items:
            if item.cartItemID == item_id:
                return item
        raise NotFoundError("Cart item not found")

    def _commit(self, user_id: int) -> None:
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            increment_counter("cart_conflicts_total")
            self.logger.warning("Concurrent cart modification for user %s", user_id)
            raise ConflictError("Your cart changed in another session; reload and try again") from exc
