from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from customtees.models import Address, Cart, CartItem, Coupon, Order, OrderEvent, OrderItem, User


def serialize_user(user: User) -> Dict[str, Any]:
    return {"id": user.userID, "username": user.username, "email": user.email, "role": user.role}


def serialize_address(address: Address) -> Dict[str, Any]:
    return {"id": address.addressID, "isDefault": address.is_default, **address.to_shipping_address()}


def serialize_cart_item(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.cartItemID,
        "productId": item.productID,
        "productName": item.product_name,
        "productSlug": item.product_slug,
        "selectedColor": item.selected_color,
        "selectedSize": item.selected_size,
        "frontDesign": item.front_design,
        "backDesign": item.back_design,
        "basePrice": item.base_price,
        "frontCustomizationCost": item.front_customization_cost,
        "backCustomizationCost": item.back_customization_cost,
        "totalPrice": item.total_price,
        "quantity": item.quantity,
        "lineTotal": item.line_total,
        "instruction": item.instruction,
        "addedAt": _serialize_dt(item.added_at),
    }


def serialize_cart(cart: Cart) -> Dict[str, Any]:
    return {
        "id": cart.cartID,
        "version": cart.version,
        "items": [serialize_cart_item(item) for item in cart.items],
        "subtotal": cart.subtotal,
        "itemCount": cart.item_count,
    }


def serialize_order_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.orderItemID,
        "productId": item.productID,
        "productName": item.product_name,
        "quantity": item.quantity,
        "price": item.price,
        "lineTotal": item.line_total,
        "customDesign": item.custom_design,
        "instruction": item.instruction,
    }


def serialize_order(order: Order, include_events: bool = False) -> Dict[str, Any]:
    body = {
        "id": order.orderID,
        "userId": order.userID,
        "items": [serialize_order_item(item) for item in order.items],
        "subtotal": order.subtotal,
        "discountAmount": order.discount_amount,
        "coupon": {"code": order.coupon_code, "discountAmount": order.discount_amount} if order.coupon_code else None,
        "total": order.total,
        "currency": order.currency,
        "paymentMethod": _enum_value(order.payment_method),
        "payment": {
            "status": _enum_value(order.payment_status),
            "providerOrderId": order.payment_provider_order_id,
            "providerPaymentId": order.payment_provider_payment_id,
            "checkoutUrl": order.payment_checkout_url,
            "failureReason": order.payment_failure_reason,
        },
        "shippingAddress": order.shipping_address,
        "status": _enum_value(order.status),
        "shipmentStatus": _enum_value(order.shipment_status),
        "trackingNumber": order.tracking_number,
        "labelUrl": order.label_url,
        "createdAt": _serialize_dt(order.created_at),
        "updatedAt": _serialize_dt(order.updated_at),
    }
    if include_events:
        body["events"] = [serialize_event(event) for event in order.events]
    return body


def serialize_event(event: OrderEvent) -> Dict[str, Any]:
    return {
        "type": event.event_type,
        "from": event.old_value,
        "to": event.new_value,
        "detail": event.detail,
        "actor": event.actor,
        "at": _serialize_dt(event.created_at),
    }


def serialize_coupon(coupon: Coupon, admin: bool = False) -> Dict[str, Any]:
    body = {
        "code": coupon.code,
        "description": coupon.description,
        "discountType": _enum_value(coupon.discount_type),
        "discountValue": float(coupon.discount_value),
        "minPurchase": coupon.min_purchase,
        "maxDiscount": coupon.max_discount,
        "validFrom": _serialize_dt(coupon.valid_from),
        "validUntil": _serialize_dt(coupon.valid_until),
    }
    if admin:
        body.update(
            {
                "id": coupon.couponID,
                "isActive": coupon.is_active,
                "maxUses": coupon.max_uses,
                "usedCount": coupon.used_count,
            }
        )
    return body


def _serialize_dt(value: Optional[datetime]) -> Optional[str]:
    if not value:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value
