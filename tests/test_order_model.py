import pytest

from customtees.models import (
    Coupon,
    DiscountType,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShipmentStatus,
)


def _order(**fields):
    defaults = {
        "userID": 1,
        "subtotal": 1000,
        "discount_amount": 0,
        "total": 1000,
        "currency": "USD",
        "payment_method": PaymentMethod.SQUARE,
        "payment_status": PaymentStatus.PENDING,
        "shipping_address": {"fullName": "Ada"},
        "status": OrderStatus.PLACED,
    }
    defaults.update(fields)
    return Order(**defaults)


@pytest.mark.parametrize(
    "start, target, allowed",
    [
        (OrderStatus.PLACED, OrderStatus.PROCESSING, True),
        (OrderStatus.PLACED, OrderStatus.CANCELLED, True),
        (OrderStatus.PLACED, OrderStatus.SHIPPED, False),
        (OrderStatus.PROCESSING, OrderStatus.SHIPPED, True),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED, True),
        (OrderStatus.SHIPPED, OrderStatus.CANCELLED, False),
        (OrderStatus.DELIVERED, OrderStatus.PROCESSING, False),
        (OrderStatus.CANCELLED, OrderStatus.PLACED, False),
    ],
)
def test_order_status_transitions(start, target, allowed):
    order = _order(status=start)
    if allowed:
        order.transition_to(target, actor="admin:1")
        assert order.status == target
        assert order.events[-1].old_value == start.value
        assert order.events[-1].new_value == target.value
        assert order.events[-1].actor == "admin:1"
    else:
        with pytest.raises(ValueError):
            order.transition_to(target)
        assert order.status == start
        assert order.events == []


def test_paid_is_terminal():
    order = _order()
    order.transition_payment(PaymentStatus.FAILED, detail="declined")
    order.transition_payment(PaymentStatus.PAID)
    assert order.is_paid
    for target in (PaymentStatus.FAILED, PaymentStatus.PENDING, PaymentStatus.PAID):
        with pytest.raises(ValueError):
            order.transition_payment(target)


def test_cod_orders_have_no_payment_transitions():
    order = _order(payment_method=PaymentMethod.COD, payment_status=None)
    with pytest.raises(ValueError):
        order.transition_payment(PaymentStatus.PAID)


def test_shipment_transitions():
    order = _order(status=OrderStatus.PROCESSING)
    with pytest.raises(ValueError):
        order.transition_shipment(ShipmentStatus.DELIVERED)
    order.transition_shipment(ShipmentStatus.LABEL_GENERATED)
    order.transition_shipment(ShipmentStatus.LABEL_GENERATED)
    order.transition_shipment(ShipmentStatus.DELIVERED)
    assert order.shipment_status == ShipmentStatus.DELIVERED
    with pytest.raises(ValueError):
        order.transition_shipment(ShipmentStatus.LABEL_GENERATED)


def test_has_label_needs_tracking_and_url():
    order = _order(tracking_number="1Z")
    assert not order.has_label
    order.label_url = "https://labels/1Z.gif"
    assert order.has_label


@pytest.mark.parametrize(
    "discount_type, value, max_discount, subtotal, expected",
    [
        (DiscountType.PERCENTAGE, 20, None, 1000, 200),
        (DiscountType.PERCENTAGE, 12.5, None, 999, 125),
        (DiscountType.PERCENTAGE, 50, 300, 1000, 300),
        (DiscountType.FIXED, 500, None, 300, 300),
        (DiscountType.FIXED, 500, None, 0, 0),
    ],
)
def test_coupon_discount_for(discount_type, value, max_discount, subtotal, expected):
    coupon = Coupon(code="X", discount_type=discount_type, discount_value=value, max_discount=max_discount)
    assert coupon.discount_for(subtotal) == expected
