import pytest
from sqlalchemy.orm import sessionmaker

from customtees.errors import (
    ConflictError,
    CouponErrorKind,
    CouponInvalidError,
    EmptyCartError,
    ForbiddenError,
    InvalidAddressError,
    NotFoundError,
    ValidationError,
)
from customtees.models import Address, Cart, Order, OrderStatus, PaymentMethod, PaymentStatus, Product, ShipmentStatus
from customtees.services.cart_service import CartService
from customtees.services.coupon_service import CouponService
from customtees.services.order_service import OrderService
from customtees.services.pricing_service import PricingService


@pytest.fixture
def cart_service(db_session):
    return CartService(db_session, PricingService(pixels_per_inch=40, rate_per_sq_inch=10))


@pytest.fixture
def order_service(db_session, cart_service):
    return OrderService(db_session, cart_service=cart_service, coupon_service=CouponService(db_session, usage_tracking=True))


@pytest.fixture
def fill_cart(cart_service):
    def _fill(user, product, design=None, quantity=1):
        return cart_service.add_item(
            user.userID,
            {
                "productId": product.productID,
                "selectedColor": "White",
                "selectedSize": "M",
                "frontDesign": design,
                "quantity": quantity,
                "instruction": "Center the print",
            },
        )

    return _fill


def test_scenario_a_order_total_matches_cart(order_service, cart_service, sample_user, sample_product, fill_cart, make_design, shipping_address):
    fill_cart(sample_user, sample_product, make_design(200, 120))

    order, created = order_service.create_from_cart(sample_user.userID, "razorpay", shipping_address)

    assert created is True
    assert order.subtotal == 2649
    assert order.discount_amount == 0
    assert order.total == 2649
    assert order.payment_status == PaymentStatus.PENDING
    assert order.status == OrderStatus.PLACED
    assert order.items[0].price == 2649
    assert order.items[0].custom_design["frontDesign"]["metrics"]["areaInches"] == 15.0
    assert order.items[0].instruction == "Center the print"
    assert cart_service.get_cart(sample_user.userID).items == []
    assert [event.event_type for event in order.events] == ["order_created"]


def test_cod_orders_have_no_payment_status(order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    order, _ = order_service.create_from_cart(sample_user.userID, "cod", shipping_address)
    assert order.payment_method == PaymentMethod.COD
    assert order.payment_status is None
    assert order.total == 2499


def test_scenario_b_coupon_discount_applied(order_service, sample_user, make_product, make_coupon, fill_cart, shipping_address):
    make_coupon("SAVE20", min_purchase=500)
    fill_cart(sample_user, make_product(price=500), quantity=2)

    order, _ = order_service.create_from_cart(
        sample_user.userID, "razorpay", shipping_address, coupon_code="save20", client_discount=999
    )

    assert order.subtotal == 1000
    assert order.discount_amount == 200
    assert order.total == 800
    assert order.coupon_code == "SAVE20"
    assert order.total == sum(item.price * item.quantity for item in order.items) - order.discount_amount


def test_scenario_c_coupon_failure_aborts_order(db_session, order_service, cart_service, sample_user, make_product, make_coupon, fill_cart, shipping_address):
    make_coupon("SAVE20", min_purchase=500)
    fill_cart(sample_user, make_product(price=300))

    with pytest.raises(CouponInvalidError) as excinfo:
        order_service.create_from_cart(sample_user.userID, "cod", shipping_address, coupon_code="SAVE20")

    assert excinfo.value.reason == CouponErrorKind.BELOW_MINIMUM
    assert db_session.query(Order).count() == 0
    assert len(cart_service.get_cart(sample_user.userID).items) == 1


def test_empty_cart_is_rejected(order_service, sample_user, shipping_address):
    with pytest.raises(EmptyCartError):
        order_service.create_from_cart(sample_user.userID, "cod", shipping_address)


@pytest.mark.parametrize("missing", ["fullName", "phone", "line1", "city", "state", "postalCode", "country"])
def test_address_must_be_complete(db_session, order_service, cart_service, sample_user, sample_product, fill_cart, shipping_address, missing):
    fill_cart(sample_user, sample_product)
    shipping_address[missing] = "   "

    with pytest.raises(InvalidAddressError) as excinfo:
        order_service.create_from_cart(sample_user.userID, "cod", shipping_address)

    assert excinfo.value.fields == [missing]
    assert db_session.query(Order).count() == 0
    assert len(cart_service.get_cart(sample_user.userID).items) == 1


def test_address_is_sanitized(order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    shipping_address["line2"] = "<script>alert(1)</script>Apt 4"

    order, _ = order_service.create_from_cart(sample_user.userID, "cod", shipping_address)
    assert "<script>" not in order.shipping_address["line2"]
    assert order.shipping_address["line2"].endswith("Apt 4")


def test_address_book_entry_is_copied_by_value(db_session, order_service, sample_user, sample_product, fill_cart):
    entry = Address(
        userID=sample_user.userID,
        full_name="Grace Hopper",
        phone="555-0199",
        line1="1 Navy Yard",
        city="Arlington",
        state="VA",
        postal_code="22201",
        country="US",
    )
    db_session.add(entry)
    db_session.commit()
    fill_cart(sample_user, sample_product)

    order, _ = order_service.create_from_cart(sample_user.userID, "cod", address_id=entry.addressID)
    db_session.delete(entry)
    db_session.commit()
    db_session.refresh(order)

    assert order.shipping_address["fullName"] == "Grace Hopper"
    assert order.shipping_address["postalCode"] == "22201"


def test_foreign_address_id_is_not_found(order_service, make_user, sample_product, fill_cart, db_session):
    owner, other = make_user(), make_user()
    entry = Address(userID=owner.userID, full_name="A", phone="1", line1="l", city="c", state="s", postal_code="p", country="US")
    db_session.add(entry)
    db_session.commit()
    fill_cart(other, sample_product)

    with pytest.raises(NotFoundError):
        order_service.create_from_cart(other.userID, "cod", address_id=entry.addressID)


def test_unknown_payment_method_is_rejected(order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    with pytest.raises(ValidationError):
        order_service.create_from_cart(sample_user.userID, "bitcoin", shipping_address)


def test_catalog_price_change_does_not_touch_orders(db_session, order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    order, _ = order_service.create_from_cart(sample_user.userID, "cod", shipping_address)

    product = db_session.get(Product, sample_product.productID)
    product.price = 9999
    db_session.commit()
    db_session.expire_all()

    reloaded = db_session.get(Order, order.orderID)
    assert reloaded.items[0].price == 2499
    assert reloaded.total == 2499


def test_order_uses_cart_price_not_live_catalog(db_session, order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    sample_product.price = 1
    db_session.commit()

    order, _ = order_service.create_from_cart(sample_user.userID, "cod", shipping_address)
    assert order.items[0].price == 2499


def test_checkout_key_makes_creation_idempotent(db_session, order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    first, created = order_service.create_from_cart(sample_user.userID, "cod", shipping_address, checkout_key="abc-123")
    fill_cart(sample_user, sample_product)
    second, created_again = order_service.create_from_cart(sample_user.userID, "cod", shipping_address, checkout_key="abc-123")

    assert created is True
    assert created_again is False
    assert second.orderID == first.orderID
    assert db_session.query(Order).count() == 1


def test_cod_coupon_usage_recorded_at_creation(order_service, sample_user, make_product, make_coupon, fill_cart, shipping_address):
    coupon = make_coupon("SAVE20")
    fill_cart(sample_user, make_product(price=1000))
    order_service.create_from_cart(sample_user.userID, "cod", shipping_address, coupon_code="SAVE20")
    assert coupon.used_count == 1


def test_gateway_coupon_usage_waits_for_payment(order_service, sample_user, make_product, make_coupon, fill_cart, shipping_address):
    coupon = make_coupon("SAVE20")
    fill_cart(sample_user, make_product(price=1000))
    order_service.create_from_cart(sample_user.userID, "square", shipping_address, coupon_code="SAVE20")
    assert coupon.used_count == 0


def test_get_for_user_checks_ownership(order_service, make_user, sample_product, fill_cart, shipping_address):
    owner, stranger, admin = make_user(), make_user(), make_user(role="admin")
    fill_cart(owner, sample_product)
    order, _ = order_service.create_from_cart(owner.userID, "cod", shipping_address)

    assert order_service.get_for_user(order.orderID, owner).orderID == order.orderID
    assert order_service.get_for_user(order.orderID, admin).orderID == order.orderID
    with pytest.raises(ForbiddenError):
        order_service.get_for_user(order.orderID, stranger)
    with pytest.raises(NotFoundError):
        order_service.get_for_user(987654, owner)


def test_list_for_user_and_list_all(order_service, make_user, sample_product, fill_cart, shipping_address):
    alice, bob = make_user(), make_user()
    for user in (alice, bob):
        fill_cart(user, sample_product)
        order_service.create_from_cart(user.userID, "cod", shipping_address)

    assert len(order_service.list_for_user(alice.userID)) == 1
    assert len(order_service.list_all()) == 2
    assert len(order_service.list_all(status="placed")) == 2
    assert order_service.list_all(status="shipped") == []
    with pytest.raises(ValidationError):
        order_service.list_all(status="lost")


def test_update_status_follows_transition_table(order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    order, _ = order_service.create_from_cart(sample_user.userID, "cod", shipping_address)

    order_service.update_status(order.orderID, "processing", actor="admin:1")
    with pytest.raises(ConflictError):
        order_service.update_status(order.orderID, "delivered")
    order_service.update_status(order.orderID, "cancelled", note="customer request")

    assert order.status == OrderStatus.CANCELLED
    assert [e.new_value for e in order.events if e.event_type == "status_changed"] == ["processing", "cancelled"]
    with pytest.raises(ConflictError):
        order_service.update_status(order.orderID, "processing")
    with pytest.raises(ValidationError):
        order_service.update_status(order.orderID, "teleported")


def test_delivered_closes_shipment(db_session, order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product)
    order, _ = order_service.create_from_cart(sample_user.userID, "cod", shipping_address)
    order.status = OrderStatus.SHIPPED
    order.shipment_status = ShipmentStatus.LABEL_GENERATED
    order.tracking_number = "1Z"
    order.label_url = "https://labels/1Z.gif"
    db_session.commit()

    order_service.update_status(order.orderID, "delivered")
    assert order.shipment_status == ShipmentStatus.DELIVERED


def test_second_checkout_of_same_cart_conflicts(db_session, order_service, sample_user, sample_product, fill_cart, shipping_address):
    fill_cart(sample_user, sample_product, quantity=2)

    other_session = sessionmaker(bind=db_session.get_bind(), autoflush=False)()
    try:
        stale_cart = other_session.query(Cart).filter_by(userID=sample_user.userID).one()
        assert len(stale_cart.items) == 1

        order_service.create_from_cart(sample_user.userID, "cod", shipping_address)

        pricing = PricingService(pixels_per_inch=40, rate_per_sq_inch=10)
        racing = OrderService(
            other_session,
            cart_service=CartService(other_session, pricing),
            coupon_service=CouponService(other_session),
        )
        with pytest.raises(ConflictError):
            racing.create_from_cart(sample_user.userID, "cod", shipping_address)
    finally:
        other_session.close()

    db_session.expire_all()
    assert db_session.query(Order).filter_by(userID=sample_user.userID).count() == 1
    assert db_session.query(Cart).filter_by(userID=sample_user.userID).one().items == []
