import pytest
from sqlalchemy.orm import sessionmaker

from customtees.errors import ConflictError, NotFoundError, ValidationError
from customtees.models import Cart
from customtees.services.cart_service import CartService, coerce_quantity
from customtees.services.pricing_service import PricingService


@pytest.fixture
def cart_service(db_session):
    return CartService(db_session, PricingService(pixels_per_inch=40, rate_per_sq_inch=10))


def _payload(product, design=None, **overrides):
    payload = {
        "productId": product.productID,
        "selectedColor": "White",
        "selectedSize": "M",
        "frontDesign": design,
        "quantity": 1,
    }
    payload.update(overrides)
    return payload


def test_add_item_reprices_on_the_server(cart_service, sample_user, sample_product, make_design):
    item = cart_service.add_item(
        sample_user.userID,
        _payload(sample_product, make_design(200, 120), totalPrice=1, basePrice=1, frontCustomizationCost=0),
    )

    assert item.base_price == 2499
    assert item.front_customization_cost == 150
    assert item.back_customization_cost == 0
    assert item.total_price == 2649
    assert item.front_design["metrics"]["areaInches"] == 15.0
    assert item.product_name == sample_product.name


def test_identical_items_are_not_merged(cart_service, sample_user, sample_product, make_design):
    cart_service.add_item(sample_user.userID, _payload(sample_product, make_design()))
    cart_service.add_item(sample_user.userID, _payload(sample_product, make_design()))

    cart = cart_service.get_cart(sample_user.userID)
    assert len(cart.items) == 2
    assert cart.item_count == 2
    assert cart.subtotal == 2 * 2649


def test_quantity_defaults_to_one(cart_service, sample_user, sample_product):
    payload = _payload(sample_product)
    payload.pop("quantity")
    assert cart_service.add_item(sample_user.userID, payload).quantity == 1


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"productId": 99999}, NotFoundError),
        ({"productId": None}, ValidationError),
        ({"selectedSize": "XXXL"}, ValidationError),
        ({"selectedColor": "Magenta"}, ValidationError),
        ({"selectedSize": ""}, ValidationError),
        ({"quantity": 0}, ValidationError),
        ({"quantity": -2}, ValidationError),
        ({"quantity": 1.5}, ValidationError),
        ({"quantity": 10_000}, ValidationError),
    ],
)
def test_add_item_rejects_invalid_input(cart_service, sample_user, sample_product, overrides, error):
    with pytest.raises(error):
        cart_service.add_item(sample_user.userID, _payload(sample_product, **overrides))


def test_add_item_rejects_oversized_design(db_session, sample_user, sample_product, make_design):
    service = CartService(db_session, PricingService(pixels_per_inch=40, rate_per_sq_inch=10, max_payload_bytes=256))
    design = make_design()
    design["previewImage"] = "data:image/png;base64," + "A" * 512

    with pytest.raises(ValidationError):
        service.add_item(sample_user.userID, _payload(sample_product, design))


def test_non_customizable_product_rejects_designs(cart_service, sample_user, make_product, make_design):
    plain = make_product(customizable=False)
    with pytest.raises(ValidationError):
        cart_service.add_item(sample_user.userID, _payload(plain, make_design()))
    assert cart_service.add_item(sample_user.userID, _payload(plain)).total_price == plain.price


def test_update_quantity(cart_service, sample_user, sample_product):
    item = cart_service.add_item(sample_user.userID, _payload(sample_product))

    cart_service.update_quantity(sample_user.userID, item.cartItemID, 3)
    assert cart_service.get_cart(sample_user.userID).subtotal == 3 * 2499

    with pytest.raises(ValidationError):
        cart_service.update_quantity(sample_user.userID, item.cartItemID, 0)
    with pytest.raises(NotFoundError):
        cart_service.update_quantity(sample_user.userID, 424242, 2)


def test_remove_item_and_missing_item(cart_service, sample_user, sample_product):
    item = cart_service.add_item(sample_user.userID, _payload(sample_product))

    cart_service.remove_item(sample_user.userID, item.cartItemID)
    assert cart_service.get_cart(sample_user.userID).items == []

    with pytest.raises(NotFoundError):
        cart_service.remove_item(sample_user.userID, item.cartItemID)


def test_items_of_other_users_are_not_visible(cart_service, make_user, sample_product):
    owner, other = make_user(), make_user()
    item = cart_service.add_item(owner.userID, _payload(sample_product))

    with pytest.raises(NotFoundError):
        cart_service.remove_item(other.userID, item.cartItemID)


def test_clear_empties_cart_and_bumps_version(cart_service, sample_user, sample_product):
    cart_service.add_item(sample_user.userID, _payload(sample_product))
    before = cart_service.get_cart(sample_user.userID).version

    cart = cart_service.clear(sample_user.userID)
    assert cart.items == []
    assert cart.version > before


def test_concurrent_cart_write_raises_conflict(db_session, sample_user, sample_product):
    first = CartService(db_session)
    first.add_item(sample_user.userID, _payload(sample_product))

    other_session = sessionmaker(bind=db_session.get_bind(), autoflush=False)()
    try:
        stale = other_session.query(Cart).filter_by(userID=sample_user.userID).one()
        stale_items = list(stale.items)

        first.clear(sample_user.userID)

        stale_items[0].quantity = 5
        stale.touch()
        second = CartService(other_session)
        with pytest.raises(ConflictError):
            second._commit(sample_user.userID)
    finally:
        other_session.close()


@pytest.mark.parametrize("value, expected", [(1, 1), ("3", 3), (100, 100)])
def test_coerce_quantity_accepts_whole_numbers(value, expected):
    assert coerce_quantity(value) == expected


@pytest.mark.parametrize("value", [True, "abc", None, 2.5, 0, float("inf"), float("nan")])
def test_coerce_quantity_rejects_other_values(value):
    with pytest.raises(ValidationError):
        coerce_quantity(value)
