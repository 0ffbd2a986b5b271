from types import SimpleNamespace

import pytest

from customtees.errors import ValidationError
from customtees.services.pricing_service import PricingService, is_base_layer


@pytest.fixture
def pricing():
    return PricingService(pixels_per_inch=40, rate_per_sq_inch=10)


@pytest.fixture
def tee():
    return SimpleNamespace(price=2499)


def test_front_layer_priced_by_area(pricing, tee, make_design):
    # 200 x 120 px at 40 px/in is 5 x 3 in = 15 sq in at 10 per sq in.
    quote = pricing.price(tee, make_design(200, 120), None)

    assert quote.base_price == 2499
    assert quote.front_cost == 150
    assert quote.back_cost == 0
    assert quote.total == 2649
    assert quote.total == quote.base_price + quote.front_cost + quote.back_cost


def test_base_layers_are_not_charged(pricing, tee):
    design = {
        "designLayers": [
            {"id": "bg", "isBase": True, "width": 600, "height": 700},
            {"id": "garment", "role": "garment", "width": 600, "height": 700},
            {"id": "hidden", "excludeFromExport": True, "width": 600, "height": 700},
        ]
    }
    quote = pricing.price(tee, design, design)
    assert quote.front_cost == 0
    assert quote.back_cost == 0
    assert quote.total == 2499


def test_cost_is_independent_of_layer_count(pricing, tee):
    one = {"designLayers": [{"width": 200, "height": 120}]}
    two = {"designLayers": [{"width": 100, "height": 120}, {"left": 300, "width": 100, "height": 120}]}
    assert pricing.price(tee, one).front_cost == pricing.price(tee, two).front_cost == 150


def test_scale_and_rotation_change_the_bounding_box(pricing, tee, make_design):
    scaled = pricing.price(tee, make_design(200, 120, scaleX=2))
    assert scaled.front_cost == 300

    quarter_turn = pricing.price(tee, make_design(200, 120, angle=90))
    assert quarter_turn.front_cost == 150

    # A 45 degree turn grows the axis-aligned box to (w + h) / sqrt(2) per side.
    diagonal = pricing.price(tee, make_design(200, 120, angle=45))
    assert diagonal.front_cost == 320


def test_zero_or_negative_dimensions_cost_nothing(pricing, tee, make_design):
    assert pricing.price(tee, make_design(0, 120)).front_cost == 0
    assert pricing.price(tee, make_design(-50, 120)).front_cost == 0
    assert pricing.price(tee, make_design(200, 120, scaleX=-1)).front_cost == 150
    assert pricing.price(tee, make_design(200, 120, scaleX=0)).front_cost == 0


def test_cost_never_decreases_as_area_grows(pricing, tee, make_design):
    costs = [pricing.price(tee, make_design(width, 120)).front_cost for width in range(0, 2000, 37)]
    assert costs == sorted(costs)
    assert costs[-1] > costs[0]


def test_front_and_back_are_priced_independently(pricing, tee, make_design):
    quote = pricing.price(tee, make_design(200, 120), make_design(80, 80))
    assert quote.front_cost == 150
    assert quote.back_cost == 40
    assert quote.total == 2499 + 150 + 40


def test_snapshot_carries_metrics(pricing, tee, make_design):
    design = make_design(200, 120)
    quote = pricing.price(tee, design)
    snapshot = pricing.snapshot_design(design, quote.front_metrics)

    assert snapshot["previewImage"] == design["previewImage"]
    assert len(snapshot["designLayers"]) == 2
    metrics = snapshot["metrics"]
    assert metrics["areaInches"] == 15.0
    assert metrics["widthInches"] == 5.0
    assert metrics["perLayer"][0]["cost"] == 150
    assert pricing.snapshot_design(None, quote.back_metrics) is None


def test_oversized_design_payload_is_rejected(tee, make_design):
    pricing = PricingService(pixels_per_inch=40, rate_per_sq_inch=10, max_payload_bytes=512)
    design = make_design(200, 120)
    design["previewImage"] = "data:image/png;base64," + "A" * 1024

    with pytest.raises(ValidationError) as excinfo:
        pricing.ensure_payload_size(design, "front")
    assert excinfo.value.details["side"] == "front"


def test_malformed_layers_are_rejected(pricing, tee):
    with pytest.raises(ValidationError):
        pricing.price(tee, {"designLayers": "not-a-list"})


def test_is_base_layer_by_role_name():
    assert is_base_layer({"name": "Background"})
    assert not is_base_layer({"name": "Logo"})
